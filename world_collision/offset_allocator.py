"""
Two-pass offset allocation for pointer-linked chunk payloads.

Collision and grid chunks store their object graphs exactly as the engine
laid them out in memory: fixed-size records that refer to each other by
byte offset. Encoding therefore runs in two passes:

  1. Every node of the graph reserves a byte range in the output buffer
     (``OffsetAllocator.reserve``), honouring its alignment.
  2. Each node's writer emits its header into a ``StructWriter`` sized to
     the final allocation, patching in the offsets of the nodes it refers
     to (``OffsetAllocator.address_of``).

Reservations are keyed by node identity, never by value: two heightmaps
holding the same numbers are still two separate records in the file.
Each node gets a synthetic integer id from a side table that also keeps
the node alive for the lifetime of the allocator.

Decoding is the dual and needs no allocator, only ``StructReader`` with
one indirection per pointer field.
"""

import struct

from .errors import FormatError


def align(offset, alignment):
    """Round *offset* up to the next multiple of *alignment*."""
    return ((offset + alignment - 1) // alignment) * alignment


class NodeIds(object):
    """Hands out stable synthetic ids for graph nodes by identity."""

    def __init__(self):
        self._ids = {}
        self._nodes = []

    def node_id(self, node):
        """Return the synthetic id of *node*, assigning one on first sight."""
        key = id(node)
        found = self._ids.get(key)
        if found is not None:
            return found
        new_id = len(self._nodes)
        # Holding the node keeps id(node) from being reused by another object.
        self._nodes.append(node)
        self._ids[key] = new_id
        return new_id

    def known(self, node):
        return id(node) in self._ids

    def __len__(self):
        return len(self._nodes)


class OffsetAllocator(object):
    """
    Assigns non-overlapping byte ranges to the nodes of an object graph.

    Args:
        start: Initial cursor position, usually the size of a fixed header
            that is written without a reservation.
    """

    def __init__(self, start=0):
        self._cursor = start
        self._node_ids = NodeIds()
        self._addresses = {}

    @property
    def size(self):
        """Current end of the allocation (bytes)."""
        return self._cursor

    def align(self, alignment):
        self._cursor = align(self._cursor, alignment)
        return self._cursor

    def skip(self, size):
        """Advance the cursor without recording a node."""
        start = self._cursor
        self._cursor += size
        return start

    def reserve(self, node, size, alignment=4):
        """
        Reserve *size* bytes for *node* and return its address.

        Raises:
            AssertionError: If *node* already holds a reservation.
        """
        node_id = self._node_ids.node_id(node)
        assert node_id not in self._addresses, \
            "Node {} reserved twice".format(node_id)
        address = self.align(alignment)
        self._addresses[node_id] = address
        self._cursor = address + size
        return address

    def has(self, node):
        if not self._node_ids.known(node):
            return False
        return self._node_ids.node_id(node) in self._addresses

    def address_of(self, node):
        """
        Return the address reserved for *node*.

        A missing reservation means the graph handed to the writer is not
        the one that was laid out (for instance a boundary referenced from
        an object it does not belong to), so it is an assertion failure.
        """
        assert self.has(node), \
            "No reservation for {} node".format(type(node).__name__)
        return self._addresses[self._node_ids.node_id(node)]

    def relative(self, node, base):
        """Address of *node* relative to *base*."""
        return self.address_of(node) - base


class StructWriter(object):
    """Little-endian field setters over a zero-filled buffer."""

    def __init__(self, size):
        self.buffer = bytearray(size)

    def _put(self, fmt, offset, value):
        struct.pack_into(fmt, self.buffer, offset, value)

    def u8(self, offset, value):
        self._put('<B', offset, value & 0xFF)

    def i8(self, offset, value):
        self._put('<b', offset, value)

    def u16(self, offset, value):
        self._put('<H', offset, value & 0xFFFF)

    def i16(self, offset, value):
        self._put('<h', offset, value)

    def u32(self, offset, value):
        self._put('<I', offset, value & 0xFFFFFFFF)

    def i32(self, offset, value):
        self._put('<i', offset, value)

    def f32(self, offset, value):
        self._put('<f', offset, float(value))

    def f32s(self, offset, values):
        values = [float(v) for v in values]
        struct.pack_into('<{}f'.format(len(values)), self.buffer, offset,
                         *values)

    def getvalue(self):
        return bytes(self.buffer)


class StructReader(object):
    """Bounds-checked little-endian field getters over a byte string."""

    def __init__(self, data):
        self.data = bytes(data)

    def __len__(self):
        return len(self.data)

    def _get(self, fmt, offset):
        size = struct.calcsize(fmt)
        if offset < 0 or offset + size > len(self.data):
            raise FormatError(
                "Read of {} bytes at 0x{:X} is outside the {} byte payload"
                .format(size, offset, len(self.data)))
        return struct.unpack_from(fmt, self.data, offset)

    def u8(self, offset):
        return self._get('<B', offset)[0]

    def i8(self, offset):
        return self._get('<b', offset)[0]

    def u16(self, offset):
        return self._get('<H', offset)[0]

    def i16(self, offset):
        return self._get('<h', offset)[0]

    def u32(self, offset):
        return self._get('<I', offset)[0]

    def i32(self, offset):
        return self._get('<i', offset)[0]

    def f32(self, offset):
        return self._get('<f', offset)[0]

    def f32s(self, offset, count):
        if count == 0:
            return []
        return list(self._get('<{}f'.format(count), offset))
