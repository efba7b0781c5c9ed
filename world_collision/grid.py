"""
World grid chunk (chunk type 19) reader/writer.

The world grid is a uniform spatial index: a ``width x height`` array of
square tiles of side ``scale`` anchored at world (x, z). Each populated
tile lists the collision objects (and the subset of their wall
boundaries) that touch it, plus a streaming load id.

Binary layout (little-endian):

  Header (0x28):
    0x00 f32 x                   0x04 f32 x + width * scale
    0x08 f32 z                   0x0C f32 z + height * scale
    0x10 f32 scale               0x14 u32 width
    0x18 u32 height              0x1C u32 cell table (absolute)
    0x20 u32 num_collision_chunks
    0x24 u32 0x28
  num_collision_chunks x u32, unused by this library (zero filled)
  Cell table: u32 absolute item address per tile, row-major, 0 = empty
  Item (0x1C):
    0x08 u32 collision ref count 0x0C u32 ref table (relative to item)
    0x18 u16 load_id
  Collision ref (0x14):
    0x00 u32 chunk_id            0x04 u32 object index
    0x0C u32 boundary count      0x10 u32 boundary list (relative to
                                          the item's ref table)
  Boundary list: u32 per boundary, stored as index * 0x70 + 0x60
"""

import logging
import math

from .errors import FormatError
from .offset_allocator import OffsetAllocator, StructReader, StructWriter

log = logging.getLogger(__name__)


HEADER_SIZE = 0x28
ITEM_SIZE = 0x1C
REF_SIZE = 0x14
BOUNDARY_STRIDE = 0x70
BOUNDARY_BASE = 0x60

# Default origin of a fresh grid, matching the game's own grids
GRID_DEFAULT_ORIGIN = -1.175
GRID_DEFAULT_SCALE = 25


def _encode_boundary_index(index):
    return index * BOUNDARY_STRIDE + BOUNDARY_BASE


def _decode_boundary_index(value):
    index, remainder = divmod(value - BOUNDARY_BASE, BOUNDARY_STRIDE)
    if remainder or index < 0:
        raise FormatError(
            "Grid boundary reference 0x{:X} is not a boundary record offset"
            .format(value))
    return index


class GridCollisionRef(object):
    """A collision object (and some of its boundaries) touching a tile."""

    def __init__(self, chunk_id, id, boundary_indices=None):
        self.chunk_id = chunk_id
        self.id = id
        self.boundary_indices = list(boundary_indices or [])

    def key(self):
        """Hashable identity used when comparing tiles."""
        return (self.chunk_id, self.id, frozenset(self.boundary_indices))

    def __repr__(self):
        return "GridCollisionRef(chunk_id={}, id={}, boundary_indices={})" \
            .format(self.chunk_id, self.id, self.boundary_indices)

    def to_dict(self):
        return {
            'chunk_id': self.chunk_id,
            'id': self.id,
            'boundary_indices': list(self.boundary_indices),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(data['chunk_id'], data['id'],
                   data.get('boundary_indices', []))


class GridItem(object):
    """Payload of one populated tile."""

    def __init__(self, load_id=0, collision_refs=None):
        self.load_id = load_id
        self.collision_refs = collision_refs if collision_refs is not None \
            else []

    def is_empty(self):
        return self.load_id == 0 and not self.collision_refs

    def to_dict(self):
        return {
            'load_id': self.load_id,
            'collision_refs': [ref.to_dict() for ref in self.collision_refs],
        }

    @classmethod
    def from_dict(cls, data):
        return cls(data.get('load_id', 0),
                   [GridCollisionRef.from_dict(r)
                    for r in data.get('collision_refs', [])])


class GridChunk(object):
    """
    Uniform grid of world tiles.

    Args:
        grid: Row-major list of GridItem or None, ``width * height`` long.
            Defaults to all-empty.
        width, height: Grid size in tiles.
        x, z: World position of the grid's -x/-z corner.
        scale: Tile side length.
        num_collision_chunks: Upper bound on referenced collision chunk
            ids; sizes a table the engine keeps after the header.
    """

    def __init__(self, grid=None, width=1, height=1, x=GRID_DEFAULT_ORIGIN,
                 z=GRID_DEFAULT_ORIGIN, scale=GRID_DEFAULT_SCALE,
                 num_collision_chunks=1):
        self.width = width
        self.height = height
        self.grid = grid if grid is not None else [None] * (width * height)
        self.x = x
        self.z = z
        self.scale = scale
        self.num_collision_chunks = num_collision_chunks

    # ------------------------------------------------------------------
    # Codec
    # ------------------------------------------------------------------

    @classmethod
    def from_bytes(cls, data):
        """
        Decode a world grid chunk payload.

        Raises:
            FormatError: If the payload is truncated or malformed.
        """
        reader = StructReader(data)
        if len(reader) < HEADER_SIZE:
            raise FormatError(
                "Grid chunk is {} bytes, smaller than its header"
                .format(len(reader)))
        grid_x = reader.f32(0x00)
        grid_z = reader.f32(0x08)
        scale = reader.f32(0x10)
        width = reader.u32(0x14)
        height = reader.u32(0x18)
        grid_ptr = reader.u32(0x1C)
        num_collision_chunks = reader.u32(0x20)
        if grid_ptr + 4 * width * height > len(reader):
            raise FormatError(
                "Grid chunk cell table ({}x{} at 0x{:X}) runs past the end"
                .format(width, height, grid_ptr))

        end_x = reader.f32(0x04)
        end_z = reader.f32(0x0C)
        if abs(end_x - (grid_x + width * scale)) > scale or \
                abs(end_z - (grid_z + height * scale)) > scale:
            log.warning("Grid chunk extent (%.3f, %.3f) does not match its "
                        "size, ignoring it", end_x, end_z)

        grid = [None] * (width * height)
        for i in range(width * height):
            pointer = reader.u32(grid_ptr + i * 4)
            if pointer == 0:
                continue
            load_id = reader.u16(pointer + 0x18)
            refs_ptr = reader.u32(pointer + 0x0C) + pointer
            refs = []
            for j in range(reader.u32(pointer + 0x08)):
                ref_ptr = refs_ptr + REF_SIZE * j
                indices_ptr = reader.u32(ref_ptr + 0x10) + refs_ptr
                indices = [
                    _decode_boundary_index(reader.u32(indices_ptr + 4 * k))
                    for k in range(reader.u32(ref_ptr + 0x0C))
                ]
                refs.append(GridCollisionRef(
                    reader.u32(ref_ptr), reader.u32(ref_ptr + 0x04), indices))
            grid[i] = GridItem(load_id, refs)

        log.debug("Decoded grid chunk: %dx%d tiles, scale %.3f",
                  width, height, scale)
        return cls(grid, width, height, grid_x, grid_z, scale,
                   num_collision_chunks)

    def to_bytes(self):
        """Encode the chunk payload."""
        assert len(self.grid) == self.width * self.height, \
            "Grid holds {} tiles, expected {}x{}".format(
                len(self.grid), self.width, self.height)

        allocator = OffsetAllocator(HEADER_SIZE)
        allocator.skip(4 * self.num_collision_chunks)
        grid_ptr = allocator.skip(4 * self.width * self.height)

        # Fresh lists per tile so shared ref lists still get their own
        # records.
        plans = []
        for item in self.grid:
            if item is None:
                continue
            refs = [(ref, list(ref.boundary_indices))
                    for ref in item.collision_refs]
            table = [ref for ref, _ in refs]
            allocator.reserve(item, ITEM_SIZE)
            allocator.reserve(table, REF_SIZE * len(refs))
            for _, indices in refs:
                allocator.reserve(indices, 4 * len(indices))
            plans.append((item, table, refs))

        writer = StructWriter(allocator.size)
        writer.f32(0x00, self.x)
        writer.f32(0x04, self.x + self.width * self.scale)
        writer.f32(0x08, self.z)
        writer.f32(0x0C, self.z + self.height * self.scale)
        writer.f32(0x10, self.scale)
        writer.u32(0x14, self.width)
        writer.u32(0x18, self.height)
        writer.u32(0x1C, grid_ptr)
        writer.u32(0x20, self.num_collision_chunks)
        writer.u32(0x24, HEADER_SIZE)

        cells = {}
        for i, item in enumerate(self.grid):
            if item is not None:
                cells[id(item)] = i

        for item, table, refs in plans:
            ptr = allocator.address_of(item)
            writer.u32(grid_ptr + cells[id(item)] * 4, ptr)
            writer.u16(ptr + 0x18, item.load_id)

            refs_ptr = allocator.address_of(table)
            writer.u32(ptr + 0x08, len(refs))
            writer.u32(ptr + 0x0C, refs_ptr - ptr)
            for j, (ref, indices) in enumerate(refs):
                ref_ptr = refs_ptr + j * REF_SIZE
                indices_ptr = allocator.address_of(indices)
                writer.u32(ref_ptr + 0x00, ref.chunk_id)
                writer.u32(ref_ptr + 0x04, ref.id)
                writer.u32(ref_ptr + 0x0C, len(indices))
                writer.u32(ref_ptr + 0x10, indices_ptr - refs_ptr)
                for k, index in enumerate(indices):
                    writer.u32(indices_ptr + 4 * k,
                               _encode_boundary_index(index))

        log.debug("Encoded grid chunk: %dx%d tiles, %d bytes",
                  self.width, self.height, len(writer.buffer))
        return writer.getvalue()

    def to_dict(self):
        return {
            'x': float(self.x),
            'z': float(self.z),
            'scale': float(self.scale),
            'width': self.width,
            'height': self.height,
            'num_collision_chunks': self.num_collision_chunks,
            'grid': [None if item is None else item.to_dict()
                     for item in self.grid],
        }

    @classmethod
    def from_dict(cls, data):
        width = data.get('width', 1)
        height = data.get('height', 1)
        grid = [None if item is None else GridItem.from_dict(item)
                for item in data.get('grid', [None] * (width * height))]
        return cls(grid, width, height,
                   data.get('x', GRID_DEFAULT_ORIGIN),
                   data.get('z', GRID_DEFAULT_ORIGIN),
                   data.get('scale', GRID_DEFAULT_SCALE),
                   data.get('num_collision_chunks', 1))

    # ------------------------------------------------------------------
    # Tiles
    # ------------------------------------------------------------------

    def _tile_index(self, int_x, int_z):
        assert 0 <= int_x < self.width and 0 <= int_z < self.height, \
            "Tile coordinates ({}, {}) out of range".format(int_x, int_z)
        return int_x + self.width * int_z

    def get_tile(self, int_x, int_z):
        return self.grid[self._tile_index(int_x, int_z)]

    def get_or_create_tile(self, int_x, int_z):
        index = self._tile_index(int_x, int_z)
        item = self.grid[index]
        if item is None:
            item = self.grid[index] = GridItem()
        return item

    def tile_bounds(self, int_x, int_z):
        """World-space (minx, minz, maxx, maxz) of a tile."""
        minx = self.x + int_x * self.scale
        minz = self.z + int_z * self.scale
        return minx, minz, minx + self.scale, minz + self.scale

    def get_tiles_in_rect(self, minx, minz, maxx, maxz):
        """
        List the tiles overlapping a world-space rectangle.

        The grid grows first if the rectangle reaches outside it, so every
        returned coordinate is valid for ``get_or_create_tile``.

        Returns:
            list: (x, z) tile coordinates, row-major.
        """
        int_minx = int(math.floor((minx - self.x) / self.scale))
        int_minz = int(math.floor((minz - self.z) / self.scale))
        int_maxx = int(math.floor((maxx - self.x) / self.scale)) + 1
        int_maxz = int(math.floor((maxz - self.z) / self.scale)) + 1

        if int_minx < 0 or int_minz < 0 or int_maxx > self.width \
                or int_maxz > self.height:
            expand_left = max(-int_minx, 0)
            expand_up = max(-int_minz, 0)
            self.expand_grid(expand_left, expand_up,
                             max(int_maxx - self.width, 0),
                             max(int_maxz - self.height, 0))
            int_minx += expand_left
            int_maxx += expand_left
            int_minz += expand_up
            int_maxz += expand_up

        return [(x, z)
                for z in range(int_minz, int_maxz)
                for x in range(int_minx, int_maxx)]

    def expand_grid(self, expand_left, expand_up, expand_right, expand_down):
        """
        Resize the grid by whole tiles on each side.

        Existing tiles keep their world position; negative amounts shrink
        the grid and drop the tiles that fall off.
        """
        expand_left = int(expand_left)
        expand_up = int(expand_up)
        expand_right = int(expand_right)
        expand_down = int(expand_down)

        new_width = max(self.width + expand_left + expand_right, 0)
        new_height = max(self.height + expand_up + expand_down, 0)

        new_grid = [None] * (new_width * new_height)
        for y in range(self.height):
            for x in range(self.width):
                new_x = x + expand_left
                new_y = y + expand_up
                if 0 <= new_x < new_width and 0 <= new_y < new_height:
                    new_grid[new_y * new_width + new_x] = \
                        self.grid[y * self.width + x]

        self.grid = new_grid
        self.x -= self.scale * expand_left
        self.z -= self.scale * expand_up
        self.width = new_width
        self.height = new_height

    def trim(self):
        """
        Remove empty tiles and shrink the grid to the smallest rectangle
        holding every non-empty tile.
        """
        minx = minz = None
        maxx = maxz = None
        for z in range(self.height):
            for x in range(self.width):
                index = z * self.width + x
                tile = self.grid[index]
                if tile is None:
                    continue
                if tile.is_empty():
                    self.grid[index] = None
                    continue
                minx = x if minx is None else min(minx, x)
                minz = z if minz is None else min(minz, z)
                maxx = x + 1 if maxx is None else max(maxx, x + 1)
                maxz = z + 1 if maxz is None else max(maxz, z + 1)

        if minx is None:
            log.debug("Grid has no populated tiles, trimming to 0x0")
            self.grid = []
            self.width = 0
            self.height = 0
            return
        self.expand_grid(-minx, -minz, maxx - self.width, maxz - self.height)

    # ------------------------------------------------------------------
    # Collision index
    # ------------------------------------------------------------------

    def add_collision(self, chunk):
        """Index a collision chunk; see ``grid_index.add_collision``."""
        from .grid_index import add_collision
        add_collision(self, chunk)

    def remove_collision(self, chunk_or_id):
        """Drop every reference to a collision chunk (or chunk id)."""
        from .grid_index import remove_collision
        remove_collision(self, chunk_or_id)

    def rebuild(self, container, do_trim=True):
        """Reindex all collision chunks of a container; see
        ``grid_index.rebuild``."""
        from .grid_index import rebuild
        rebuild(self, container, do_trim=do_trim)
