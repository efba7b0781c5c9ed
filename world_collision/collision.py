"""
Collision chunk (chunk type 5) reader/writer.

A collision chunk holds a list of collision objects. Each object is one
walkable surface: a two-level heightmap (an outer grid of coarse cells,
each optionally holding an inner grid of height samples) fenced by a ring
of vertical wall boundaries.

Binary layout (little-endian, offsets relative to the object record unless
noted):

  Header (0x10):  u32 id, u32 object_count, u32 object_table (absolute)
  Object table:   u32 absolute address per object
  Object (0x60):
    0x04 u32 chunk id            0x08 u32 object index
    0x0C u8  zone                0x0D i8  drown_target
    0x0E i16 water_splash_object 0x10 f32 outer_tile_size
    0x14 f32 inner_tile_size     0x18 u32 inner_grid_size - 1
    0x1C u32 inner_grid_size     0x20 u32 outer_grid_width
    0x24 u32 outer_grid_height   0x28 f32[2] aabb_start
    0x30 f32[2] aabb_end         0x38 i32 floor_type
    0x40 u16 floor_material      0x42 u16 mask
    0x44 u32 heightmap count     0x48 u32 first heightmap
    0x4C u32 outer grid table    0x50 u32 boundary count
    0x54 u32 boundary array
  Boundary (0x70, 16-byte aligned, contiguous per object):
    0x00 f32[3] origin (+ 1.0)   0x10 f32[12] matrix
    0x40 f32 width               0x44 f32 height
    0x48 u32 self                0x54 u32 to_right (0 = none)
    0x5C u32 to_left (0 = none)  0x60 u32 next in storage order
    0x68 f32 z_size
  Outer grid table: u32 per cell, row-major, 0 = no floor in that cell.
  Inner grid: u32 offset to the samples (always 4), then
    inner_grid_size**2 f32 heights, row-major.
"""

import logging
import math
from enum import IntEnum

import numpy as np

from .errors import FormatError
from .offset_allocator import OffsetAllocator, StructReader, StructWriter, align

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Layout constants
# ---------------------------------------------------------------------------

HEADER_SIZE = 0x10
OBJECT_SIZE = 0x60
BOUNDARY_SIZE = 0x70
RECORD_ALIGNMENT = 0x10
INNER_GRID_TAG = 4

# Distance the stored AABB extends past the real geometry
AABB_EXPAND = 0.1

# Fractional distance from a cell edge at which sampling snaps to the
# neighbouring populated cell
SEAM_SNAP = 0.1


class FloorType(IntEnum):
    NONE = -1
    NORMAL = 0
    SLOW_WALK = 1
    DROWN = 2


class FloorMaterial(IntEnum):
    DIRT = 0
    GRASS = 1
    LAVA = 2
    METAL = 3
    METAL_GRATE = 4
    MUCK = 5
    STONE = 6
    TREASURE = 7
    WATER = 8
    WOOD = 9
    WOOD_BRIDGE = 10
    FAST_WATER = 11
    LOOSE_ROCK = 12
    LEAF = 13
    FLOWER = 14
    POLLEN = 15
    COAL = 16
    STRAW_ROOF = 17
    TWIGS = 18
    BONE = 19


def _enum_or_int(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        return value


def _enum_to_json(value):
    if isinstance(value, IntEnum):
        return value.name
    return int(value)


def _enum_from_json(enum_cls, value):
    if isinstance(value, str):
        try:
            return enum_cls[value]
        except KeyError:
            raise ValueError("Unknown {} '{}'".format(enum_cls.__name__, value))
    return _enum_or_int(enum_cls, int(value))


def lerp(a, b, fac):
    return a * (1 - fac) + b * fac


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------

class CollisionBoundary(object):
    """
    One vertical wall of a collision object.

    ``matrix`` is a 3x4 row-major affine transform from world space into
    the wall's local frame: local x is depth, local y runs along the wall
    (0..width) and local z runs up (0..height). ``to_left``/``to_right``
    are indices of the neighbouring walls in the owning object's
    ``bounds`` list, or None.
    """

    def __init__(self, origin=(0.0, 0.0, 0.0), matrix=None, width=0.0,
                 height=0.0, z_size=0.0, to_left=None, to_right=None):
        self.origin = list(origin)
        self.matrix = list(matrix) if matrix is not None else \
            [0.0, 0.0, 1.0, 0.0, 1.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0]
        self.width = width
        self.height = height
        self.z_size = z_size
        self.to_left = to_left
        self.to_right = to_right

    def inverse_matrix(self):
        """
        Return the 4x4 local-to-world transform, or None if the stored
        world-to-local transform cannot be inverted.
        """
        full = np.vstack([
            np.array(self.matrix, dtype=np.float64).reshape(3, 4),
            [0.0, 0.0, 0.0, 1.0],
        ])
        try:
            inverse = np.linalg.inv(full)
        except np.linalg.LinAlgError:
            return None
        if not np.all(np.isfinite(inverse)):
            return None
        return inverse

    def corners(self, inverse=None):
        """
        World-space corners (down-left, down-right, up-right, up-left).

        Returns:
            list: Four [x, y, z] lists, or None for a degenerate transform.
        """
        if inverse is None:
            inverse = self.inverse_matrix()
            if inverse is None:
                return None
        local = np.array([
            [0.0, 0.0, 0.0, 1.0],
            [0.0, self.width, 0.0, 1.0],
            [0.0, self.width, self.height, 1.0],
            [0.0, 0.0, self.height, 1.0],
        ])
        world = local @ inverse.T
        return [[float(v) for v in row[:3]] for row in world]

    def to_dict(self):
        return {
            'origin': [float(v) for v in self.origin],
            'matrix': [float(v) for v in self.matrix],
            'width': float(self.width),
            'height': float(self.height),
            'z_size': float(self.z_size),
            'to_left': self.to_left,
            'to_right': self.to_right,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            origin=data.get('origin', (0.0, 0.0, 0.0)),
            matrix=data.get('matrix'),
            width=data.get('width', 0.0),
            height=data.get('height', 0.0),
            z_size=data.get('z_size', 0.0),
            to_left=data.get('to_left'),
            to_right=data.get('to_right'),
        )


class CollisionObject(object):
    """One collision surface: heightmap floor plus wall boundaries."""

    def __init__(self):
        self.mask = 0
        # -x/-z corner, also the origin of the heightmap grid
        self.aabb_start = [0.0, 0.0]
        self.aabb_end = [0.0, 0.0]
        self.bounds = []
        self.floor_type = FloorType.NORMAL
        # -1 sends the player to a game over
        self.drown_target = -1
        self.water_splash_object = -1
        self.floor_material = FloorMaterial.DIRT
        self.zone = 0

        self.inner_tile_size = 1.0
        self.outer_tile_size = 1.0
        self.outer_grid_width = 0
        self.outer_grid_height = 0
        self.inner_grid_size = 2

        # Row-major, None where a cell has no floor
        self.heightmap_grid = []

    def _cell(self, ox, oz):
        index = self.outer_grid_width * oz + ox
        if index < 0 or index >= len(self.heightmap_grid):
            return None
        return self.heightmap_grid[index]

    def _fallback_height(self):
        if self.bounds:
            return self.bounds[0].origin[1]
        return 0.0

    def get_heightmap_y(self, x, z, expand=True):
        """
        Sample the floor height at world position (*x*, *z*).

        Heights are bilinearly interpolated from the four samples around
        the point. With *expand*, a point outside the populated cells is
        clamped onto the grid and, when it sits within ``SEAM_SNAP`` of a
        cell edge, moved onto a populated neighbour.

        Returns:
            float: The interpolated height, or the first boundary's origin
            height (0.0 without boundaries) when no populated cell applies.
        """
        ox_float = (x - self.aabb_start[0]) / self.outer_tile_size
        oz_float = (z - self.aabb_start[1]) / self.outer_tile_size
        ox = int(math.floor(ox_float))
        oz = int(math.floor(oz_float))
        grid_width = self.outer_grid_width
        grid_height = self.outer_grid_height

        in_range = 0 <= ox < grid_width and 0 <= oz < grid_height
        if expand and (not in_range or self._cell(ox, oz) is None):
            rx = ox_float - ox
            rz = oz_float - oz
            ox = max(0, min(grid_width - 1, ox))
            oz = max(0, min(grid_height - 1, oz))
            if self._cell(ox, oz) is None:
                if rx >= 1 - SEAM_SNAP and ox + 1 < grid_width \
                        and self._cell(ox + 1, oz) is not None:
                    ox += 1
                elif rx <= SEAM_SNAP and ox - 1 >= 0 \
                        and self._cell(ox - 1, oz) is not None:
                    ox -= 1
                elif rz >= 1 - SEAM_SNAP and oz + 1 < grid_height \
                        and self._cell(ox, oz + 1) is not None:
                    oz += 1
                elif rz <= SEAM_SNAP and oz - 1 >= 0 \
                        and self._cell(ox, oz - 1) is not None:
                    oz -= 1

        if not (0 <= ox < grid_width and 0 <= oz < grid_height):
            return self._fallback_height()
        grid = self._cell(ox, oz)
        if grid is None:
            return self._fallback_height()

        inner_size = self.inner_grid_size
        ix_float = (ox_float - ox) * self.outer_tile_size / self.inner_tile_size
        iz_float = (oz_float - oz) * self.outer_tile_size / self.inner_tile_size
        ix = max(0, min(inner_size - 2, int(math.floor(ix_float))))
        iz = max(0, min(inner_size - 2, int(math.floor(iz_float))))

        a = grid[iz * inner_size + ix]
        b = grid[iz * inner_size + ix + 1]
        c = grid[(iz + 1) * inner_size + ix]
        d = grid[(iz + 1) * inner_size + ix + 1]
        # Weights come from the unclamped coordinates so points past the
        # clamped cell keep extrapolating along the same slope.
        fx = ix_float - ix
        fz = iz_float - iz
        return lerp(lerp(a, b, fx), lerp(c, d, fx), fz)

    def boundary_loops(self):
        """
        Find the closed wall loops formed by ``to_right`` links.

        Returns:
            list: One list of boundary indices per loop, in link order.
            Chains that never return to their first boundary are not loops.
        """
        loops = []
        in_loop = set()
        count = len(self.bounds)
        for start in range(count):
            if start in in_loop:
                continue
            chain = [start]
            seen = {start}
            current = self.bounds[start].to_right
            while current is not None and 0 <= current < count \
                    and current not in seen:
                chain.append(current)
                seen.add(current)
                current = self.bounds[current].to_right
            if current == start:
                loops.append(chain)
                in_loop.update(chain)
        return loops

    def to_mesh(self, object_index=None, line_mode=False):
        """
        Build a drawable mesh of the walls and floor.

        See ``collision_mesh.build_collision_mesh``.
        """
        from .collision_mesh import build_collision_mesh
        return build_collision_mesh(self, object_index=object_index,
                                    line_mode=line_mode)

    def to_dict(self):
        return {
            'mask': self.mask,
            'aabb_start': [float(v) for v in self.aabb_start],
            'aabb_end': [float(v) for v in self.aabb_end],
            'floor_type': _enum_to_json(self.floor_type),
            'floor_material': _enum_to_json(self.floor_material),
            'drown_target': self.drown_target,
            'water_splash_object': self.water_splash_object,
            'zone': self.zone,
            'outer_tile_size': float(self.outer_tile_size),
            'inner_tile_size': float(self.inner_tile_size),
            'outer_grid_width': self.outer_grid_width,
            'outer_grid_height': self.outer_grid_height,
            'inner_grid_size': self.inner_grid_size,
            'heightmap_grid': [
                None if cell is None else [float(v) for v in cell]
                for cell in self.heightmap_grid
            ],
            'bounds': [bound.to_dict() for bound in self.bounds],
        }

    @classmethod
    def from_dict(cls, data):
        obj = cls()
        obj.mask = data.get('mask', 0)
        obj.aabb_start = list(data.get('aabb_start', (0.0, 0.0)))
        obj.aabb_end = list(data.get('aabb_end', (0.0, 0.0)))
        obj.floor_type = _enum_from_json(
            FloorType, data.get('floor_type', FloorType.NORMAL))
        obj.floor_material = _enum_from_json(
            FloorMaterial, data.get('floor_material', FloorMaterial.DIRT))
        obj.drown_target = data.get('drown_target', -1)
        obj.water_splash_object = data.get('water_splash_object', -1)
        obj.zone = data.get('zone', 0)
        obj.outer_tile_size = data.get('outer_tile_size', 1.0)
        obj.inner_tile_size = data.get('inner_tile_size', 1.0)
        obj.outer_grid_width = data.get('outer_grid_width', 0)
        obj.outer_grid_height = data.get('outer_grid_height', 0)
        obj.inner_grid_size = data.get('inner_grid_size', 2)
        obj.heightmap_grid = [
            None if cell is None else list(cell)
            for cell in data.get('heightmap_grid', [])
        ]
        obj.bounds = [CollisionBoundary.from_dict(b)
                      for b in data.get('bounds', [])]
        return obj


# ---------------------------------------------------------------------------
# Chunk codec
# ---------------------------------------------------------------------------

def _link_index(stored, bounds_offset, count, field, index):
    """Convert a stored boundary link offset into a boundary index."""
    if stored == 0:
        return None
    delta = stored - bounds_offset
    if delta < 0:
        return None
    if delta % BOUNDARY_SIZE or delta // BOUNDARY_SIZE >= count:
        raise FormatError(
            "Boundary {} has {} offset 0x{:X} outside its boundary array"
            .format(index, field, stored))
    return delta // BOUNDARY_SIZE


def _heightmap_problem(obj):
    """Describe why the object's populated cells cannot be sampled, if so."""
    if all(cell is None for cell in obj.heightmap_grid):
        return None
    if obj.inner_grid_size < 2:
        return "inner grid size {} is below 2".format(obj.inner_grid_size)
    if not obj.outer_tile_size > 0 or not obj.inner_tile_size > 0:
        return "tile sizes {}/{} are not positive".format(
            obj.outer_tile_size, obj.inner_tile_size)
    return None


def _read_object(reader, ptr):
    obj = CollisionObject()
    obj.aabb_start = [reader.f32(ptr + 0x28), reader.f32(ptr + 0x2C)]
    obj.aabb_end = [reader.f32(ptr + 0x30), reader.f32(ptr + 0x34)]
    obj.floor_type = _enum_or_int(FloorType, reader.i32(ptr + 0x38))
    obj.floor_material = _enum_or_int(FloorMaterial, reader.u16(ptr + 0x40))
    obj.mask = reader.u16(ptr + 0x42)
    obj.zone = reader.u8(ptr + 0x0C)
    obj.drown_target = reader.i8(ptr + 0x0D)
    obj.water_splash_object = reader.i16(ptr + 0x0E)

    obj.outer_tile_size = reader.f32(ptr + 0x10)
    obj.inner_tile_size = reader.f32(ptr + 0x14)
    obj.inner_grid_size = reader.u32(ptr + 0x1C)
    obj.outer_grid_width = reader.u32(ptr + 0x20)
    obj.outer_grid_height = reader.u32(ptr + 0x24)

    sample_count = obj.inner_grid_size * obj.inner_grid_size
    outer_grid_ptr = ptr + reader.u32(ptr + 0x4C)
    for i in range(obj.outer_grid_width * obj.outer_grid_height):
        inner_ptr = reader.u32(outer_grid_ptr + i * 4)
        if not inner_ptr:
            obj.heightmap_grid.append(None)
            continue
        inner_ptr += ptr
        inner_ptr += reader.u32(inner_ptr)
        obj.heightmap_grid.append(reader.f32s(inner_ptr, sample_count))
    problem = _heightmap_problem(obj)
    if problem:
        raise FormatError(
            "Collision object at 0x{:X} has a heightmap but {}".format(
                ptr, problem))

    count = reader.u32(ptr + 0x50)
    bounds_offset = reader.u32(ptr + 0x54)
    bounds_ptr = ptr + bounds_offset
    for j in range(count):
        bound_ptr = bounds_ptr + BOUNDARY_SIZE * j
        obj.bounds.append(CollisionBoundary(
            origin=reader.f32s(bound_ptr, 3),
            matrix=reader.f32s(bound_ptr + 0x10, 12),
            width=reader.f32(bound_ptr + 0x40),
            height=reader.f32(bound_ptr + 0x44),
            z_size=reader.f32(bound_ptr + 0x68),
            to_right=_link_index(reader.u32(bound_ptr + 0x54), bounds_offset,
                                 count, 'to_right', j),
            to_left=_link_index(reader.u32(bound_ptr + 0x5C), bounds_offset,
                                count, 'to_left', j),
        ))
    return obj


class CollisionChunk(object):
    """
    All collision objects of one chunk.

    Args:
        objects: List of CollisionObject.
        id: Chunk id, referenced from the world grid.
    """

    def __init__(self, objects=None, id=0):
        self.objects = objects if objects is not None else []
        self.id = id

    @classmethod
    def from_bytes(cls, data):
        """
        Decode a collision chunk payload.

        Raises:
            FormatError: If the payload is truncated or an offset points
                outside it.
        """
        reader = StructReader(data)
        chunk_id = reader.u32(0)
        count = reader.u32(4)
        table_ptr = reader.u32(8)
        if table_ptr + count * 4 > len(reader):
            raise FormatError(
                "Collision chunk claims {} objects but is only {} bytes"
                .format(count, len(reader)))

        objects = []
        for i in range(count):
            objects.append(_read_object(reader, reader.u32(table_ptr + i * 4)))
        log.debug("Decoded collision chunk %d: %d objects", chunk_id, count)
        return cls(objects, chunk_id)

    def _layout(self):
        """First pass: reserve every record of the chunk."""
        allocator = OffsetAllocator(HEADER_SIZE + 4 * len(self.objects))
        plans = []
        for obj in self.objects:
            cell_count = obj.outer_grid_width * obj.outer_grid_height
            if len(obj.heightmap_grid) != cell_count:
                raise ValueError(
                    "Heightmap grid has {} cells, expected {}x{}".format(
                        len(obj.heightmap_grid), obj.outer_grid_width,
                        obj.outer_grid_height))
            problem = _heightmap_problem(obj)
            if problem:
                raise ValueError("Heightmap cannot be sampled: " + problem)
            sample_count = obj.inner_grid_size * obj.inner_grid_size
            # Fresh lists so a sample list shared between cells still gets a
            # record per cell.
            cells = [None if cell is None else list(cell)
                     for cell in obj.heightmap_grid]

            # Kept at the same alignment and order as the game's own files
            # so object/boundary offsets line up with what the grid expects.
            allocator.reserve(obj, OBJECT_SIZE, RECORD_ALIGNMENT)
            for bound in obj.bounds:
                allocator.reserve(bound, BOUNDARY_SIZE, RECORD_ALIGNMENT)
            allocator.reserve(cells, 4 * cell_count)
            for cell in cells:
                if cell is None:
                    continue
                if len(cell) != sample_count:
                    raise ValueError(
                        "Inner heightmap has {} samples, expected {}".format(
                            len(cell), sample_count))
                allocator.reserve(cell, 4 + 4 * sample_count)
            plans.append(cells)
        return allocator, plans

    def _write_boundary(self, writer, allocator, obj, ptr, index):
        bound = obj.bounds[index]
        bound_ptr = allocator.address_of(bound)
        writer.f32s(bound_ptr, bound.origin)
        writer.f32(bound_ptr + 0x0C, 1.0)
        writer.f32s(bound_ptr + 0x10, bound.matrix)
        writer.f32(bound_ptr + 0x40, bound.width)
        writer.f32(bound_ptr + 0x44, bound.height)
        writer.u32(bound_ptr + 0x48, bound_ptr - ptr)
        for field, link in ((0x54, bound.to_right), (0x5C, bound.to_left)):
            if link is None:
                continue
            if not 0 <= link < len(obj.bounds):
                raise ValueError(
                    "Boundary {} links to missing boundary {}".format(
                        index, link))
            writer.u32(bound_ptr + field,
                       allocator.relative(obj.bounds[link], ptr))
        following = obj.bounds[(index + 1) % len(obj.bounds)]
        writer.u32(bound_ptr + 0x60, allocator.relative(following, ptr))
        writer.f32(bound_ptr + 0x68, bound.z_size)

    def to_bytes(self):
        """Encode the chunk payload."""
        allocator, plans = self._layout()
        writer = StructWriter(align(allocator.size, RECORD_ALIGNMENT))

        writer.u32(0, self.id)
        writer.u32(4, len(self.objects))
        writer.u32(8, HEADER_SIZE)
        for index, (obj, cells) in enumerate(zip(self.objects, plans)):
            ptr = allocator.address_of(obj)
            writer.u32(HEADER_SIZE + index * 4, ptr)

            writer.u32(ptr + 0x04, self.id)
            writer.u32(ptr + 0x08, index)
            writer.u8(ptr + 0x0C, obj.zone)
            writer.i8(ptr + 0x0D, obj.drown_target)
            writer.i16(ptr + 0x0E, obj.water_splash_object)
            writer.f32(ptr + 0x10, obj.outer_tile_size)
            writer.f32(ptr + 0x14, obj.inner_tile_size)
            writer.u32(ptr + 0x18, obj.inner_grid_size - 1)
            writer.u32(ptr + 0x1C, obj.inner_grid_size)
            writer.u32(ptr + 0x20, obj.outer_grid_width)
            writer.u32(ptr + 0x24, obj.outer_grid_height)
            writer.f32s(ptr + 0x28, obj.aabb_start)
            writer.f32s(ptr + 0x30, obj.aabb_end)
            writer.i32(ptr + 0x38, int(obj.floor_type))
            writer.u16(ptr + 0x40, int(obj.floor_material))
            writer.u16(ptr + 0x42, obj.mask)

            present = [cell for cell in cells if cell is not None]
            writer.u32(ptr + 0x44, len(present))
            if present:
                writer.u32(ptr + 0x48, allocator.relative(present[0], ptr))
            writer.u32(ptr + 0x4C, allocator.relative(cells, ptr))
            writer.u32(ptr + 0x50, len(obj.bounds))
            if obj.bounds:
                writer.u32(ptr + 0x54, allocator.relative(obj.bounds[0], ptr))

            for bound_index in range(len(obj.bounds)):
                self._write_boundary(writer, allocator, obj, ptr, bound_index)

            grid_ptr = allocator.address_of(cells)
            for i, cell in enumerate(cells):
                if cell is None:
                    continue
                cell_ptr = allocator.address_of(cell)
                writer.u32(grid_ptr + i * 4, cell_ptr - ptr)
                writer.u32(cell_ptr, INNER_GRID_TAG)
                writer.f32s(cell_ptr + 4, cell)

        log.debug("Encoded collision chunk %d: %d objects, %d bytes",
                  self.id, len(self.objects), len(writer.buffer))
        return writer.getvalue()

    def to_dict(self):
        return {
            'id': self.id,
            'objects': [obj.to_dict() for obj in self.objects],
        }

    @classmethod
    def from_dict(cls, data):
        return cls([CollisionObject.from_dict(o)
                    for o in data.get('objects', [])], data.get('id', 0))
