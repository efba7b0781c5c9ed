"""
Mesh generation for collision objects.

Turns one CollisionObject into a flat vertex/index buffer, either as
filled triangles or as line segments for wireframe display:

  - every wall boundary becomes one quad;
  - every populated heightmap cell becomes a grid of samples.

Closed wall loops mask the floor. A heightmap cell lying completely inside
the loops is emitted as its regular sample grid. Any other cell is split
into its inner sub-cells, each clipped against the loops, and the pieces
are triangulated with heights resampled through ``get_heightmap_y``.

Every vertex is tagged in ``types``: 0 for wall vertices, 1 for floor
vertices.
"""

import logging

from . import polygon_ops
from .errors import UnsupportedGeometryError

log = logging.getLogger(__name__)

# Squared horizontal distance allowed between the top and bottom of a
# wall's vertical edges
NON_VERTICAL_EPSILON = 0.00001

TYPE_WALL = 0
TYPE_FLOOR = 1


def _distance_xz_sq(a, b):
    dx = b[0] - a[0]
    dz = b[2] - a[2]
    return dx * dx + dz * dz


class _MeshBuffers(object):

    def __init__(self, line_mode):
        self.line_mode = line_mode
        self.vertices = []
        self.indices = []
        self.types = []

    def add_vertex(self, position, vertex_type):
        self.vertices.append(position)
        self.types.append(vertex_type)
        return len(self.vertices) - 1

    def add_quad(self, a, b, c, d):
        if self.line_mode:
            self.indices.extend((a, b, b, c, c, d, d, a))
        else:
            self.indices.extend((a, b, c, a, c, d))

    def result(self):
        return {
            'vertices': [v for position in self.vertices for v in position],
            'indices': self.indices,
            'types': self.types,
        }


def _add_walls(obj, mesh, label):
    """Emit one quad per boundary; returns the per-boundary inverses."""
    inverses = []
    for index, bound in enumerate(obj.bounds):
        inverse = bound.inverse_matrix()
        if inverse is None:
            log.warning("Collision object %s boundary %d has a degenerate "
                        "matrix, skipping it", label, index)
            inverses.append(None)
            continue
        dl, dr, ur, ul = bound.corners(inverse)
        if _distance_xz_sq(dl, ul) > NON_VERTICAL_EPSILON or \
                _distance_xz_sq(dr, ur) > NON_VERTICAL_EPSILON:
            raise UnsupportedGeometryError(
                "Encountered unsupported collision object {} with "
                "non-vertical walls (boundary {})".format(label, index))
        inverses.append(inverse)

        first = len(mesh.vertices)
        for corner in (dl, dr, ur, ul):
            mesh.add_vertex(corner, TYPE_WALL)
        mesh.add_quad(first, first + 1, first + 2, first + 3)
    return inverses


def _wall_loops(obj, inverses):
    """Closed wall loops as rings of (x, -z) points along the wall tops."""
    loops = []
    for chain in obj.boundary_loops():
        ring = []
        for index in chain:
            if inverses[index] is None:
                continue
            ul = obj.bounds[index].corners(inverses[index])[3]
            ring.append((ul[0], -ul[2]))
        if len(ring) < 3:
            continue
        ring.append(ring[0])
        loops.append(ring)
    return loops


def _square(x0, z0, size):
    ring = [
        (x0, -z0),
        (x0, -(z0 + size)),
        (x0 + size, -(z0 + size)),
        (x0 + size, -z0),
    ]
    ring.append(ring[0])
    return ring


def _add_regular_cell(obj, mesh, samples, base_x, base_z):
    """Emit a cell's full sample grid using the stored heights."""
    size = obj.inner_grid_size
    step = obj.inner_tile_size
    first = len(mesh.vertices)
    for iz in range(size):
        for ix in range(size):
            mesh.add_vertex([
                ix * step + base_x,
                samples[iz * size + ix],
                iz * step + base_z,
            ], TYPE_FLOOR)

    if mesh.line_mode:
        for iz in range(size):
            for ix in range(size):
                base = first + iz * size + ix
                if iz < size - 1:
                    mesh.indices.extend((base, base + size))
                if ix < size - 1:
                    mesh.indices.extend((base, base + 1))
        return

    for iz in range(size - 1):
        for ix in range(size - 1):
            base = first + iz * size + ix
            mesh.indices.extend((
                base, base + size, base + 1,
                base + 1, base + size, base + size + 1,
            ))


def _add_floor_piece(obj, mesh, rings):
    """Emit one clipped floor polygon (open rings, exterior first)."""
    if mesh.line_mode:
        for ring in rings:
            first = len(mesh.vertices)
            for i, (px, py) in enumerate(ring):
                mesh.add_vertex(
                    [px, obj.get_heightmap_y(px, -py, True), -py], TYPE_FLOOR)
                following = first if i == len(ring) - 1 else first + i + 1
                mesh.indices.extend((first + i, following))
        return

    points, _ = polygon_ops.flatten(rings)
    triangles = polygon_ops.triangulate(rings)
    remap = []
    for px, py in points:
        remap.append(mesh.add_vertex(
            [px, obj.get_heightmap_y(px, -py, True), -py], TYPE_FLOOR))
    mesh.indices.extend(remap[i] for i in triangles)


def _add_clipped_cell(obj, mesh, loops, base_x, base_z):
    """Clip each inner sub-cell against the wall loops and emit the rest."""
    step = obj.inner_tile_size
    for iz in range(obj.inner_grid_size - 1):
        for ix in range(obj.inner_grid_size - 1):
            sub_cell = _square(base_x + ix * step, base_z + iz * step, step)
            for polygon in polygon_ops.intersection([sub_cell], loops):
                if not polygon or len(polygon[0]) < 4:
                    continue
                rings = [ring[:-1] for ring in polygon if len(ring) >= 4]
                _add_floor_piece(obj, mesh, rings)


def build_collision_mesh(obj, object_index=None, line_mode=False):
    """
    Build a mesh of a collision object's walls and floor.

    Args:
        obj: CollisionObject to convert.
        object_index: Index of the object in its chunk, used in messages.
        line_mode: Emit line segment pairs instead of triangles.

    Returns:
        dict: {
            'vertices': flat [x, y, z, ...] positions,
            'indices': triangle (or line) indices,
            'types': per-vertex tag, 0 = wall, 1 = floor,
        }

    Raises:
        UnsupportedGeometryError: If a wall's vertical edges are not
            vertical in world space.
    """
    label = object_index if object_index is not None else '?'
    mesh = _MeshBuffers(line_mode)

    inverses = _add_walls(obj, mesh, label)
    loops = _wall_loops(obj, inverses)

    if obj.outer_grid_width > 0 and obj.outer_grid_height > 0:
        outer = obj.outer_tile_size
        for oz in range(obj.outer_grid_height):
            for ox in range(obj.outer_grid_width):
                index = oz * obj.outer_grid_width + ox
                if index >= len(obj.heightmap_grid):
                    continue
                samples = obj.heightmap_grid[index]
                if samples is None:
                    continue
                base_x = obj.aabb_start[0] + ox * outer
                base_z = obj.aabb_start[1] + oz * outer

                cell = _square(base_x, base_z, outer)
                if loops and polygon_ops.difference([cell], loops):
                    _add_clipped_cell(obj, mesh, loops, base_x, base_z)
                else:
                    _add_regular_cell(obj, mesh, samples, base_x, base_z)

    log.debug("Collision object %s mesh: %d vertices, %d indices",
              label, len(mesh.vertices), len(mesh.indices))
    return mesh.result()
