"""
Collision indexing for the world grid.

For every collision object, the grid records which tiles the object
touches and, per tile, which of its wall boundaries actually reach into
that tile, so a query over a small tile does not have to test every wall
of a large object.

The tolerances below were matched against the game's own grids rather
than derived, except WALL_EXTEND_RATIO.
"""

import logging

from shapely.geometry import Polygon, box

from .container import ChunkType
from .collision import CollisionChunk
from .grid import GridCollisionRef

log = logging.getLogger(__name__)

# Growth of an object's AABB before enumerating the tiles it covers
GRID_AABB_MARGIN = 1.075

# Growth of each tile square before testing walls against it
TILE_PADDING = 0.1075

# Half the thickness given to a wall's footprint on either side
WALL_THICKNESS = 0.3

# Smallest distance a wall footprint extends past its vertical edges
WALL_MIN_EXTEND = 0.02

# Extension past the vertical edges as a fraction of the wall width.
# Chosen here, not matched against the game's grids.
WALL_EXTEND_RATIO = 0.01


def wall_footprint(bound):
    """
    Padded top-down footprint of a wall boundary.

    The wall's bottom edge is extended past both vertical edges and given
    ``WALL_THICKNESS`` depth on each side, then mapped into world space.

    Returns:
        shapely Polygon in (x, z), or None for a degenerate transform.
    """
    inverse = bound.inverse_matrix()
    if inverse is None:
        return None
    extend = max(WALL_MIN_EXTEND, abs(bound.width) * WALL_EXTEND_RATIO)
    low = min(0.0, bound.width) - extend
    high = max(0.0, bound.width) + extend
    corners = []
    for depth, along in ((-WALL_THICKNESS, low), (-WALL_THICKNESS, high),
                         (WALL_THICKNESS, high), (WALL_THICKNESS, low)):
        world = inverse @ (depth, along, 0.0, 1.0)
        corners.append((float(world[0]), float(world[2])))
    return Polygon(corners)


def splash_companions(chunk):
    """
    Indices of objects that only exist as another object's splash visual.

    An object is a companion when some other object names it as its
    ``water_splash_object``. An object naming itself is still indexed.
    """
    count = len(chunk.objects)
    targets = set()
    for index, obj in enumerate(chunk.objects):
        target = obj.water_splash_object
        if 0 <= target < count and target != index:
            targets.add(target)
    return {index for index in targets
            if chunk.objects[index].water_splash_object != index}


def _chunk_id(chunk_or_id):
    if isinstance(chunk_or_id, CollisionChunk):
        return chunk_or_id.id
    return int(chunk_or_id)


def remove_collision(grid, chunk_or_id):
    """Remove every reference to a collision chunk from the grid."""
    chunk_id = _chunk_id(chunk_or_id)
    removed = 0
    for item in grid.grid:
        if item is None:
            continue
        kept = [ref for ref in item.collision_refs if ref.chunk_id != chunk_id]
        removed += len(item.collision_refs) - len(kept)
        item.collision_refs = kept
    if removed:
        log.debug("Removed %d grid references to collision chunk %d",
                  removed, chunk_id)


def add_collision(grid, chunk):
    """
    Index every object of a collision chunk into the grid.

    Existing references to the same chunk id are dropped first, so adding
    a chunk again after editing it refreshes its entries. The grid grows
    as needed to cover the chunk.
    """
    remove_collision(grid, chunk.id)
    grid.num_collision_chunks = max(grid.num_collision_chunks, chunk.id + 1)
    skipped = splash_companions(chunk)

    ref_count = 0
    for index, obj in enumerate(chunk.objects):
        if index in skipped:
            continue

        footprints = []
        for bound_index, bound in enumerate(obj.bounds):
            footprint = wall_footprint(bound)
            if footprint is None:
                log.warning("Collision chunk %d object %d boundary %d has a "
                            "degenerate matrix, leaving it out of the grid",
                            chunk.id, index, bound_index)
                continue
            footprints.append((bound_index, footprint))

        tiles = grid.get_tiles_in_rect(
            obj.aabb_start[0] - GRID_AABB_MARGIN,
            obj.aabb_start[1] - GRID_AABB_MARGIN,
            obj.aabb_end[0] + GRID_AABB_MARGIN,
            obj.aabb_end[1] + GRID_AABB_MARGIN)
        for x, z in tiles:
            minx, minz, maxx, maxz = grid.tile_bounds(x, z)
            square = box(minx - TILE_PADDING, minz - TILE_PADDING,
                         maxx + TILE_PADDING, maxz + TILE_PADDING)
            indices = [bound_index for bound_index, footprint in footprints
                       if footprint.intersects(square)]
            grid.get_or_create_tile(x, z).collision_refs.append(
                GridCollisionRef(chunk.id, index, indices))
            ref_count += 1

    log.debug("Indexed collision chunk %d: %d objects, %d tile references",
              chunk.id, len(chunk.objects) - len(skipped), ref_count)


def rebuild(grid, container, do_trim=True):
    """
    Rebuild all collision references from a container's collision chunks.

    Args:
        grid: GridChunk to rebuild in place.
        container: Anything with ``get_chunks_of_type(type)`` returning
            the payload bytes of each chunk of that type.
        do_trim: Trim empty tiles afterwards (see ``GridChunk.trim``).
    """
    for item in grid.grid:
        if item is not None:
            item.collision_refs = []

    chunk_count = 0
    for payload in container.get_chunks_of_type(ChunkType.COLLISION):
        add_collision(grid, CollisionChunk.from_bytes(payload))
        chunk_count += 1

    if do_trim:
        grid.trim()
    log.info("Rebuilt grid from %d collision chunks: %dx%d tiles",
             chunk_count, grid.width, grid.height)
