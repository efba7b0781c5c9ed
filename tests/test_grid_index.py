"""
Tests for indexing collision chunks into the world grid.

Tests:
  add_collision: tile coverage, per-tile boundary filtering, splash
                 companions, re-adding a chunk, collision chunk count
  remove_collision: restores the previous references
  rebuild: through MemoryContainer, stale references, trimming
"""

import os
import sys
import traceback

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from world_collision import rebuild_grid_bytes
from world_collision.collision import CollisionBoundary
from world_collision.container import ChunkType, MemoryContainer
from world_collision.grid import GridChunk, GridCollisionRef, GridItem
from world_collision.grid_index import (splash_companions, wall_footprint,
                                        WALL_THICKNESS)

from collision_builders import (make_chunk, make_flat_object,
                                make_square_loop, make_walled_object,
                                make_wall)


_PASSED = 0
_FAILED = 0
_ERRORS = []


def _test(name, fn):
    """Run a test function, track pass/fail."""
    global _PASSED, _FAILED
    try:
        fn()
        _PASSED += 1
        print("  PASS  {}".format(name))
    except Exception as e:
        _FAILED += 1
        _ERRORS.append((name, e))
        print("  FAIL  {} -- {}".format(name, e))
        traceback.print_exc()


def _all_refs(grid):
    refs = []
    for item in grid.grid:
        if item is not None:
            refs.extend(item.collision_refs)
    return refs


def _snapshot(grid):
    return [None if item is None else
            (item.load_id, sorted(ref.key() for ref in item.collision_refs))
            for item in grid.grid]


def _big_room(chunk_id=0):
    obj = make_flat_object(0.0, 0.0, 4, 4)
    obj.bounds = make_square_loop(0.0, 0.0, 4.0, 4.0)
    return make_chunk([obj], chunk_id)


# ---------------------------------------------------------------------------
# add_collision
# ---------------------------------------------------------------------------

def test_wall_footprint():
    footprint = wall_footprint(make_wall(0.0, 0.0, 4.0, 0.0))
    minx, minz, maxx, maxz = footprint.bounds
    assert abs(minx + 0.04) < 1e-9 and abs(maxx - 4.04) < 1e-9
    assert abs(minz + WALL_THICKNESS) < 1e-9
    assert abs(maxz - WALL_THICKNESS) < 1e-9
    assert wall_footprint(CollisionBoundary(matrix=[0.0] * 12)) is None


def test_single_tile_lists_all_walls():
    grid = GridChunk()
    grid.add_collision(make_chunk([make_walled_object()], 0))
    assert grid.width == 1 and grid.height == 1
    refs = grid.get_tile(0, 0).collision_refs
    assert len(refs) == 1
    assert refs[0].chunk_id == 0 and refs[0].id == 0
    assert sorted(refs[0].boundary_indices) == [0, 1, 2, 3]


def test_boundary_filtering_per_tile():
    grid = GridChunk(width=1, height=1, x=0.0, z=0.0, scale=1.0)
    grid.add_collision(_big_room())

    # AABB (0..4) plus the margin covers tiles -2..5
    assert grid.width == 8 and grid.height == 8
    assert grid.x == -2.0 and grid.z == -2.0
    assert len(_all_refs(grid)) == 64

    # Tile [0,1]x[0,1] touches the walls along z = 0 and x = 0
    corner = grid.get_tile(2, 2).collision_refs[0]
    assert sorted(corner.boundary_indices) == [0, 3]
    # Tile [2,3]x[2,3] sits in the middle of the room
    middle = grid.get_tile(4, 4).collision_refs[0]
    assert middle.boundary_indices == []
    # Tile [3,4]x[0,1] touches the walls along z = 0 and x = 4
    edge = grid.get_tile(5, 2).collision_refs[0]
    assert sorted(edge.boundary_indices) == [0, 1]


def test_splash_companions_skipped():
    surface = make_walled_object()
    surface.water_splash_object = 1
    splash = make_walled_object()
    chunk = make_chunk([surface, splash], 2)
    assert splash_companions(chunk) == {1}

    grid = GridChunk()
    grid.add_collision(chunk)
    assert sorted(set(ref.id for ref in _all_refs(grid))) == [0]


def test_self_splash_still_indexed():
    obj = make_walled_object()
    obj.water_splash_object = 0
    chunk = make_chunk([obj], 0)
    assert splash_companions(chunk) == set()
    grid = GridChunk()
    grid.add_collision(chunk)
    assert len(_all_refs(grid)) == 1


def test_add_twice_does_not_duplicate():
    grid = GridChunk(width=1, height=1, x=0.0, z=0.0, scale=1.0)
    chunk = _big_room(3)
    grid.add_collision(chunk)
    first = _snapshot(grid)
    grid.add_collision(chunk)
    assert _snapshot(grid) == first


def test_num_collision_chunks_grows():
    grid = GridChunk()
    assert grid.num_collision_chunks == 1
    grid.add_collision(make_chunk([make_walled_object()], 4))
    assert grid.num_collision_chunks == 5
    grid.add_collision(make_chunk([make_walled_object()], 2))
    assert grid.num_collision_chunks == 5


def test_degenerate_boundary_left_out():
    obj = make_walled_object()
    obj.bounds.append(CollisionBoundary(matrix=[0.0] * 12))
    grid = GridChunk()
    grid.add_collision(make_chunk([obj], 0))
    ref = grid.get_tile(0, 0).collision_refs[0]
    assert sorted(ref.boundary_indices) == [0, 1, 2, 3]


# ---------------------------------------------------------------------------
# remove_collision
# ---------------------------------------------------------------------------

def test_remove_restores_previous_refs():
    grid = GridChunk(width=1, height=1, x=0.0, z=0.0, scale=1.0)
    grid.grid[0] = GridItem(5, [GridCollisionRef(7, 0, [1])])
    grid.add_collision(_big_room(3))
    assert any(ref.chunk_id == 3 for ref in _all_refs(grid))

    grid.remove_collision(3)
    assert all(ref.chunk_id != 3 for ref in _all_refs(grid))
    kept = [ref.key() for ref in _all_refs(grid)]
    assert kept == [(7, 0, frozenset([1]))]
    # The old tile moved with the growth but kept its world position
    assert grid.get_tile(2, 2).load_id == 5


def test_remove_by_chunk_object():
    grid = GridChunk()
    chunk = make_chunk([make_walled_object()], 1)
    grid.add_collision(chunk)
    grid.remove_collision(chunk)
    assert _all_refs(grid) == []


# ---------------------------------------------------------------------------
# rebuild
# ---------------------------------------------------------------------------

def test_rebuild_through_container():
    stale = GridChunk()
    stale.get_or_create_tile(0, 0).collision_refs.append(
        GridCollisionRef(9, 0, [0]))

    container = MemoryContainer()
    container.add_chunk(stale.to_bytes(), ChunkType.WORLD_GRID)
    container.add_chunk(make_chunk([make_walled_object()], 2).to_bytes(),
                        ChunkType.COLLISION)
    container.add_chunk(b'\x00' * 16, ChunkType.IMAGE)

    grid = container.rebuild_grid()
    stored = GridChunk.from_bytes(
        container.get_chunk_of_type(ChunkType.WORLD_GRID).contents)
    assert grid.to_bytes() == \
        container.get_chunk_of_type(ChunkType.WORLD_GRID).contents

    refs = _all_refs(stored)
    assert [ref.chunk_id for ref in refs] == [2]
    assert stored.num_collision_chunks == 3
    assert stored.width == 1 and stored.height == 1


def test_rebuild_trims_to_collision():
    grid = GridChunk(width=6, height=6, x=-51.175, z=-51.175, scale=25.0)
    grid.get_or_create_tile(5, 5).collision_refs.append(
        GridCollisionRef(4, 0, []))
    container = MemoryContainer()
    container.add_chunk(make_chunk([make_walled_object()], 0).to_bytes(),
                        ChunkType.COLLISION)

    grid.rebuild(container)
    assert grid.width == 1 and grid.height == 1
    assert abs(grid.x + 1.175) < 1e-6 and abs(grid.z + 1.175) < 1e-6

    untrimmed = GridChunk(width=6, height=6, x=-50.0, z=-50.0, scale=25.0)
    untrimmed.rebuild(container, do_trim=False)
    assert untrimmed.width == 6


def test_rebuild_without_collision():
    grid_bytes = rebuild_grid_bytes(GridChunk().to_bytes(), [])
    grid = GridChunk.from_bytes(grid_bytes)
    assert grid.width == 0 and grid.height == 0


def test_container_missing_chunk():
    container = MemoryContainer()
    container.add_chunk(b'', ChunkType.COLLISION)
    try:
        container.get_chunk_of_type(ChunkType.COLLISION, 1)
    except KeyError:
        pass
    else:
        raise AssertionError("Missing chunk index returned")
    try:
        container.rebuild_grid()
    except KeyError:
        return
    raise AssertionError("Container without a grid was rebuilt")


def main():
    print("=" * 70)
    print("Grid index tests")
    print("=" * 70)

    print("\n--- add_collision ---")
    _test("wall_footprint", test_wall_footprint)
    _test("single_tile_lists_all_walls", test_single_tile_lists_all_walls)
    _test("boundary_filtering_per_tile", test_boundary_filtering_per_tile)
    _test("splash_companions_skipped", test_splash_companions_skipped)
    _test("self_splash_still_indexed", test_self_splash_still_indexed)
    _test("add_twice_does_not_duplicate", test_add_twice_does_not_duplicate)
    _test("num_collision_chunks_grows", test_num_collision_chunks_grows)
    _test("degenerate_boundary_left_out", test_degenerate_boundary_left_out)

    print("\n--- remove_collision ---")
    _test("remove_restores_previous_refs", test_remove_restores_previous_refs)
    _test("remove_by_chunk_object", test_remove_by_chunk_object)

    print("\n--- rebuild ---")
    _test("rebuild_through_container", test_rebuild_through_container)
    _test("rebuild_trims_to_collision", test_rebuild_trims_to_collision)
    _test("rebuild_without_collision", test_rebuild_without_collision)
    _test("container_missing_chunk", test_container_missing_chunk)

    print("\n" + "=" * 70)
    print("Results: {} passed, {} failed".format(_PASSED, _FAILED))
    if _ERRORS:
        print("\nFailures:")
        for name, err in _ERRORS:
            print("  {} -- {}".format(name, err))
    print("=" * 70)
    return 0 if _FAILED == 0 else 1


if __name__ == '__main__':
    sys.exit(main())
