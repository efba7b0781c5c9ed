"""
Tests for the world grid chunk codec and tile management.

Tests:
  Codec: binary round trip, header layout, boundary index encoding,
         truncated payloads, bad boundary references, JSON round trip
  Tiles: get_tiles_in_rect growth, expand_grid, trim, out-of-range tiles
"""

import json
import os
import struct
import sys
import traceback

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from world_collision.errors import FormatError
from world_collision.grid import GridChunk, GridCollisionRef, GridItem


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


def _u32(data, offset):
    return struct.unpack_from('<I', data, offset)[0]


def _f32(data, offset):
    return struct.unpack_from('<f', data, offset)[0]


def _sample_grid():
    item = GridItem(3, [GridCollisionRef(0, 1, [0, 2]),
                        GridCollisionRef(1, 0, [])])
    return GridChunk([item, None], width=2, height=1, x=0.0, z=0.0,
                     scale=10.0, num_collision_chunks=2)


def _keys(item):
    return sorted(ref.key() for ref in item.collision_refs)


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------

def test_roundtrip():
    grid = _sample_grid()
    decoded = GridChunk.from_bytes(grid.to_bytes())
    assert decoded.to_dict() == grid.to_dict()
    assert decoded.get_tile(1, 0) is None
    assert decoded.get_tile(0, 0).load_id == 3
    assert _keys(decoded.get_tile(0, 0)) == _keys(grid.get_tile(0, 0))


def test_header_layout():
    data = _sample_grid().to_bytes()
    assert _f32(data, 0x00) == 0.0
    assert _f32(data, 0x04) == 20.0
    assert _f32(data, 0x0C) == 10.0
    assert _f32(data, 0x10) == 10.0
    assert _u32(data, 0x14) == 2
    assert _u32(data, 0x18) == 1
    # Header, then the per-chunk table, then the cell table
    assert _u32(data, 0x1C) == 0x28 + 4 * 2
    assert _u32(data, 0x20) == 2
    assert _u32(data, 0x24) == 0x28
    assert _u32(data, 0x30 + 4) == 0

    item_ptr = _u32(data, 0x30)
    assert item_ptr == 0x38
    assert _u32(data, item_ptr + 0x08) == 2
    refs_ptr = item_ptr + _u32(data, item_ptr + 0x0C)
    assert refs_ptr == item_ptr + 0x1C
    assert struct.unpack_from('<H', data, item_ptr + 0x18)[0] == 3

    assert _u32(data, refs_ptr) == 0
    assert _u32(data, refs_ptr + 0x04) == 1
    assert _u32(data, refs_ptr + 0x0C) == 2
    indices_ptr = refs_ptr + _u32(data, refs_ptr + 0x10)
    assert _u32(data, indices_ptr) == 0x60
    assert _u32(data, indices_ptr + 4) == 2 * 0x70 + 0x60
    assert _u32(data, refs_ptr + 0x14 + 0x0C) == 0


def test_empty_grid_encodes():
    grid = GridChunk(width=0, height=0)
    decoded = GridChunk.from_bytes(grid.to_bytes())
    assert decoded.width == 0
    assert decoded.height == 0
    assert decoded.grid == []


def test_truncated_payload():
    data = _sample_grid().to_bytes()
    for cut in (0, 0x20, 0x34, len(data) - 4):
        try:
            GridChunk.from_bytes(data[:cut])
        except FormatError:
            continue
        raise AssertionError("Payload cut at {} decoded".format(cut))


def test_bad_boundary_reference():
    data = bytearray(_sample_grid().to_bytes())
    item_ptr = _u32(data, 0x30)
    refs_ptr = item_ptr + _u32(data, item_ptr + 0x0C)
    indices_ptr = refs_ptr + _u32(data, refs_ptr + 0x10)
    struct.pack_into('<I', data, indices_ptr, 0x64)
    try:
        GridChunk.from_bytes(bytes(data))
    except FormatError:
        return
    raise AssertionError("Boundary reference 0x64 decoded")


def test_json_roundtrip():
    grid = _sample_grid()
    data = json.loads(json.dumps(grid.to_dict()))
    assert data['grid'][1] is None
    restored = GridChunk.from_dict(data)
    assert restored.to_bytes() == grid.to_bytes()


# ---------------------------------------------------------------------------
# Tiles
# ---------------------------------------------------------------------------

def test_get_tiles_in_rect_grows_grid():
    grid = GridChunk(width=1, height=1, x=0.0, z=0.0, scale=25.0)
    tiles = grid.get_tiles_in_rect(-30, -30, 10, 10)
    assert grid.width >= 2
    assert grid.x <= -25
    assert grid.width == 3 and grid.height == 3
    assert grid.x == -50.0 and grid.z == -50.0
    assert len(tiles) == 9
    for x, z in tiles:
        grid.get_or_create_tile(x, z)


def test_get_tiles_in_rect_inside():
    grid = GridChunk(width=4, height=4, x=0.0, z=0.0, scale=10.0)
    tiles = grid.get_tiles_in_rect(12, 5, 28, 15)
    assert tiles == [(1, 0), (2, 0), (1, 1), (2, 1)]
    assert grid.width == 4 and grid.x == 0.0


def test_expand_keeps_world_position():
    grid = GridChunk(width=2, height=2, x=0.0, z=0.0, scale=10.0)
    item = grid.get_or_create_tile(1, 1)
    item.load_id = 1
    grid.expand_grid(1, 2, 3, 4)
    assert grid.width == 6 and grid.height == 8
    assert grid.x == -10.0 and grid.z == -20.0
    assert grid.get_tile(2, 3) is item
    assert grid.tile_bounds(2, 3) == (10.0, 10.0, 20.0, 20.0)


def test_trim():
    grid = GridChunk(width=2, height=2, x=0.0, z=0.0, scale=10.0)
    item = grid.get_or_create_tile(1, 1)
    item.load_id = 1
    grid.get_or_create_tile(0, 0)
    grid.expand_grid(1, 2, 3, 4)
    grid.trim()
    assert grid.width == 1 and grid.height == 1
    assert abs(grid.x - 10.0) < 1e-9
    assert abs(grid.z - 10.0) < 1e-9
    assert grid.get_tile(0, 0) is item


def test_trim_idempotent():
    grid = GridChunk(width=5, height=5, x=0.0, z=0.0, scale=10.0)
    grid.get_or_create_tile(1, 2).collision_refs.append(
        GridCollisionRef(0, 0, [1]))
    grid.get_or_create_tile(3, 3).load_id = 9
    grid.trim()
    first = grid.to_dict()
    grid.trim()
    second = grid.to_dict()
    assert first['width'] == second['width'] == 3
    assert first['height'] == second['height'] == 2
    assert abs(first['x'] - second['x']) < 1e-9
    assert first['grid'] == second['grid']


def test_expand_then_trim_restores_grid():
    grid = GridChunk(width=1, height=1, x=0.0, z=0.0, scale=25.0)
    item = grid.get_or_create_tile(0, 0)
    item.load_id = 2
    grid.expand_grid(2, 1, 3, 4)
    grid.trim()
    assert grid.width == 1 and grid.height == 1
    assert abs(grid.x) < 1e-9 and abs(grid.z) < 1e-9
    assert grid.get_tile(0, 0) is item


def test_trim_empty_grid():
    grid = GridChunk(width=3, height=3, x=5.0, z=5.0, scale=10.0)
    grid.get_or_create_tile(1, 1)
    grid.trim()
    assert grid.width == 0 and grid.height == 0
    assert grid.grid == []
    assert grid.x == 5.0


def test_tile_out_of_range():
    grid = GridChunk(width=1, height=1)
    try:
        grid.get_tile(5, 0)
    except AssertionError:
        return
    raise AssertionError("Out of range tile returned")


def main():
    print("=" * 70)
    print("World grid tests")
    print("=" * 70)

    print("\n--- Codec ---")
    _test("roundtrip", test_roundtrip)
    _test("header_layout", test_header_layout)
    _test("empty_grid_encodes", test_empty_grid_encodes)
    _test("truncated_payload", test_truncated_payload)
    _test("bad_boundary_reference", test_bad_boundary_reference)
    _test("json_roundtrip", test_json_roundtrip)

    print("\n--- Tiles ---")
    _test("get_tiles_in_rect_grows_grid", test_get_tiles_in_rect_grows_grid)
    _test("get_tiles_in_rect_inside", test_get_tiles_in_rect_inside)
    _test("expand_keeps_world_position", test_expand_keeps_world_position)
    _test("trim", test_trim)
    _test("trim_idempotent", test_trim_idempotent)
    _test("expand_then_trim_restores_grid",
          test_expand_then_trim_restores_grid)
    _test("trim_empty_grid", test_trim_empty_grid)
    _test("tile_out_of_range", test_tile_out_of_range)

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
