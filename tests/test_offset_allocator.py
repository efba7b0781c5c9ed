"""
Tests for the two-pass offset allocator and the struct field helpers.

Tests:
  align, reserve alignment, identity keyed reservations, double
  reservation, missing reservation, StructWriter/StructReader fields,
  StructReader bounds checking
"""

import os
import sys
import traceback

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from world_collision.errors import FormatError
from world_collision.offset_allocator import (OffsetAllocator, NodeIds,
                                              StructReader, StructWriter,
                                              align)


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


def test_align():
    assert align(0, 16) == 0
    assert align(1, 16) == 16
    assert align(16, 16) == 16
    assert align(0x14, 4) == 0x14
    assert align(0x15, 4) == 0x18


def test_reserve_honours_alignment():
    allocator = OffsetAllocator(0x14)
    a = object()
    b = object()
    assert allocator.reserve(a, 0x60, 0x10) == 0x20
    assert allocator.size == 0x80
    assert allocator.reserve(b, 3) == 0x80
    assert allocator.size == 0x83
    c = object()
    assert allocator.reserve(c, 4) == 0x84


def test_reservations_keyed_by_identity():
    allocator = OffsetAllocator()
    first = [1.0, 2.0]
    second = [1.0, 2.0]
    assert first == second
    addr_first = allocator.reserve(first, 8)
    addr_second = allocator.reserve(second, 8)
    assert addr_first != addr_second
    assert allocator.address_of(first) == addr_first
    assert allocator.address_of(second) == addr_second
    assert allocator.relative(second, addr_first) == 8


def test_double_reservation_asserts():
    allocator = OffsetAllocator()
    node = []
    allocator.reserve(node, 4)
    try:
        allocator.reserve(node, 4)
    except AssertionError:
        return
    raise AssertionError("Second reservation of the same node was accepted")


def test_missing_reservation_asserts():
    allocator = OffsetAllocator()
    assert not allocator.has([])
    try:
        allocator.address_of([])
    except AssertionError:
        return
    raise AssertionError("address_of returned for an unreserved node")


def test_skip_advances_without_node():
    allocator = OffsetAllocator(0x28)
    assert allocator.skip(8) == 0x28
    assert allocator.skip(4) == 0x30
    assert allocator.size == 0x34


def test_node_ids_stable():
    ids = NodeIds()
    a = object()
    b = object()
    assert ids.node_id(a) == 0
    assert ids.node_id(b) == 1
    assert ids.node_id(a) == 0
    assert ids.known(b)
    assert len(ids) == 2


def test_struct_fields_roundtrip():
    writer = StructWriter(32)
    writer.u8(0, 0xAB)
    writer.i8(1, -3)
    writer.u16(2, 0xBEEF)
    writer.i16(4, -1)
    writer.u32(8, 0xDEADBEEF)
    writer.i32(12, -7)
    writer.f32(16, 1.5)
    writer.f32s(20, [0.25, -2.0])
    data = writer.getvalue()
    assert len(data) == 32

    reader = StructReader(data)
    assert reader.u8(0) == 0xAB
    assert reader.i8(1) == -3
    assert reader.u16(2) == 0xBEEF
    assert reader.i16(4) == -1
    assert reader.u32(8) == 0xDEADBEEF
    assert reader.i32(12) == -7
    assert reader.f32(16) == 1.5
    assert reader.f32s(20, 2) == [0.25, -2.0]
    assert reader.f32s(28, 0) == []


def test_reader_out_of_bounds():
    reader = StructReader(b'\x00' * 6)
    assert reader.u16(4) == 0
    for offset in (4, 6, -1):
        try:
            reader.u32(offset)
        except FormatError:
            continue
        raise AssertionError("Read at {} did not fail".format(offset))


def main():
    print("=" * 70)
    print("Offset allocator tests")
    print("=" * 70)

    _test("align", test_align)
    _test("reserve_honours_alignment", test_reserve_honours_alignment)
    _test("reservations_keyed_by_identity",
          test_reservations_keyed_by_identity)
    _test("double_reservation_asserts", test_double_reservation_asserts)
    _test("missing_reservation_asserts", test_missing_reservation_asserts)
    _test("skip_advances_without_node", test_skip_advances_without_node)
    _test("node_ids_stable", test_node_ids_stable)
    _test("struct_fields_roundtrip", test_struct_fields_roundtrip)
    _test("reader_out_of_bounds", test_reader_out_of_bounds)

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
