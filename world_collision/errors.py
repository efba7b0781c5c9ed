"""
Exception types raised by the collision and grid codecs.

Internal consistency failures (an allocator lookup with no reservation,
a tile index outside the grid) are plain ``assert`` statements and are
not represented here.
"""


class FormatError(ValueError):
    """A chunk payload is truncated or holds offsets that cannot be valid."""


class UnsupportedGeometryError(ValueError):
    """A collision boundary cannot be turned into mesh geometry."""
