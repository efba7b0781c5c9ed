"""
Ring-based polygon booleans and triangulation backed by shapely.

The mesh builder only talks to this module, so any computational geometry
library offering the same four calls can replace shapely here.

Conventions:
  - A ring is a list of ``(x, y)`` points. Rings passed to the boolean
    operations are closed (first point repeated at the end).
  - A ring list is read with the even-odd rule: a point is inside when it
    lies inside an odd number of rings. One ring is a plain polygon, a ring
    inside another ring is a hole.
  - Boolean results are lists of polygons, each polygon a list of closed
    rings (exterior first, then holes).
"""

import numpy as np
import shapely
from shapely.geometry import Polygon, MultiPolygon, GeometryCollection

# Pieces smaller than this are floating point noise from the boolean ops.
_MIN_AREA = 1e-9


def _rings_to_geometry(rings):
    geometry = Polygon()
    for ring in rings:
        if len(ring) < 4:
            continue
        piece = shapely.make_valid(Polygon(ring))
        geometry = geometry.symmetric_difference(piece)
    return geometry


def _polygon_parts(geometry):
    if geometry.is_empty:
        return []
    if isinstance(geometry, Polygon):
        return [geometry]
    if isinstance(geometry, (MultiPolygon, GeometryCollection)):
        parts = []
        for sub in geometry.geoms:
            parts.extend(_polygon_parts(sub))
        return parts
    # Lines and points left over from touching edges carry no area.
    return []


def _geometry_to_polygons(geometry):
    polygons = []
    for part in _polygon_parts(geometry):
        if part.area <= _MIN_AREA:
            continue
        rings = [[(x, y) for x, y in part.exterior.coords]]
        for interior in part.interiors:
            rings.append([(x, y) for x, y in interior.coords])
        polygons.append(rings)
    return polygons


def difference(rings_a, rings_b):
    """Area covered by *rings_a* but not by *rings_b*."""
    a = _rings_to_geometry(rings_a)
    b = _rings_to_geometry(rings_b)
    return _geometry_to_polygons(a.difference(b))


def intersection(rings_a, rings_b):
    """Area covered by both *rings_a* and *rings_b*."""
    a = _rings_to_geometry(rings_a)
    b = _rings_to_geometry(rings_b)
    return _geometry_to_polygons(a.intersection(b))


def union(rings_a, rings_b):
    """Area covered by either *rings_a* or *rings_b*."""
    a = _rings_to_geometry(rings_a)
    b = _rings_to_geometry(rings_b)
    return _geometry_to_polygons(a.union(b))


def flatten(rings):
    """
    Flatten a polygon's rings into one vertex list.

    Args:
        rings: Open rings (no repeated closing point), exterior first.

    Returns:
        tuple: (vertices, hole_starts) where vertices is a list of
        ``(x, y)`` and hole_starts lists the vertex index where each
        hole ring begins.
    """
    vertices = []
    hole_starts = []
    for i, ring in enumerate(rings):
        if i > 0:
            hole_starts.append(len(vertices))
        vertices.extend((float(x), float(y)) for x, y in ring)
    return vertices, hole_starts


def triangulate(rings):
    """
    Triangulate a polygon with holes.

    Args:
        rings: Open rings (no repeated closing point), exterior first.

    Returns:
        list: Triangle indices into ``flatten(rings)[0]``, three per
        triangle.
    """
    vertices, hole_starts = flatten(rings)
    if len(vertices) < 3:
        return []
    bounds = hole_starts + [len(vertices)]
    exterior = vertices[:bounds[0]]
    holes = [vertices[bounds[i]:bounds[i + 1]]
             for i in range(len(bounds) - 1)]
    polygon = shapely.make_valid(Polygon(exterior, holes))

    lookup = {}
    for index, point in enumerate(vertices):
        lookup.setdefault(point, index)
    points = np.array(vertices, dtype=np.float64)

    def vertex_index(x, y):
        found = lookup.get((x, y))
        if found is not None:
            return found
        return int(np.argmin(((points - (x, y)) ** 2).sum(axis=1)))

    indices = []
    for part in _polygon_parts(polygon):
        triangles = shapely.constrained_delaunay_triangles(part)
        for triangle in _polygon_parts(triangles):
            coords = list(triangle.exterior.coords)[:3]
            indices.extend(vertex_index(x, y) for x, y in coords)
    return indices
