"""
Native planar algorithms over geometry values.

Everything works on the XY plane and uses plain floating point comparisons.
``intersects`` and ``distance`` are exact up to rounding; ``covers`` and
``contains`` are only supported for polygonal containers and test vertices
and segment midpoints of the contained geometry, which is an approximation
of the full DE-9IM relationship. ``equals`` compares structure, not point
sets. Use the shapely engine for robust predicates.
"""
import math

import numpy as np

from .errors import DegenerateInputError, UnsupportedOperationError
from .geometry import (
    Dimensions,
    GeometryCollection,
    GeometryType,
    LineString,
    MultiLineString,
    MultiPoint,
    Point,
    Polygon,
)

_POLYGONAL = (GeometryType.POLYGON, GeometryType.MULTIPOLYGON)


def simple_parts(geometry):
    """Non-empty points, line strings and polygons making up a geometry."""
    geometry_type = geometry.geometry_type
    if geometry_type in (GeometryType.POINT, GeometryType.LINESTRING, GeometryType.POLYGON):
        if not geometry.is_empty:
            yield geometry
    else:
        for part in geometry.parts:
            yield from simple_parts(part)


def _xy(coords):
    return np.array([(c[0], c[1]) for c in coords], dtype=np.float64).reshape(-1, 2)


def _vertices(part):
    return _xy(part.coords())


def _segments(part):
    """``(k, 4)`` array of ``x1, y1, x2, y2``."""
    if part.geometry_type is GeometryType.LINESTRING:
        seqs = [part.coordinates]
    elif part.geometry_type is GeometryType.POLYGON:
        seqs = part.rings
    else:
        return np.empty((0, 4))
    chunks = []
    for seq in seqs:
        xy = _xy(seq)
        if len(xy) > 1:
            chunks.append(np.hstack((xy[:-1], xy[1:])))
    if not chunks:
        return np.empty((0, 4))
    return np.vstack(chunks)


def _ring_area(ring):
    xy = _xy(ring)
    x, y = xy[:, 0], xy[:, 1]
    return 0.5 * float(np.sum(x[:-1] * y[1:] - x[1:] * y[:-1]))


def area(geometry):
    total = 0.0
    for part in simple_parts(geometry):
        if part.geometry_type is GeometryType.POLYGON:
            total += abs(_ring_area(part.exterior))
            total -= sum(abs(_ring_area(r)) for r in part.interiors)
    return total


def _seq_length(seq):
    xy = _xy(seq)
    if len(xy) < 2:
        return 0.0
    return float(np.hypot(*np.diff(xy, axis=0).T).sum())


def length(geometry):
    return sum(
        _seq_length(p.coordinates)
        for p in simple_parts(geometry)
        if p.geometry_type is GeometryType.LINESTRING
    )


def perimeter(geometry):
    return sum(
        _seq_length(r)
        for p in simple_parts(geometry)
        if p.geometry_type is GeometryType.POLYGON
        for r in p.rings
    )


def _point_segment_distances(x, y, segs):
    x1, y1, x2, y2 = segs.T
    dx, dy = x2 - x1, y2 - y1
    norm = dx * dx + dy * dy
    with np.errstate(invalid="ignore", divide="ignore"):
        t = ((x - x1) * dx + (y - y1) * dy) / norm
    t = np.where(norm == 0, 0.0, np.clip(t, 0.0, 1.0))
    return np.hypot(x1 + t * dx - x, y1 + t * dy - y)


def _orientation(ax, ay, bx, by, cx, cy):
    return np.sign((bx - ax) * (cy - ay) - (by - ay) * (cx - ax))


def _within_box(ax, ay, bx, by, px, py):
    return (
        (np.minimum(ax, bx) <= px)
        & (px <= np.maximum(ax, bx))
        & (np.minimum(ay, by) <= py)
        & (py <= np.maximum(ay, by))
    )


def _segments_intersect(s, segs):
    """Whether segment ``s`` intersects (touching included) each of ``segs``."""
    ax, ay, bx, by = s
    cx, cy, dx, dy = segs.T
    o1 = _orientation(ax, ay, bx, by, cx, cy)
    o2 = _orientation(ax, ay, bx, by, dx, dy)
    o3 = _orientation(cx, cy, dx, dy, ax, ay)
    o4 = _orientation(cx, cy, dx, dy, bx, by)
    hit = (o1 != o2) & (o3 != o4)
    hit |= (o1 == 0) & _within_box(ax, ay, bx, by, cx, cy)
    hit |= (o2 == 0) & _within_box(ax, ay, bx, by, dx, dy)
    hit |= (o3 == 0) & _within_box(cx, cy, dx, dy, ax, ay)
    hit |= (o4 == 0) & _within_box(cx, cy, dx, dy, bx, by)
    return hit


def _segments_cross(s, segs):
    """Proper crossings: interiors meet in a single point."""
    ax, ay, bx, by = s
    cx, cy, dx, dy = segs.T
    o1 = _orientation(ax, ay, bx, by, cx, cy)
    o2 = _orientation(ax, ay, bx, by, dx, dy)
    o3 = _orientation(cx, cy, dx, dy, ax, ay)
    o4 = _orientation(cx, cy, dx, dy, bx, by)
    return (o1 * o2 < 0) & (o3 * o4 < 0)


def _any_segments_intersect(segs_a, segs_b):
    if not len(segs_a) or not len(segs_b):
        return False
    return any(_segments_intersect(s, segs_b).any() for s in segs_a)


def _in_ring(x, y, ring_xy):
    xs, ys = ring_xy[:, 0], ring_xy[:, 1]
    x1, y1, x2, y2 = xs[:-1], ys[:-1], xs[1:], ys[1:]
    straddles = (y1 > y) != (y2 > y)
    with np.errstate(invalid="ignore", divide="ignore"):
        x_cross = x1 + (y - y1) * (x2 - x1) / (y2 - y1)
    return bool(np.count_nonzero(straddles & (x < x_cross)) % 2)


def locate_point(x, y, polygon):
    """1 if (x, y) is inside ``polygon``, 0 on its boundary, -1 outside."""
    segs = _segments(polygon)
    if len(segs) and _point_segment_distances(x, y, segs).min() == 0.0:
        return 0
    rings = [_xy(r) for r in polygon.rings]
    if not _in_ring(x, y, rings[0]):
        return -1
    if any(_in_ring(x, y, r) for r in rings[1:]):
        return -1
    return 1


def _locate_in_polygons(x, y, polygons):
    best = -1
    for polygon in polygons:
        best = max(best, locate_point(x, y, polygon))
        if best == 1:
            break
    return best


def _boxes_overlap(a, b):
    return a[0] <= b[2] and b[0] <= a[2] and a[1] <= b[3] and b[1] <= a[3]


def _parts_intersect(p, q):
    if not _boxes_overlap(p.bounds(), q.bounds()):
        return False
    if q.geometry_type is GeometryType.POINT and p.geometry_type is not GeometryType.POINT:
        p, q = q, p
    if p.geometry_type is GeometryType.POINT:
        x, y = p.coord[0], p.coord[1]
        if q.geometry_type is GeometryType.POINT:
            return (x, y) == (q.coord[0], q.coord[1])
        if q.geometry_type is GeometryType.POLYGON:
            return locate_point(x, y, q) >= 0
        segs = _segments(q)
        if not len(segs):
            return (x, y) == tuple(_vertices(q)[0])
        return bool(_point_segment_distances(x, y, segs).min() == 0.0)

    if _any_segments_intersect(_segments(p), _segments(q)):
        return True
    # no boundary contact: intersecting only if one lies inside the other
    for inner, outer in ((p, q), (q, p)):
        if outer.geometry_type is GeometryType.POLYGON:
            vx, vy = _vertices(inner)[0]
            if locate_point(vx, vy, outer) >= 0:
                return True
    return False


def intersects(a, b):
    parts_b = list(simple_parts(b))
    return any(_parts_intersect(p, q) for p in simple_parts(a) for q in parts_b)


def _parts_distance(p, q):
    if _parts_intersect(p, q):
        return 0.0
    vp, vq = _vertices(p), _vertices(q)
    sp, sq = _segments(p), _segments(q)
    best = math.inf
    if len(sq):
        for x, y in vp:
            best = min(best, _point_segment_distances(x, y, sq).min())
    if len(sp):
        for x, y in vq:
            best = min(best, _point_segment_distances(x, y, sp).min())
    if not len(sp) or not len(sq):
        diff = vp[:, None, :] - vq[None, :, :]
        best = min(best, np.hypot(diff[..., 0], diff[..., 1]).min())
    return float(best)


def distance(a, b):
    """Minimum Euclidean distance between two non-empty geometries."""
    parts_a, parts_b = list(simple_parts(a)), list(simple_parts(b))
    if not parts_a or not parts_b:
        raise DegenerateInputError("distance to an empty geometry is undefined")
    return min(_parts_distance(p, q) for p in parts_a for q in parts_b)


def _polygons(geometry):
    parts = list(simple_parts(geometry))
    if not all(p.geometry_type is GeometryType.POLYGON for p in parts):
        return None
    return parts


def _samples(part):
    """Vertices and segment midpoints of ``part``."""
    xy = _vertices(part)
    segs = _segments(part)
    if len(segs):
        mid = np.column_stack(((segs[:, 0] + segs[:, 2]) / 2, (segs[:, 1] + segs[:, 3]) / 2))
        xy = np.vstack((xy, mid))
    return xy


def _relate(a, b):
    """Locations of the sample points of ``b`` in polygonal ``a``."""
    polygons = _polygons(a)
    if polygons is None or a.geometry_type not in _POLYGONAL:
        raise UnsupportedOperationError(
            f"native containment needs a polygonal container, got {a.geometry_type.name}"
        )
    a_segs = [_segments(p) for p in polygons]
    locations = []
    for part in simple_parts(b):
        for s in _segments(part):
            if any(len(segs) and _segments_cross(s, segs).any() for segs in a_segs):
                locations.append(-1)
        for x, y in _samples(part):
            locations.append(_locate_in_polygons(x, y, polygons))
    return locations


def covers(a, b):
    if b.is_empty or a.is_empty:
        return False
    if a.geometry_type is GeometryType.POINT and b.geometry_type is GeometryType.POINT:
        return a.coord[:2] == b.coord[:2]
    return all(loc >= 0 for loc in _relate(a, b))


def contains(a, b):
    if b.is_empty or a.is_empty:
        return False
    if a.geometry_type is GeometryType.POINT and b.geometry_type is GeometryType.POINT:
        return a.coord[:2] == b.coord[:2]
    locations = _relate(a, b)
    if not all(loc >= 0 for loc in locations):
        return False
    # a covered polygon with area always shares interior with its container
    return any(loc == 1 for loc in locations) or area(b) > 0


def equals(a, b):
    return a.with_srid(0) == b.with_srid(0)


def _map_coords(geometry, func):
    dims = geometry.dims
    geometry_type = geometry.geometry_type
    if geometry_type is GeometryType.POINT:
        coord = func(geometry.coord) if geometry.coord else ()
        return Point(coord, dims=dims, srid=geometry.srid)
    if geometry_type is GeometryType.LINESTRING:
        return LineString(
            [func(c) for c in geometry.coordinates], dims=dims, srid=geometry.srid
        )
    if geometry_type is GeometryType.POLYGON:
        rings = [[func(c) for c in r] for r in geometry.rings]
        return Polygon(rings, dims=dims, srid=geometry.srid)
    parts = [_map_coords(p, func) for p in geometry.parts]
    return type(geometry)(parts, dims=dims, srid=geometry.srid)


def translate(geometry, dx, dy, dz=0.0):
    has_z = geometry.dims.has_z

    def shift(c):
        c = list(c)
        c[0] += dx
        c[1] += dy
        if has_z:
            c[2] += dz
        return tuple(c)

    return _map_coords(geometry, shift)


def _endpoints(lines):
    """Mod-2 boundary rule: endpoints shared by an even number of lines are
    interior."""
    counts = {}
    for line in lines:
        coords = line.coordinates
        if not coords or coords[0] == coords[-1]:
            continue
        for c in (coords[0], coords[-1]):
            counts[c] = counts.get(c, 0) + 1
    return [Point(c, dims=lines[0].dims) for c, n in counts.items() if n % 2]


def boundary(geometry):
    dims = geometry.dims
    srid = geometry.srid
    geometry_type = geometry.geometry_type
    if geometry_type in (GeometryType.POINT, GeometryType.MULTIPOINT):
        return GeometryCollection(dims=dims, srid=srid)
    if geometry_type is GeometryType.LINESTRING:
        return MultiPoint(_endpoints([geometry]), dims=dims, srid=srid)
    if geometry_type is GeometryType.MULTILINESTRING:
        return MultiPoint(_endpoints(list(geometry.lines)), dims=dims, srid=srid)
    if geometry_type is GeometryType.POLYGON:
        if len(geometry.rings) == 1:
            return LineString(geometry.exterior, dims=dims, srid=srid)
        lines = [LineString(r, dims=dims) for r in geometry.rings]
        return MultiLineString(lines, dims=dims, srid=srid)
    if geometry_type is GeometryType.MULTIPOLYGON:
        lines = [LineString(r, dims=dims) for p in geometry.polygons for r in p.rings]
        return MultiLineString(lines, dims=dims, srid=srid)
    raise UnsupportedOperationError("boundary of a geometry collection")


def make_envelope(xmin, ymin, xmax, ymax, srid=0):
    ring = [(xmin, ymin), (xmin, ymax), (xmax, ymax), (xmax, ymin), (xmin, ymin)]
    return Polygon([ring], dims=Dimensions.XY, srid=srid)


def envelope(geometry):
    """Bounding box as a geometry: a point or line when it is degenerate."""
    bounds = geometry.bounds()
    if bounds is None:
        return geometry
    xmin, ymin, xmax, ymax = bounds
    srid = geometry.srid
    if xmin == xmax and ymin == ymax:
        return Point((xmin, ymin), srid=srid)
    if xmin == xmax or ymin == ymax:
        return LineString([(xmin, ymin), (xmax, ymax)], srid=srid)
    return make_envelope(xmin, ymin, xmax, ymax, srid)


def point_coordinate(geometry, index):
    if geometry.geometry_type is not GeometryType.POINT:
        raise UnsupportedOperationError(
            f"expected a point, got {geometry.geometry_type.name}"
        )
    if geometry.is_empty:
        return None
    return geometry.coord[index]

