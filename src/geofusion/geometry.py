"""
In-memory geometry values.

A closed set of immutable variants (``Point``, ``LineString``, ``Polygon``,
their multi- counterparts and ``GeometryCollection``), independent of any
binary or columnar layout. Coordinates are tuples of floats whose length is
given by the geometry's ``Dimensions``.
"""
import enum
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from .errors import InvalidRingError

Coord = Tuple[float, ...]


class GeometryType(enum.IntEnum):
    # numbering follows the WKB base type codes
    GEOMETRY = 0
    POINT = 1
    LINESTRING = 2
    POLYGON = 3
    MULTIPOINT = 4
    MULTILINESTRING = 5
    MULTIPOLYGON = 6
    GEOMETRYCOLLECTION = 7

    @property
    def st_name(self):
        return _ST_NAMES[self]

    @property
    def nesting(self):
        """Number of offset levels in the native columnar layout."""
        return _NESTING[self]


_ST_NAMES = {
    GeometryType.GEOMETRY: "ST_Geometry",
    GeometryType.POINT: "ST_Point",
    GeometryType.LINESTRING: "ST_LineString",
    GeometryType.POLYGON: "ST_Polygon",
    GeometryType.MULTIPOINT: "ST_MultiPoint",
    GeometryType.MULTILINESTRING: "ST_MultiLineString",
    GeometryType.MULTIPOLYGON: "ST_MultiPolygon",
    GeometryType.GEOMETRYCOLLECTION: "ST_GeometryCollection",
}

_NESTING = {
    GeometryType.POINT: 0,
    GeometryType.LINESTRING: 1,
    GeometryType.MULTIPOINT: 1,
    GeometryType.POLYGON: 2,
    GeometryType.MULTILINESTRING: 2,
    GeometryType.MULTIPOLYGON: 3,
}


class Dimensions(enum.Enum):
    XY = "xy"
    XYZ = "xyz"
    XYM = "xym"
    XYZM = "xyzm"

    @property
    def has_z(self):
        return "z" in self.value

    @property
    def has_m(self):
        return "m" in self.value

    @property
    def size(self):
        return len(self.value)

    @classmethod
    def from_flags(cls, has_z, has_m):
        return cls("xy" + ("z" if has_z else "") + ("m" if has_m else ""))

    @classmethod
    def from_size(cls, size):
        # a bare 3-tuple is taken as XYZ, XYM has to be requested explicitly
        try:
            return {2: cls.XY, 3: cls.XYZ, 4: cls.XYZM}[size]
        except KeyError:
            raise ValueError(f"coordinates must have 2 to 4 values, got {size}")


def _resolve_dims(dims, size=None):
    if dims is not None:
        return Dimensions(dims)
    if size is None:
        return Dimensions.XY
    return Dimensions.from_size(size)


def _coord(values, dims) -> Coord:
    coord = tuple(float(v) for v in values)
    if len(coord) != dims.size:
        raise ValueError(
            f"expected {dims.size} ordinates for {dims.name}, got {len(coord)}"
        )
    return coord


def _coord_seq(values, dims) -> Tuple[Coord, ...]:
    return tuple(_coord(c, dims) for c in values)


def _first_size(seq):
    for c in seq:
        return len(c)
    return None


def check_ring(ring):
    """Raise ``InvalidRingError`` unless ``ring`` is closed with >= 4 points."""
    if len(ring) < 4:
        raise InvalidRingError(f"ring has {len(ring)} points, at least 4 required")
    if ring[0] != ring[-1]:
        raise InvalidRingError("ring is not closed")


def close_ring(ring):
    """Append the first coordinate if the ring is open."""
    if ring and ring[0] != ring[-1]:
        return tuple(ring) + (ring[0],)
    return tuple(ring)


class Geometry:
    """Base class of the geometry variants."""

    geometry_type = GeometryType.GEOMETRY

    def coords(self):
        """Iterate over every coordinate of the geometry."""
        raise NotImplementedError

    @property
    def is_empty(self):
        return next(iter(self.coords()), None) is None

    @property
    def num_points(self):
        return sum(1 for _ in self.coords())

    def bounds(self) -> Optional[Tuple[float, float, float, float]]:
        xmin = ymin = float("inf")
        xmax = ymax = float("-inf")
        empty = True
        for c in self.coords():
            empty = False
            x, y = c[0], c[1]
            if x < xmin:
                xmin = x
            if x > xmax:
                xmax = x
            if y < ymin:
                ymin = y
            if y > ymax:
                ymax = y
        if empty:
            return None
        return (xmin, ymin, xmax, ymax)

    def with_srid(self, srid):
        return replace(self, srid=int(srid))

    def __str__(self):
        from .wkt import dumps

        return dumps(self, srid=True)


def _set(obj, **kwargs):
    for k, v in kwargs.items():
        object.__setattr__(obj, k, v)


def _child(value, cls, dims):
    if isinstance(value, cls):
        if value.dims is not dims:
            raise ValueError(
                f"{cls.__name__} with {value.dims.name} inside {dims.name} geometry"
            )
        return value if value.srid == 0 else value.with_srid(0)
    if isinstance(value, Geometry):
        raise TypeError(f"expected {cls.__name__}, got {type(value).__name__}")
    return cls(value, dims=dims)


@dataclass(frozen=True)
class Point(Geometry):
    coord: Coord = ()
    dims: Dimensions = None
    srid: int = 0

    geometry_type = GeometryType.POINT

    def __post_init__(self):
        size = len(self.coord) if self.coord else None
        dims = _resolve_dims(self.dims, size)
        coord = _coord(self.coord, dims) if self.coord else ()
        _set(self, coord=coord, dims=dims, srid=int(self.srid))

    @property
    def x(self):
        return self.coord[0] if self.coord else None

    @property
    def y(self):
        return self.coord[1] if self.coord else None

    @property
    def z(self):
        return self.coord[2] if self.coord and self.dims.has_z else None

    @property
    def m(self):
        return self.coord[-1] if self.coord and self.dims.has_m else None

    def coords(self):
        if self.coord:
            yield self.coord


@dataclass(frozen=True)
class LineString(Geometry):
    coordinates: Tuple[Coord, ...] = ()
    dims: Dimensions = None
    srid: int = 0

    geometry_type = GeometryType.LINESTRING

    def __post_init__(self):
        coordinates = tuple(self.coordinates)
        dims = _resolve_dims(self.dims, _first_size(coordinates))
        _set(
            self,
            coordinates=_coord_seq(coordinates, dims),
            dims=dims,
            srid=int(self.srid),
        )

    def coords(self):
        return iter(self.coordinates)


@dataclass(frozen=True)
class Polygon(Geometry):
    rings: Tuple[Tuple[Coord, ...], ...] = ()
    dims: Dimensions = None
    srid: int = 0

    geometry_type = GeometryType.POLYGON

    def __post_init__(self):
        rings = tuple(tuple(r) for r in self.rings)
        size = _first_size(rings[0]) if rings else None
        dims = _resolve_dims(self.dims, size)
        rings = tuple(_coord_seq(r, dims) for r in rings)
        for ring in rings:
            check_ring(ring)
        _set(self, rings=rings, dims=dims, srid=int(self.srid))

    @property
    def exterior(self):
        return self.rings[0] if self.rings else ()

    @property
    def interiors(self):
        return self.rings[1:]

    def coords(self):
        for ring in self.rings:
            yield from ring


class _Multi(Geometry):
    _part_cls = None
    _parts_field = None

    def __post_init__(self):
        parts = tuple(getattr(self, self._parts_field))
        dims = self.dims
        if dims is None and parts:
            first = parts[0]
            if isinstance(first, Geometry):
                dims = first.dims
            else:
                dims = self._part_cls(first).dims
        dims = _resolve_dims(dims)
        parts = tuple(_child(p, self._part_cls, dims) for p in parts)
        _set(self, **{self._parts_field: parts}, dims=dims, srid=int(self.srid))

    @property
    def parts(self):
        return getattr(self, self._parts_field)

    def coords(self):
        for part in self.parts:
            yield from part.coords()


@dataclass(frozen=True)
class MultiPoint(_Multi):
    points: Tuple[Point, ...] = ()
    dims: Dimensions = None
    srid: int = 0

    geometry_type = GeometryType.MULTIPOINT
    _part_cls = Point
    _parts_field = "points"


@dataclass(frozen=True)
class MultiLineString(_Multi):
    lines: Tuple[LineString, ...] = ()
    dims: Dimensions = None
    srid: int = 0

    geometry_type = GeometryType.MULTILINESTRING
    _part_cls = LineString
    _parts_field = "lines"


@dataclass(frozen=True)
class MultiPolygon(_Multi):
    polygons: Tuple[Polygon, ...] = ()
    dims: Dimensions = None
    srid: int = 0

    geometry_type = GeometryType.MULTIPOLYGON
    _part_cls = Polygon
    _parts_field = "polygons"


@dataclass(frozen=True)
class GeometryCollection(_Multi):
    geometries: Tuple[Geometry, ...] = ()
    dims: Dimensions = None
    srid: int = 0

    geometry_type = GeometryType.GEOMETRYCOLLECTION
    _part_cls = Geometry
    _parts_field = "geometries"


GEOMETRY_CLASSES = {
    GeometryType.POINT: Point,
    GeometryType.LINESTRING: LineString,
    GeometryType.POLYGON: Polygon,
    GeometryType.MULTIPOINT: MultiPoint,
    GeometryType.MULTILINESTRING: MultiLineString,
    GeometryType.MULTIPOLYGON: MultiPolygon,
    GeometryType.GEOMETRYCOLLECTION: GeometryCollection,
}


def empty(geometry_type, dims=Dimensions.XY, srid=0):
    """Return the empty geometry of the given type."""
    return GEOMETRY_CLASSES[GeometryType(geometry_type)](dims=dims, srid=srid)
