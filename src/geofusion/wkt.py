"""
Well-known text reader and writer, including the PostGIS ``SRID=n;`` prefix.
"""
import re

from .errors import WktError
from .geometry import (
    Dimensions,
    GeometryCollection,
    GeometryType,
    LineString,
    MultiLineString,
    MultiPoint,
    MultiPolygon,
    Point,
    Polygon,
    empty,
)

_TOKEN = re.compile(
    r"\s*(?:(?P<num>[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)"
    r"|(?P<word>[A-Za-z]+)|(?P<sym>[(),;=])|(?P<bad>\S))"
)

_TAGS = {
    "Z": Dimensions.XYZ,
    "M": Dimensions.XYM,
    "ZM": Dimensions.XYZM,
}


def _tokenize(text):
    tokens = []
    for match in _TOKEN.finditer(text):
        if match.group("bad"):
            raise WktError(f"unexpected character {match.group('bad')!r}")
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
    return tokens


class _Parser:
    def __init__(self, text):
        self.tokens = _tokenize(text)
        self.i = 0

    def peek(self):
        if self.i < len(self.tokens):
            return self.tokens[self.i]
        return (None, None)

    def next(self):
        token = self.peek()
        if token[0] is None:
            raise WktError("unexpected end of input")
        self.i += 1
        return token

    def expect(self, value):
        kind, token = self.next()
        if token.upper() != value:
            raise WktError(f"expected {value!r}, got {token!r}")

    def peek_word(self):
        kind, token = self.peek()
        return token.upper() if kind == "word" else None

    def parse(self):
        srid = 0
        if self.peek_word() == "SRID":
            self.next()
            self.expect("=")
            kind, token = self.next()
            if kind != "num":
                raise WktError(f"invalid SRID {token!r}")
            srid = int(float(token))
            self.expect(";")
        geometry = self.geometry()
        if self.peek()[0] is not None:
            raise WktError(f"unexpected trailing token {self.peek()[1]!r}")
        return geometry.with_srid(srid) if srid else geometry

    def geometry(self, dims=None):
        kind, word = self.next()
        try:
            geometry_type = GeometryType[word.upper()]
        except KeyError:
            raise WktError(f"unknown geometry type {word!r}")
        if geometry_type is GeometryType.GEOMETRY:
            raise WktError("GEOMETRY is not a concrete type")

        tag = self.peek_word()
        if tag in _TAGS:
            self.next()
            dims = _TAGS[tag]
        if self.peek_word() == "EMPTY":
            self.next()
            return empty(geometry_type, dims or Dimensions.XY)

        if geometry_type is GeometryType.POINT:
            self.expect("(")
            coord = self.coord()
            self.expect(")")
            return Point(coord, dims=dims)
        if geometry_type is GeometryType.LINESTRING:
            return LineString(self.coord_seq(), dims=dims)
        if geometry_type is GeometryType.POLYGON:
            return Polygon(self.rings(), dims=dims)
        if geometry_type is GeometryType.MULTIPOINT:
            return MultiPoint(self.seq(lambda: self.multipoint_member(dims)), dims=dims)
        if geometry_type is GeometryType.MULTILINESTRING:
            lines = self.seq(lambda: self.part(LineString, self.coord_seq, dims))
            return MultiLineString(lines, dims=dims)
        if geometry_type is GeometryType.MULTIPOLYGON:
            polygons = self.seq(lambda: self.part(Polygon, self.rings, dims))
            return MultiPolygon(polygons, dims=dims)
        return GeometryCollection(self.seq(lambda: self.geometry(dims)), dims=dims)

    def coord(self):
        values = []
        while self.peek()[0] == "num":
            values.append(float(self.next()[1]))
        if not 2 <= len(values) <= 4:
            raise WktError(f"coordinate with {len(values)} values")
        return tuple(values)

    def seq(self, item):
        self.expect("(")
        items = [item()]
        while self.peek()[1] == ",":
            self.next()
            items.append(item())
        self.expect(")")
        return items

    def coord_seq(self):
        return self.seq(self.coord)

    def rings(self):
        return self.seq(self.coord_seq)

    def part(self, cls, body, dims):
        if self.peek_word() == "EMPTY":
            self.next()
            return cls(dims=dims or Dimensions.XY)
        return cls(body(), dims=dims)

    def multipoint_member(self, dims):
        # both MULTIPOINT (1 2, 3 4) and MULTIPOINT ((1 2), (3 4)) are valid
        if self.peek_word() == "EMPTY":
            self.next()
            return Point(dims=dims or Dimensions.XY)
        if self.peek()[1] == "(":
            self.next()
            coord = self.coord()
            self.expect(")")
        else:
            coord = self.coord()
        return Point(coord, dims=dims)


def loads(text):
    """Parse WKT or EWKT into a geometry value."""
    return _Parser(text).parse()


def _num(value):
    if value.is_integer() and abs(value) < 1e16:
        return str(int(value))
    return repr(value)


def _coord(coord):
    return " ".join(_num(v) for v in coord)


def _coords(coords):
    return "(" + ", ".join(_coord(c) for c in coords) + ")"


def _body(geometry):
    geometry_type = geometry.geometry_type
    if geometry.is_empty and geometry_type is not GeometryType.GEOMETRYCOLLECTION:
        return "EMPTY"
    if geometry_type is GeometryType.POINT:
        return "(" + _coord(geometry.coord) + ")"
    if geometry_type is GeometryType.LINESTRING:
        return _coords(geometry.coordinates)
    if geometry_type is GeometryType.POLYGON:
        return "(" + ", ".join(_coords(r) for r in geometry.rings) + ")"
    if geometry_type is GeometryType.GEOMETRYCOLLECTION:
        if not geometry.parts:
            return "EMPTY"
        return "(" + ", ".join(_text(p) for p in geometry.parts) + ")"
    return "(" + ", ".join(_body(p) for p in geometry.parts) + ")"


def _text(geometry):
    tag = geometry.dims.value[2:].upper()
    name = geometry.geometry_type.name
    if tag:
        name = f"{name} {tag}"
    return f"{name} {_body(geometry)}"


def dumps(geometry, srid=False):
    """Write a geometry as WKT, or as EWKT when ``srid`` is true and the
    geometry has a non-zero SRID."""
    text = _text(geometry)
    if srid and geometry.srid:
        text = f"SRID={geometry.srid};{text}"
    return text
