"""
Well-known binary codec.

Both the ISO/OGC dialect (``WKB``, dimensionality in the type code's
thousands: +1000 Z, +2000 M, +3000 ZM) and the PostGIS extended dialect
(``EWKB``, Z/M/SRID flag bits in the high byte of the type code) are
accepted on decode, in either byte order, without the caller having to
say which one a buffer uses. EWKB flag bits are read first. The remaining
bits are a bare type, or an ISO range code whose dimensions must agree with
the flags.
"""
import enum
import math
import struct

from .config import get_settings
from .errors import (
    CodecError,
    TruncatedError,
    UnknownTypeError,
    UnsupportedDialectFeatureError,
)
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
    check_ring,
    close_ring,
)

EWKB_Z = 0x80000000
EWKB_M = 0x40000000
EWKB_SRID = 0x20000000
EWKB_FLAGS = EWKB_Z | EWKB_M | EWKB_SRID

_ISO_OFFSETS = {
    Dimensions.XY: 0,
    Dimensions.XYZ: 1000,
    Dimensions.XYM: 2000,
    Dimensions.XYZM: 3000,
}
_ISO_DIMS = {v // 1000: k for k, v in _ISO_OFFSETS.items()}

_MULTI_PARTS = {
    GeometryType.MULTIPOINT: GeometryType.POINT,
    GeometryType.MULTILINESTRING: GeometryType.LINESTRING,
    GeometryType.MULTIPOLYGON: GeometryType.POLYGON,
}

_MAX_DEPTH = 64


class Dialect(enum.Enum):
    WKB = "wkb"
    EWKB = "ewkb"


class ByteOrder(enum.IntEnum):
    BIG = 0
    LITTLE = 1

    @classmethod
    def parse(cls, value):
        if isinstance(value, str):
            return cls[value.upper()]
        return cls(value)

    @property
    def prefix(self):
        return "<" if self is ByteOrder.LITTLE else ">"


def parse_type_code(code):
    """Split a 32-bit type code into ``(GeometryType, Dimensions, has_srid)``.

    Flag bits are read first. When the bits left after masking them are an
    ISO range code (``1001``, ``3006``, ...) that code supplies the type and
    dimensions, and any Z/M flags must agree with it.
    """
    if code & EWKB_FLAGS:
        base = code & ~EWKB_FLAGS
        has_z, has_m = bool(code & EWKB_Z), bool(code & EWKB_M)
        has_srid = bool(code & EWKB_SRID)
        if 1 <= base <= 7:
            return GeometryType(base), Dimensions.from_flags(has_z, has_m), has_srid
        dims = _ISO_DIMS.get(base // 1000)
        if dims is None or not 1 <= base % 1000 <= 7:
            raise UnknownTypeError(f"unknown EWKB geometry type code 0x{code:08x}")
        if (has_z or has_m) and Dimensions.from_flags(has_z, has_m) is not dims:
            raise UnknownTypeError(
                f"EWKB flags of type code 0x{code:08x} disagree with its ISO dimensions"
            )
        return GeometryType(base % 1000), dims, has_srid

    base = code % 1000
    dims = _ISO_DIMS.get(code // 1000)
    if dims is None or not 1 <= base <= 7:
        raise UnknownTypeError(f"unknown WKB geometry type code {code}")
    return GeometryType(base), dims, False


def type_code(geometry_type, dims, dialect, with_srid=False):
    if dialect is Dialect.EWKB:
        code = int(geometry_type)
        if dims.has_z:
            code |= EWKB_Z
        if dims.has_m:
            code |= EWKB_M
        if with_srid:
            code |= EWKB_SRID
        return code
    return int(geometry_type) + _ISO_OFFSETS[dims]


class _Reader:
    def __init__(self, data, close_rings):
        self.data = data
        self.pos = 0
        self.close_rings = close_rings

    def _need(self, size):
        if self.pos + size > len(self.data):
            raise TruncatedError(
                f"need {size} bytes at offset {self.pos}, "
                f"only {len(self.data) - self.pos} left"
            )

    def _unpack(self, fmt, size):
        self._need(size)
        values = struct.unpack_from(fmt, self.data, self.pos)
        self.pos += size
        return values

    def count(self, order, min_item_size):
        (n,) = self._unpack(order + "I", 4)
        # reject counts that cannot fit before allocating anything
        self._need(n * min_item_size)
        return n

    def coords(self, order, n, dims):
        size = dims.size
        flat = self._unpack(f"{order}{n * size}d", n * size * 8)
        return tuple(flat[i : i + size] for i in range(0, len(flat), size))

    def header(self):
        (order_byte,) = self._unpack("B", 1)
        if order_byte not in (0, 1):
            raise UnsupportedDialectFeatureError(f"invalid byte order {order_byte}")
        order = ByteOrder(order_byte).prefix
        (code,) = self._unpack(order + "I", 4)
        geometry_type, dims, has_srid = parse_type_code(code)
        srid = 0
        if has_srid:
            (srid,) = self._unpack(order + "i", 4)
        return order, geometry_type, dims, srid

    def ring(self, order, dims):
        n = self.count(order, dims.size * 8)
        ring = self.coords(order, n, dims)
        if self.close_rings:
            ring = close_ring(ring)
        check_ring(ring)
        return ring

    def geometry(self, depth=0):
        if depth > _MAX_DEPTH:
            raise CodecError(f"geometry nesting deeper than {_MAX_DEPTH}")
        order, geometry_type, dims, srid = self.header()

        if geometry_type is GeometryType.POINT:
            (coord,) = self.coords(order, 1, dims)
            if all(math.isnan(v) for v in coord):
                coord = ()
            return Point(coord, dims=dims, srid=srid)

        if geometry_type is GeometryType.LINESTRING:
            n = self.count(order, dims.size * 8)
            return LineString(self.coords(order, n, dims), dims=dims, srid=srid)

        if geometry_type is GeometryType.POLYGON:
            n = self.count(order, 4)
            rings = [self.ring(order, dims) for _ in range(n)]
            return Polygon(rings, dims=dims, srid=srid)

        # multi types and collections repeat a full header per element
        n = self.count(order, 5)
        parts = []
        for _ in range(n):
            part = self.geometry(depth + 1)
            expected = _MULTI_PARTS.get(geometry_type)
            if expected is not None and part.geometry_type is not expected:
                raise UnknownTypeError(
                    f"{part.geometry_type.name} element inside {geometry_type.name}"
                )
            if part.dims is not dims:
                raise CodecError(
                    f"{part.dims.name} element inside {dims.name} {geometry_type.name}"
                )
            parts.append(part.with_srid(0) if part.srid else part)

        if geometry_type is GeometryType.MULTIPOINT:
            return MultiPoint(parts, dims=dims, srid=srid)
        if geometry_type is GeometryType.MULTILINESTRING:
            return MultiLineString(parts, dims=dims, srid=srid)
        if geometry_type is GeometryType.MULTIPOLYGON:
            return MultiPolygon(parts, dims=dims, srid=srid)
        return GeometryCollection(parts, dims=dims, srid=srid)


def decode(data, close_rings=None):
    """Decode a WKB or EWKB buffer into a geometry value.

    Parameters
    ----------
    data : bytes-like
    close_rings : bool, optional
        Auto-close open polygon rings instead of raising
        ``InvalidRingError``. Defaults to the ``close_rings`` setting.
    """
    if close_rings is None:
        close_rings = get_settings().close_rings
    reader = _Reader(bytes(data), close_rings)
    geometry = reader.geometry()
    if reader.pos != len(reader.data):
        raise CodecError(
            f"{len(reader.data) - reader.pos} trailing bytes after geometry"
        )
    return geometry


def _write(out, geometry, dialect, order, srid=0):
    dims = geometry.dims
    prefix = order.prefix
    code = type_code(geometry.geometry_type, dims, dialect, with_srid=bool(srid))
    out += struct.pack(prefix + "BI", int(order), code)
    if srid:
        out += struct.pack(prefix + "i", srid)

    def put_coords(coords):
        flat = [v for c in coords for v in c]
        out.extend(struct.pack(f"{prefix}{len(flat)}d", *flat))

    geometry_type = geometry.geometry_type
    if geometry_type is GeometryType.POINT:
        put_coords([geometry.coord or (math.nan,) * dims.size])
    elif geometry_type is GeometryType.LINESTRING:
        out += struct.pack(prefix + "I", len(geometry.coordinates))
        put_coords(geometry.coordinates)
    elif geometry_type is GeometryType.POLYGON:
        out += struct.pack(prefix + "I", len(geometry.rings))
        for ring in geometry.rings:
            out += struct.pack(prefix + "I", len(ring))
            put_coords(ring)
    else:
        out += struct.pack(prefix + "I", len(geometry.parts))
        for part in geometry.parts:
            _write(out, part, dialect, order)


def encode(geometry, dialect=None, byte_order=None, include_srid=True):
    """Encode a geometry value.

    Defaults to the configured dialect and byte order (EWKB, little-endian).
    With EWKB the SRID is written only when it is non-zero. Standard WKB has
    no SRID slot, so a non-zero SRID raises
    ``UnsupportedDialectFeatureError`` unless ``include_srid=False``.
    """
    settings = get_settings()
    dialect = Dialect(dialect if dialect is not None else settings.dialect)
    order = ByteOrder.parse(byte_order if byte_order is not None else settings.byte_order)

    srid = geometry.srid if include_srid else 0
    if srid and dialect is Dialect.WKB:
        raise UnsupportedDialectFeatureError(
            f"standard WKB cannot carry SRID {srid}, use EWKB or include_srid=False"
        )
    out = bytearray()
    _write(out, geometry, dialect, order, srid)
    return bytes(out)
