"""
Columnar geometry arrays.

Homogeneous columns use the native GeoArrow layout: one flat coordinate
buffer of shape ``(n_coords, ndim)`` and one offset buffer per nesting
level (innermost level first, as ``pyarrow.ListArray`` nests them):

    Point            ()                               one coordinate slot per row
    LineString       (geom_offsets,)
    MultiPoint       (geom_offsets,)
    Polygon          (ring_offsets, geom_offsets)
    MultiLineString  (line_offsets, geom_offsets)
    MultiPolygon     (ring_offsets, polygon_offsets, geom_offsets)

Null rows have a zero-length span (a NaN slot for points). Columns of
geometry collections keep their members in a nested array, and columns
mixing types or dimensions keep a per-row type tag pointing into one
homogeneous child array per tag. All buffers are read-only.
"""
import logging
import operator

import numpy as np
import pyarrow as pa

from . import wkb
from .config import get_settings
from .executor import for_each_chunk, map_rows
from .geometry import (
    Dimensions,
    Geometry,
    GeometryCollection,
    GeometryType,
    LineString,
    MultiLineString,
    MultiPoint,
    MultiPolygon,
    Point,
    Polygon,
)

logger = logging.getLogger(__name__)

_NAN = float("nan")

_DIMS_INDEX = {
    Dimensions.XY: 0,
    Dimensions.XYZ: 1,
    Dimensions.XYM: 2,
    Dimensions.XYZM: 3,
}
_INDEX_DIMS = {v: k for k, v in _DIMS_INDEX.items()}


def type_id(geometry_type, dims):
    """GeoArrow union type id: base type code plus 10 per dimension step."""
    return int(geometry_type) + 10 * _DIMS_INDEX[dims]


def split_type_id(tid):
    return GeometryType(tid % 10), _INDEX_DIMS[tid // 10]


def _frozen(values, dtype):
    arr = np.ascontiguousarray(values, dtype=dtype)
    arr.setflags(write=False)
    return arr


def _check_offsets(offsets, child_len, name):
    if offsets.ndim != 1 or len(offsets) == 0:
        raise ValueError(f"{name} must be a non-empty 1-D array")
    if offsets[0] != 0:
        raise ValueError(f"{name} must start at 0")
    if offsets[-1] != child_len:
        raise ValueError(
            f"last {name} value {offsets[-1]} does not match child length {child_len}"
        )
    if np.any(np.diff(offsets) < 0):
        raise ValueError(f"{name} must be non-decreasing")


def _reduce_boxes(boxes, idx, validity):
    """Reduce the ``(m, 4)`` boxes in each ``idx[i]:idx[i + 1]`` span."""
    n = len(idx) - 1
    out = np.full((n, 4), np.nan)
    starts, stops = idx[:-1], idx[1:]
    # spans are contiguous, so the non-empty ones can be reduced in one go
    nonempty = stops > starts
    if nonempty.any():
        s = starts[nonempty]
        out[nonempty, 0] = np.fmin.reduceat(boxes[:, 0], s)
        out[nonempty, 1] = np.fmin.reduceat(boxes[:, 1], s)
        out[nonempty, 2] = np.fmax.reduceat(boxes[:, 2], s)
        out[nonempty, 3] = np.fmax.reduceat(boxes[:, 3], s)
    out[~validity] = np.nan
    return out


class BaseGeometryArray:
    geometry_type = GeometryType.GEOMETRY
    dims = None

    def __init__(self, validity, srids=None, diagnostics=()):
        self.validity = _frozen(validity, np.bool_)
        if self.validity.ndim != 1:
            raise ValueError("validity must be 1-D")
        if srids is None:
            srids = np.zeros(len(self.validity), dtype=np.int32)
        self.srids = _frozen(srids, np.int32)
        if self.srids.shape != self.validity.shape:
            raise ValueError("srids length must match the number of rows")
        self.diagnostics = tuple(diagnostics)

    def __len__(self):
        return len(self.validity)

    @property
    def null_count(self):
        return int(len(self) - self.validity.sum())

    def is_null(self, i):
        return not self.validity[i]

    def __getitem__(self, i):
        n = len(self)
        i = operator.index(i)
        if i < 0:
            i += n
        if not 0 <= i < n:
            raise IndexError(f"row {i} out of range for array of length {n}")
        if not self.validity[i]:
            return None
        return self._value(i)

    def _value(self, i):
        raise NotImplementedError

    def __iter__(self):
        for i in range(len(self)):
            yield self[i]

    def to_geometries(self):
        return list(self)

    @property
    def srid(self):
        """The SRID shared by all valid rows, ``None`` if they differ."""
        values = np.unique(self.srids[self.validity])
        if len(values) == 0:
            return 0
        if len(values) == 1:
            return int(values[0])
        return None

    def bounds(self):
        """``(n, 4)`` array of ``xmin, ymin, xmax, ymax``, NaN for null or
        empty rows."""
        raise NotImplementedError

    def to_pyarrow(self):
        from .extension_types import construct_geometry_array

        return construct_geometry_array(self)

    def __arrow_array__(self, type=None):
        return self.to_pyarrow()

    def equals(self, other):
        if not isinstance(other, BaseGeometryArray) or len(self) != len(other):
            return False
        if not np.array_equal(self.validity, other.validity):
            return False
        return all(a == b for a, b in zip(self, other))

    def __repr__(self):
        name = self.geometry_type.name
        if self.dims is not None:
            name += f" {self.dims.name}"
        return f"<{type(self).__name__} {name} len={len(self)} nulls={self.null_count}>"


_NATIVE = {
    "POINT",
    "LINESTRING",
    "POLYGON",
    "MULTIPOINT",
    "MULTILINESTRING",
    "MULTIPOLYGON",
}


def _point(row, dims, srid=0):
    if np.isnan(row).all():
        return Point(dims=dims, srid=srid)
    return Point(tuple(row.tolist()), dims=dims, srid=srid)


def _spans(coords, offsets, start, stop):
    return [coords[offsets[j] : offsets[j + 1]].tolist() for j in range(start, stop)]


class GeometryArray(BaseGeometryArray):
    """Homogeneous geometries in the native layout.

    Parameters
    ----------
    geometry_type : GeometryType
        Any type but ``GEOMETRY`` and ``GEOMETRYCOLLECTION``.
    dims : Dimensions
    coords : array-like
        ``(n_coords, ndim)`` coordinates or their interleaved flat form.
    offsets : tuple of array-like
        Offset buffers, innermost level first.
    validity : array-like of bool
    srids : array-like of int, optional
    """

    def __init__(
        self, geometry_type, dims, coords, offsets, validity, srids=None, diagnostics=()
    ):
        super().__init__(validity, srids, diagnostics)
        self.geometry_type = GeometryType(geometry_type)
        if self.geometry_type.name not in _NATIVE:
            raise ValueError(f"{self.geometry_type.name} has no native layout")
        self.dims = Dimensions(dims)

        coords = np.asarray(coords, dtype=np.float64)
        if coords.ndim == 2 and coords.shape[1] != self.dims.size:
            raise ValueError(
                f"coords have {coords.shape[1]} columns, {self.dims.name} needs "
                f"{self.dims.size}"
            )
        if coords.size % self.dims.size:
            raise ValueError("flat coords length is not a multiple of the dimension")
        self.coords = _frozen(coords.reshape(-1, self.dims.size), np.float64)
        self.offsets = tuple(_frozen(o, np.int32) for o in offsets)
        self._validate()

    def _validate(self):
        n = len(self)
        nesting = self.geometry_type.nesting
        if len(self.offsets) != nesting:
            raise ValueError(
                f"{self.geometry_type.name} needs {nesting} offset buffers, "
                f"got {len(self.offsets)}"
            )
        if nesting == 0:
            if len(self.coords) != n:
                raise ValueError("point arrays need exactly one coordinate per row")
            return
        if len(self.offsets[-1]) != n + 1:
            raise ValueError("geometry offsets length must be the number of rows + 1")
        child_len = len(self.coords)
        for level, offsets in enumerate(self.offsets):
            _check_offsets(offsets, child_len, f"offsets[{level}]")
            child_len = len(offsets) - 1

    def coord_offsets(self):
        """Row boundaries in the coordinate buffer (length ``n + 1``)."""
        if not self.offsets:
            return np.arange(len(self) + 1)
        idx = self.offsets[-1]
        for offsets in self.offsets[-2::-1]:
            idx = offsets[idx]
        return idx

    def _value(self, i):
        coords = self.coords
        dims = self.dims
        srid = int(self.srids[i])
        geometry_type = self.geometry_type

        if geometry_type is GeometryType.POINT:
            return _point(coords[i], dims, srid)
        if geometry_type is GeometryType.LINESTRING:
            (geom_offsets,) = self.offsets
            span = coords[geom_offsets[i] : geom_offsets[i + 1]]
            return LineString(span.tolist(), dims=dims, srid=srid)
        if geometry_type is GeometryType.MULTIPOINT:
            (geom_offsets,) = self.offsets
            span = coords[geom_offsets[i] : geom_offsets[i + 1]]
            return MultiPoint([_point(r, dims) for r in span], dims=dims, srid=srid)
        if geometry_type is GeometryType.POLYGON:
            ring_offsets, geom_offsets = self.offsets
            rings = _spans(coords, ring_offsets, geom_offsets[i], geom_offsets[i + 1])
            return Polygon(rings, dims=dims, srid=srid)
        if geometry_type is GeometryType.MULTILINESTRING:
            line_offsets, geom_offsets = self.offsets
            lines = _spans(coords, line_offsets, geom_offsets[i], geom_offsets[i + 1])
            return MultiLineString(
                [LineString(line, dims=dims) for line in lines], dims=dims, srid=srid
            )
        ring_offsets, polygon_offsets, geom_offsets = self.offsets
        polygons = [
            Polygon(
                _spans(coords, ring_offsets, polygon_offsets[p], polygon_offsets[p + 1]),
                dims=dims,
            )
            for p in range(geom_offsets[i], geom_offsets[i + 1])
        ]
        return MultiPolygon(polygons, dims=dims, srid=srid)

    def bounds(self):
        x = self.coords[:, 0]
        y = self.coords[:, 1]
        boxes = np.column_stack((x, y, x, y))
        if self.geometry_type is GeometryType.POINT:
            boxes[~self.validity] = np.nan
            return boxes
        return _reduce_boxes(boxes, self.coord_offsets(), self.validity)


class GeometryCollectionArray(BaseGeometryArray):
    """Geometry collections: per-row offsets into an array of members."""

    geometry_type = GeometryType.GEOMETRYCOLLECTION

    def __init__(self, dims, geom_offsets, members, validity, srids=None, diagnostics=()):
        super().__init__(validity, srids, diagnostics)
        self.dims = Dimensions(dims)
        self.geom_offsets = _frozen(geom_offsets, np.int32)
        self.members = members
        if len(self.geom_offsets) != len(self) + 1:
            raise ValueError("geometry offsets length must be the number of rows + 1")
        _check_offsets(self.geom_offsets, len(members), "geom_offsets")

    def _value(self, i):
        start, stop = self.geom_offsets[i], self.geom_offsets[i + 1]
        parts = [self.members[j] for j in range(start, stop)]
        return GeometryCollection(parts, dims=self.dims, srid=int(self.srids[i]))

    def bounds(self):
        return _reduce_boxes(self.members.bounds(), self.geom_offsets, self.validity)


class MixedGeometryArray(BaseGeometryArray):
    """Geometries of several types or dimensions.

    ``type_ids[i]`` tags row ``i`` with its GeoArrow union type id and
    ``value_offsets[i]`` is the row's position in ``children[type_ids[i]]``.
    Null rows have type id 0 and offset -1.
    """

    def __init__(
        self, type_ids, value_offsets, children, validity, srids=None, diagnostics=()
    ):
        super().__init__(validity, srids, diagnostics)
        self.type_ids = _frozen(type_ids, np.int8)
        self.value_offsets = _frozen(value_offsets, np.int32)
        self.children = dict(children)
        if self.type_ids.shape != self.validity.shape:
            raise ValueError("type_ids length must match the number of rows")
        if self.value_offsets.shape != self.validity.shape:
            raise ValueError("value_offsets length must match the number of rows")
        for tid, child in self.children.items():
            if (child.geometry_type, child.dims) != split_type_id(tid):
                raise ValueError(f"child for type id {tid} holds {child!r}")
            rows = self.validity & (self.type_ids == tid)
            offsets = self.value_offsets[rows]
            if len(offsets) and (offsets.min() < 0 or offsets.max() >= len(child)):
                raise ValueError(f"value offsets out of range for type id {tid}")
        unknown = set(np.unique(self.type_ids[self.validity]).tolist()) - set(
            self.children
        )
        if unknown:
            raise ValueError(f"no child array for type ids {sorted(unknown)}")
        dims = {child.dims for child in self.children.values()}
        self.dims = dims.pop() if len(dims) == 1 else None

    def _value(self, i):
        child = self.children[int(self.type_ids[i])]
        return child[int(self.value_offsets[i])]

    def bounds(self):
        out = np.full((len(self), 4), np.nan)
        for tid, child in self.children.items():
            rows = np.nonzero(self.validity & (self.type_ids == tid))[0]
            out[rows] = child.bounds()[self.value_offsets[rows]]
        return out


def _measure(geometry):
    """Lengths one geometry adds to each level, outermost level first."""
    geometry_type = geometry.geometry_type
    if geometry_type is GeometryType.POINT:
        return (1,)
    if geometry_type is GeometryType.LINESTRING:
        return (len(geometry.coordinates),)
    if geometry_type is GeometryType.MULTIPOINT:
        return (len(geometry.points),)
    if geometry_type is GeometryType.POLYGON:
        return (len(geometry.rings), sum(len(r) for r in geometry.rings))
    if geometry_type is GeometryType.MULTILINESTRING:
        lines = geometry.lines
        return (len(lines), sum(len(line.coordinates) for line in lines))
    polygons = geometry.polygons
    rings = [r for p in polygons for r in p.rings]
    return (len(polygons), len(rings), sum(len(r) for r in rings))


def _fill_row(geometry, starts, coords, levels):
    """Write one geometry at its absolute positions.

    ``starts`` are the row's first slot on each level (outermost first) and
    ``levels`` the inner offset buffers (outermost first).
    """
    nan_coord = (_NAN,) * coords.shape[1]
    geometry_type = geometry.geometry_type

    if geometry_type is GeometryType.POINT:
        coords[starts[0]] = geometry.coord or nan_coord
    elif geometry_type is GeometryType.LINESTRING:
        c = starts[0]
        k = len(geometry.coordinates)
        if k:
            coords[c : c + k] = geometry.coordinates
    elif geometry_type is GeometryType.MULTIPOINT:
        c = starts[0]
        for j, point in enumerate(geometry.points):
            coords[c + j] = point.coord or nan_coord
    elif geometry_type in (GeometryType.POLYGON, GeometryType.MULTILINESTRING):
        r, c = starts
        (ring_offsets,) = levels
        if geometry_type is GeometryType.POLYGON:
            spans = geometry.rings
        else:
            spans = [line.coordinates for line in geometry.lines]
        for span in spans:
            ring_offsets[r] = c
            if span:
                coords[c : c + len(span)] = span
            r += 1
            c += len(span)
    else:
        p, r, c = starts
        polygon_offsets, ring_offsets = levels
        for polygon in geometry.polygons:
            polygon_offsets[p] = r
            p += 1
            for ring in polygon.rings:
                ring_offsets[r] = c
                coords[c : c + len(ring)] = ring
                r += 1
                c += len(ring)


def _build_native(geoms, geometry_type, dims, diagnostics=(), chunk_size=None, max_workers=None):
    n = len(geoms)
    nesting = geometry_type.nesting
    depth = max(nesting, 1)
    null_sizes = (1,) if nesting == 0 else (0,) * depth

    # pass 1: per-row lengths of every level
    sizes = np.zeros((n, depth), dtype=np.int64)

    def measure(start, stop):
        for i in range(start, stop):
            g = geoms[i]
            sizes[i] = null_sizes if g is None else _measure(g)

    for_each_chunk(measure, n, chunk_size, max_workers)

    starts = np.zeros((n + 1, depth), dtype=np.int64)
    np.cumsum(sizes, axis=0, out=starts[1:])
    totals = starts[-1]

    coords = np.full((totals[-1], dims.size), np.nan)
    levels = []
    for k in range(depth - 1):
        level = np.empty(totals[k] + 1, dtype=np.int64)
        level[-1] = totals[k + 1]
        levels.append(level)

    # pass 2: every row writes only its own slots
    def fill(start, stop):
        for i in range(start, stop):
            g = geoms[i]
            if g is not None:
                _fill_row(g, starts[i], coords, levels)

    for_each_chunk(fill, n, chunk_size, max_workers)

    if nesting == 0:
        offsets = ()
    else:
        offsets = tuple(reversed([starts[:, 0]] + levels))
    validity = np.array([g is not None for g in geoms], dtype=np.bool_)
    srids = np.array([0 if g is None else g.srid for g in geoms], dtype=np.int32)
    return GeometryArray(
        geometry_type, dims, coords, offsets, validity, srids, diagnostics
    )


def _build_collections(geoms, dims, diagnostics=(), chunk_size=None, max_workers=None):
    counts = [0 if g is None else len(g.geometries) for g in geoms]
    geom_offsets = np.zeros(len(geoms) + 1, dtype=np.int64)
    np.cumsum(counts, out=geom_offsets[1:])
    members = from_geometries(
        [m for g in geoms if g is not None for m in g.geometries],
        chunk_size=chunk_size,
        max_workers=max_workers,
    )
    validity = np.array([g is not None for g in geoms], dtype=np.bool_)
    srids = np.array([0 if g is None else g.srid for g in geoms], dtype=np.int32)
    return GeometryCollectionArray(
        dims, geom_offsets, members, validity, srids, diagnostics
    )


def _build_mixed(geoms, diagnostics=(), chunk_size=None, max_workers=None):
    n = len(geoms)
    type_ids = np.zeros(n, dtype=np.int8)
    value_offsets = np.full(n, -1, dtype=np.int32)
    groups = {}
    for i, g in enumerate(geoms):
        if g is None:
            continue
        tid = type_id(g.geometry_type, g.dims)
        group = groups.setdefault(tid, [])
        type_ids[i] = tid
        value_offsets[i] = len(group)
        group.append(g)
    children = {
        tid: from_geometries(group, chunk_size=chunk_size, max_workers=max_workers)
        for tid, group in groups.items()
    }
    validity = np.array([g is not None for g in geoms], dtype=np.bool_)
    srids = np.array([0 if g is None else g.srid for g in geoms], dtype=np.int32)
    return MixedGeometryArray(
        type_ids, value_offsets, children, validity, srids, diagnostics
    )


def from_geometries(geoms, diagnostics=(), chunk_size=None, max_workers=None):
    """Build a columnar array from geometry values (``None`` for nulls).

    The layout is chosen from the values: native when every row has the same
    type and dimensions, a collection array when they are all collections,
    mixed otherwise. An array without any valid row is a point array.
    """
    geoms = list(geoms)
    kinds = set()
    for g in geoms:
        if g is None:
            continue
        if not isinstance(g, Geometry):
            raise TypeError(f"expected Geometry or None, got {type(g).__name__}")
        kinds.add((g.geometry_type, g.dims))

    if len(kinds) > 1:
        return _build_mixed(geoms, diagnostics, chunk_size, max_workers)
    geometry_type, dims = kinds.pop() if kinds else (GeometryType.POINT, Dimensions.XY)
    if geometry_type is GeometryType.GEOMETRYCOLLECTION:
        return _build_collections(geoms, dims, diagnostics, chunk_size, max_workers)
    return _build_native(geoms, geometry_type, dims, diagnostics, chunk_size, max_workers)


def _binary_values(values):
    if isinstance(values, pa.ChunkedArray):
        return [v for chunk in values.chunks for v in _binary_values(chunk)]
    if isinstance(values, pa.ExtensionArray):
        values = values.storage
    if isinstance(values, pa.Array):
        typ = values.type
        if not (
            pa.types.is_binary(typ)
            or pa.types.is_large_binary(typ)
            or pa.types.is_fixed_size_binary(typ)
        ):
            raise TypeError(f"expected a binary array, got {typ}")
        return values.to_pylist()
    buffers = list(values)
    for v in buffers:
        if v is not None and not isinstance(v, (bytes, bytearray, memoryview)):
            raise TypeError(f"expected bytes or None, got {type(v).__name__}")
    return buffers


def decode_column(values, close_rings=None, chunk_size=None, max_workers=None):
    """Decode a column of WKB/EWKB buffers into a columnar array.

    Parameters
    ----------
    values : pyarrow binary array, ChunkedArray or sequence of bytes/None
    close_rings : bool, optional
        Auto-close open polygon rings. Defaults to the ``close_rings``
        setting.

    Returns
    -------
    BaseGeometryArray
        Null input buffers and buffers that fail to decode become null rows.
        Failures are listed in ``.diagnostics``.
    """
    buffers = _binary_values(values)
    if close_rings is None:
        close_rings = get_settings().close_rings

    def decode_row(i):
        data = buffers[i]
        if data is None:
            return None
        return wkb.decode(data, close_rings=close_rings)

    geoms, diagnostics = map_rows(decode_row, len(buffers), chunk_size, max_workers)
    if diagnostics:
        logger.warning(
            "%d of %d rows failed to decode, first: %s",
            len(diagnostics),
            len(buffers),
            diagnostics[0],
        )
    return from_geometries(geoms, diagnostics, chunk_size, max_workers)


def encode_column(
    array,
    dialect=None,
    byte_order=None,
    include_srid=True,
    chunk_size=None,
    max_workers=None,
):
    """Encode a columnar array (or sequence of geometries) to a
    ``pyarrow.BinaryArray``; null rows stay null."""

    def encode_row(i):
        g = array[i]
        if g is None:
            return None
        return wkb.encode(g, dialect, byte_order, include_srid)

    values, diagnostics = map_rows(encode_row, len(array), chunk_size, max_workers)
    if diagnostics:
        logger.warning(
            "%d of %d rows failed to encode, first: %s",
            len(diagnostics),
            len(array),
            diagnostics[0],
        )
    return pa.array(values, type=pa.binary())
