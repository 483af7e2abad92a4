"""
Spatial SQL functions evaluated over whole columns.

Each ``SpatialFunction`` describes what a host engine needs to register it
(name, aliases, argument types, return type) and evaluates a batch with
``invoke``. A null argument gives a null result without running the row
algorithm. Rows are spread over the batch executor and a row that fails
with a codec or geometry error gives a null plus a ``Diagnostic``.

When an engine is in use and provides the function's operation it is used
instead of the native algorithm.
"""
import logging
from dataclasses import dataclass
from typing import Any, Tuple

import numpy as np
import pyarrow as pa

from . import algorithms, wkb, wkt
from .array import BaseGeometryArray, decode_column, from_geometries
from .engine import load_engine
from .errors import Diagnostic, UnsupportedOperationError
from .executor import map_rows
from .geometry import Geometry

logger = logging.getLogger(__name__)

GEOMETRY = "geometry"
BINARY = "binary"
TEXT = "utf8"
FLOAT = "float64"
INT = "int32"

BOX2D_TYPE = pa.struct(
    [
        pa.field("xmin", pa.float64(), nullable=False),
        pa.field("ymin", pa.float64(), nullable=False),
        pa.field("xmax", pa.float64(), nullable=False),
        pa.field("ymax", pa.float64(), nullable=False),
    ]
)

_RETURN_TYPES = {
    BINARY: pa.binary(),
    TEXT: pa.string(),
    FLOAT: pa.float64(),
    INT: pa.int32(),
    "int64": pa.int64(),
    "bool": pa.bool_(),
    "box2d": BOX2D_TYPE,
}

# "use the configured engine"
_CONFIGURED = object()


@dataclass(frozen=True)
class Evaluation:
    column: Any
    diagnostics: Tuple[Diagnostic, ...]


class _Scalar:
    def __init__(self, value):
        self.value = value

    def __call__(self, i):
        return self.value


def _values(value):
    if isinstance(value, pa.ChunkedArray):
        return value.to_pylist()
    if isinstance(value, pa.Array):
        return value.to_pylist()
    if isinstance(value, np.ndarray):
        return value.tolist()
    return list(value)


def geometry_column(value):
    """Coerce a geometry array, pyarrow column or sequence of geometries or
    WKB buffers to a geometry array."""
    from .extension_types import BaseGeometryType, geometry_array_from_pyarrow

    if isinstance(value, BaseGeometryArray):
        return value
    if isinstance(value, (pa.Array, pa.ChunkedArray)):
        if isinstance(value.type, BaseGeometryType):
            return geometry_array_from_pyarrow(value)
        return decode_column(value)
    items = list(value)
    if any(isinstance(v, (bytes, bytearray, memoryview)) for v in items):
        return decode_column(items)
    return from_geometries(items)


def _bind_geometry(value, diagnostics):
    if value is None or isinstance(value, Geometry):
        return _Scalar(value), None
    array = geometry_column(value)
    if array is not value:
        # rows that failed to decode here
        diagnostics.extend(array.diagnostics)
    return array.__getitem__, len(array)


def _bind_plain(value):
    if value is None or isinstance(value, (str, bytes, int, float, np.generic)):
        return _Scalar(value), None
    values = _values(value)
    return values.__getitem__, len(values)


class SpatialFunction:
    """A scalar spatial function.

    Parameters
    ----------
    name : str
    arg_types : tuple of str
        ``"geometry"``, ``"binary"``, ``"utf8"``, ``"float64"`` or ``"int32"``.
    return_type : str
        ``"geometry"`` or one of the scalar type names.
    native : callable, optional
        Row implementation over geometry values.
    engine_op : str, optional
        Name of the engine operation that can replace ``native``.
    defaults : tuple
        Values of trailing optional arguments.
    """

    def __init__(
        self,
        name,
        arg_types,
        return_type,
        native=None,
        engine_op=None,
        aliases=(),
        defaults=(),
    ):
        self.name = name
        self.arg_types = tuple(arg_types)
        self.return_type = return_type
        self.native = native
        self.engine_op = engine_op
        self.aliases = tuple(aliases)
        self.defaults = tuple(defaults)

    @property
    def arrow_return_type(self):
        if self.return_type == GEOMETRY:
            return None
        return _RETURN_TYPES[self.return_type]

    def __repr__(self):
        args = ", ".join(self.arg_types)
        return f"<SpatialFunction {self.name}({args}) -> {self.return_type}>"

    def _implementation(self, engine):
        if engine is not None and self.engine_op and engine.provides(self.engine_op):
            return getattr(engine, self.engine_op)
        if self.native is not None:
            return self.native

        def unsupported(*args):
            raise UnsupportedOperationError(f"{self.name} requires the geometry engine")

        return unsupported

    def _bind(self, args, diagnostics):
        n_required = len(self.arg_types) - len(self.defaults)
        if not n_required <= len(args) <= len(self.arg_types):
            raise TypeError(
                f"{self.name} takes {n_required} to {len(self.arg_types)} "
                f"arguments, got {len(args)}"
            )
        args = tuple(args) + self.defaults[len(args) - n_required :]

        getters = []
        lengths = set()
        for value, kind in zip(args, self.arg_types):
            if kind == GEOMETRY:
                getter, n = _bind_geometry(value, diagnostics)
            else:
                getter, n = _bind_plain(value)
            getters.append(getter)
            if n is not None:
                lengths.add(n)
        if len(lengths) > 1:
            raise ValueError(f"{self.name}: argument columns differ in length {lengths}")
        return getters, lengths.pop() if lengths else 1

    def invoke(self, *args, engine=_CONFIGURED, chunk_size=None, max_workers=None):
        """Evaluate the function over a batch.

        Geometry arguments take a geometry array, a pyarrow geometry or
        binary column, a sequence of geometries or buffers, or a single
        geometry broadcast to every row. Other arguments take a scalar or a
        column of values.
        """
        if engine is _CONFIGURED:
            engine = load_engine()
        impl = self._implementation(engine)
        diagnostics = []
        getters, n = self._bind(args, diagnostics)

        def row(i):
            values = [get(i) for get in getters]
            if any(v is None for v in values):
                return None
            return impl(*values)

        results, row_diagnostics = map_rows(row, n, chunk_size, max_workers)
        diagnostics.extend(row_diagnostics)
        if row_diagnostics:
            logger.warning(
                "%s: %d of %d rows failed, first: %s",
                self.name,
                len(row_diagnostics),
                n,
                row_diagnostics[0],
            )

        if self.return_type == GEOMETRY:
            column = from_geometries(results, diagnostics, chunk_size, max_workers)
        elif self.return_type == "box2d":
            column = pa.array(
                [None if r is None else dict(zip(BOX2D_TYPE.names, r)) for r in results],
                type=BOX2D_TYPE,
            )
        else:
            column = pa.array(results, type=self.arrow_return_type)
        return Evaluation(column, tuple(diagnostics))

    def __call__(self, *args, **kwargs):
        return self.invoke(*args, **kwargs).column


class ExtentAccumulator:
    """Running bounding box of geometry batches (``ST_Extent``)."""

    def __init__(self):
        self.box = None

    def update_batch(self, array):
        bounds = geometry_column(array).bounds()
        rows = ~np.isnan(bounds).any(axis=1)
        if rows.any():
            b = bounds[rows]
            self._merge(
                (b[:, 0].min(), b[:, 1].min(), b[:, 2].max(), b[:, 3].max())
            )

    def _merge(self, box):
        box = tuple(float(v) for v in box)
        if self.box is None:
            self.box = box
        else:
            self.box = (
                min(self.box[0], box[0]),
                min(self.box[1], box[1]),
                max(self.box[2], box[2]),
                max(self.box[3], box[3]),
            )

    def merge(self, other):
        if other.box is not None:
            self._merge(other.box)

    def evaluate(self):
        value = None if self.box is None else dict(zip(BOX2D_TYPE.names, self.box))
        return pa.scalar(value, type=BOX2D_TYPE)


class SpatialAggregate:
    def __init__(self, name, accumulator, return_type, aliases=()):
        self.name = name
        self.accumulator = accumulator
        self.return_type = return_type
        self.aliases = tuple(aliases)

    def __call__(self, *batches):
        acc = self.accumulator()
        for batch in batches:
            acc.update_batch(batch)
        return acc.evaluate()


FUNCTIONS = {}


def register_function(func):
    for name in (func.name,) + func.aliases:
        FUNCTIONS[name.lower()] = func
    return func


def get_function(name):
    try:
        return FUNCTIONS[name.lower()]
    except KeyError:
        raise KeyError(f"unknown spatial function {name!r}") from None


def _same_srid(func):
    def checked(a, b):
        if a.srid and b.srid and a.srid != b.srid:
            raise UnsupportedOperationError(
                f"operation on mixed SRID geometries ({a.srid} != {b.srid})"
            )
        return func(a, b)

    checked.__name__ = func.__name__
    return checked


def _from_wkb(data, srid=0):
    geometry = wkb.decode(data)
    return geometry.with_srid(srid) if srid else geometry


def _from_text(text, srid=0):
    geometry = wkt.loads(text)
    return geometry.with_srid(srid) if srid else geometry


def _box2d(geometry):
    return geometry.bounds()


def _make_envelope(xmin, ymin, xmax, ymax, srid=0):
    return algorithms.make_envelope(xmin, ymin, xmax, ymax, int(srid))


def _register(*args, **kwargs):
    return register_function(SpatialFunction(*args, **kwargs))


st_geomfromwkb = _register(
    "ST_GeomFromWKB", (BINARY, INT), GEOMETRY, _from_wkb, defaults=(0,),
    aliases=("ST_GeomFromEWKB",),
)
st_geomfromtext = _register(
    "ST_GeomFromText", (TEXT, INT), GEOMETRY, _from_text, defaults=(0,),
    aliases=("ST_GeomFromWKT", "ST_GeomFromEWKT"),
)
st_asbinary = _register(
    "ST_AsBinary", (GEOMETRY,), BINARY,
    lambda g: wkb.encode(g, dialect="wkb", byte_order="little", include_srid=False),
)
st_asewkb = _register(
    "ST_AsEWKB", (GEOMETRY,), BINARY,
    lambda g: wkb.encode(g, dialect="ewkb", byte_order="little"),
)
st_astext = _register("ST_AsText", (GEOMETRY,), TEXT, wkt.dumps, aliases=("ST_AsWKT",))
st_asewkt = _register("ST_AsEWKT", (GEOMETRY,), TEXT, lambda g: wkt.dumps(g, srid=True))
st_geometrytype = _register(
    "ST_GeometryType", (GEOMETRY,), TEXT, lambda g: g.geometry_type.st_name
)
st_srid = _register("ST_SRID", (GEOMETRY,), INT, lambda g: g.srid)
st_setsrid = _register(
    "ST_SetSRID", (GEOMETRY, INT), GEOMETRY, lambda g, srid: g.with_srid(srid)
)
st_npoints = _register("ST_NPoints", (GEOMETRY,), "int64", lambda g: g.num_points)
st_isempty = _register("ST_IsEmpty", (GEOMETRY,), "bool", lambda g: g.is_empty)
st_x = _register("ST_X", (GEOMETRY,), FLOAT, lambda g: algorithms.point_coordinate(g, 0))
st_y = _register("ST_Y", (GEOMETRY,), FLOAT, lambda g: algorithms.point_coordinate(g, 1))

st_area = _register("ST_Area", (GEOMETRY,), FLOAT, algorithms.area, engine_op="area")
st_length = _register(
    "ST_Length", (GEOMETRY,), FLOAT, algorithms.length, engine_op="length"
)
st_perimeter = _register(
    "ST_Perimeter", (GEOMETRY,), FLOAT, algorithms.perimeter, engine_op="perimeter"
)
st_distance = _register(
    "ST_Distance", (GEOMETRY, GEOMETRY), FLOAT,
    _same_srid(algorithms.distance), engine_op="distance",
)
st_intersects = _register(
    "ST_Intersects", (GEOMETRY, GEOMETRY), "bool",
    _same_srid(algorithms.intersects), engine_op="intersects",
)
st_contains = _register(
    "ST_Contains", (GEOMETRY, GEOMETRY), "bool",
    _same_srid(algorithms.contains), engine_op="contains",
)
st_within = _register(
    "ST_Within", (GEOMETRY, GEOMETRY), "bool",
    _same_srid(lambda a, b: algorithms.contains(b, a)), engine_op="within",
)
st_covers = _register(
    "ST_Covers", (GEOMETRY, GEOMETRY), "bool",
    _same_srid(algorithms.covers), engine_op="covers",
)
st_coveredby = _register(
    "ST_CoveredBy", (GEOMETRY, GEOMETRY), "bool",
    _same_srid(lambda a, b: algorithms.covers(b, a)), engine_op="covered_by",
)
st_equals = _register(
    "ST_Equals", (GEOMETRY, GEOMETRY), "bool",
    _same_srid(algorithms.equals), engine_op="equals",
)

st_translate = _register(
    "ST_Translate", (GEOMETRY, FLOAT, FLOAT), GEOMETRY, algorithms.translate
)
st_boundary = _register(
    "ST_Boundary", (GEOMETRY,), GEOMETRY, algorithms.boundary, engine_op="boundary"
)
st_buffer = _register("ST_Buffer", (GEOMETRY, FLOAT), GEOMETRY, engine_op="buffer")
st_split = _register("ST_Split", (GEOMETRY, GEOMETRY), GEOMETRY, engine_op="split")
st_envelope = _register("ST_Envelope", (GEOMETRY,), GEOMETRY, algorithms.envelope)
st_box2d = _register("ST_Box2D", (GEOMETRY,), "box2d", _box2d)
st_makeenvelope = _register(
    "ST_MakeEnvelope", (FLOAT, FLOAT, FLOAT, FLOAT, INT), GEOMETRY,
    _make_envelope, defaults=(0,),
)

st_extent = SpatialAggregate("ST_Extent", ExtentAccumulator, "box2d")
register_function(st_extent)
