"""
GEOS-backed geometry engine, via shapely.

The engine is a capability object: functions ask it whether it ``provides``
an operation and otherwise fall back to the native algorithms. Whether an
engine is used at all is a configuration choice (``use_engine``), and
shapely is only imported once an engine is created.
"""
import functools
import logging

from . import wkb
from .algorithms import simple_parts
from .config import get_settings
from .errors import DegenerateInputError, UnsupportedOperationError
from .geometry import GeometryType, MultiLineString, MultiPolygon

logger = logging.getLogger(__name__)


def _import_shapely():
    try:
        import shapely
        import shapely.errors
        import shapely.ops
    except ImportError as e:
        raise ImportError(
            "The geometry engine requires 'shapely'. "
            "Install via: pip install geofusion[engine]"
        ) from e
    return shapely


def _geos_errors(method):
    # GEOS failures are row errors, not batch errors
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except self.shapely.errors.GeometryTypeError as err:
            raise UnsupportedOperationError(f"{method.__name__}: {err}") from err
        except self.shapely.errors.ShapelyError as err:
            raise DegenerateInputError(f"{method.__name__}: {err}") from err

    return wrapper


class ShapelyEngine:
    name = "shapely"

    operations = frozenset(
        [
            "area",
            "length",
            "perimeter",
            "distance",
            "intersects",
            "contains",
            "within",
            "covers",
            "covered_by",
            "equals",
            "buffer",
            "boundary",
            "split",
        ]
    )

    def __init__(self):
        self.shapely = _import_shapely()

    def provides(self, operation):
        return operation in self.operations

    @_geos_errors
    def to_shapely(self, geometry):
        data = wkb.encode(geometry, dialect="wkb", byte_order="little", include_srid=False)
        return self.shapely.from_wkb(data)

    @_geos_errors
    def from_shapely(self, geom, srid=0):
        if geom is None:
            raise UnsupportedOperationError("engine returned no geometry")
        out = wkb.decode(self.shapely.to_wkb(geom, byte_order=1))
        return out.with_srid(srid) if srid else out

    @_geos_errors
    def area(self, geometry):
        return float(self.shapely.area(self.to_shapely(geometry)))

    @_geos_errors
    def length(self, geometry):
        lines = [
            p for p in simple_parts(geometry) if p.geometry_type is GeometryType.LINESTRING
        ]
        if not lines:
            return 0.0
        return float(self.shapely.length(self.to_shapely(MultiLineString(lines))))

    @_geos_errors
    def perimeter(self, geometry):
        polygons = [
            p for p in simple_parts(geometry) if p.geometry_type is GeometryType.POLYGON
        ]
        if not polygons:
            return 0.0
        return float(self.shapely.length(self.to_shapely(MultiPolygon(polygons))))

    @_geos_errors
    def distance(self, a, b):
        if a.is_empty or b.is_empty:
            raise DegenerateInputError("distance to an empty geometry is undefined")
        return float(self.shapely.distance(self.to_shapely(a), self.to_shapely(b)))

    @_geos_errors
    def intersects(self, a, b):
        return bool(self.shapely.intersects(self.to_shapely(a), self.to_shapely(b)))

    @_geos_errors
    def contains(self, a, b):
        return bool(self.shapely.contains(self.to_shapely(a), self.to_shapely(b)))

    @_geos_errors
    def within(self, a, b):
        return bool(self.shapely.within(self.to_shapely(a), self.to_shapely(b)))

    @_geos_errors
    def covers(self, a, b):
        return bool(self.shapely.covers(self.to_shapely(a), self.to_shapely(b)))

    @_geos_errors
    def covered_by(self, a, b):
        return bool(self.shapely.covered_by(self.to_shapely(a), self.to_shapely(b)))

    @_geos_errors
    def equals(self, a, b):
        return bool(self.shapely.equals(self.to_shapely(a), self.to_shapely(b)))

    @_geos_errors
    def buffer(self, geometry, radius, quad_segs=8):
        result = self.shapely.buffer(self.to_shapely(geometry), radius, quad_segs=quad_segs)
        return self.from_shapely(result, geometry.srid)

    @_geos_errors
    def boundary(self, geometry):
        result = self.shapely.boundary(self.to_shapely(geometry))
        if result is None:
            raise UnsupportedOperationError(
                f"boundary of {geometry.geometry_type.name} is undefined"
            )
        return self.from_shapely(result, geometry.srid)

    @_geos_errors
    def split(self, geometry, splitter):
        """Split a line or polygon by another geometry into a collection."""
        result = self.shapely.ops.split(
            self.to_shapely(geometry), self.to_shapely(splitter)
        )
        return self.from_shapely(result, geometry.srid)


def load_engine(enabled=None):
    """Return the shapely engine if enabled, else ``None``.

    Raises ``ImportError`` when the engine is enabled but shapely is not
    installed.
    """
    if enabled is None:
        enabled = get_settings().use_engine
    if not enabled:
        return None
    engine = ShapelyEngine()
    logger.debug(
        "using shapely %s (GEOS %s) engine",
        engine.shapely.__version__,
        engine.shapely.geos_version_string,
    )
    return engine
