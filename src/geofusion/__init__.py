"""
Spatial types and functions for columnar query engines
"""
# flake8: noqa

__version__ = "0.1.0"


from .errors import (
    GeofusionError,
    CodecError,
    GeometryError,
    SpatialIndexError,
    Diagnostic,
)
from .geometry import (
    GeometryType,
    Dimensions,
    Geometry,
    Point,
    LineString,
    Polygon,
    MultiPoint,
    MultiLineString,
    MultiPolygon,
    GeometryCollection,
)
from .extension_types import (
    PointGeometryType,
    LineStringGeometryType,
    PolygonGeometryType,
    MultiPointGeometryType,
    MultiLineStringGeometryType,
    MultiPolygonGeometryType,
    WkbGeometryType,
    register_geometry_extension_types,
    unregister_geometry_extension_types,
    construct_geometry_array,
    geometry_array_from_pyarrow,
)
from .array import (
    GeometryArray,
    GeometryCollectionArray,
    MixedGeometryArray,
    from_geometries,
    decode_column,
    encode_column,
)
from .index import SpatialIndex
from .functions import FUNCTIONS, get_function, register_function
from .io import read_parquet, to_parquet, to_geopandas


# by default register the extension types when importing geofusion
register_geometry_extension_types()
