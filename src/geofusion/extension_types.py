import numpy as np
import pyarrow as pa

from .array import (
    BaseGeometryArray,
    GeometryArray,
    decode_column,
    encode_column,
)
from .geometry import Dimensions, GeometryType

# the simpler storage versions without named child fields (because creating
# arrays with that exact type is hard), the dimensions live in the metadata


def _storage_type(nesting, dims):
    typ = pa.list_(pa.float64(), dims.size)
    for _ in range(nesting):
        typ = pa.list_(typ)
    return typ


class ArrowGeometryArray(pa.ExtensionArray):
    def to_geometry_array(self):
        return geometry_array_from_pyarrow(self)

    def to_numpy(self, **kwargs):
        values = self.to_geometry_array().to_geometries()
        out = np.empty(len(values), dtype=object)
        out[:] = values
        return out


class BaseGeometryType(pa.ExtensionType):
    _extension_name: str
    _geometry_type: GeometryType

    def __init__(self, dims=Dimensions.XY, srid=0):
        # attributes need to be set first before calling
        # super init (as that calls serialize)
        self._dims = Dimensions(dims)
        self._srid = int(srid)
        pa.ExtensionType.__init__(
            self, self._make_storage_type(self._dims), self._extension_name
        )

    def _make_storage_type(self, dims):
        return _storage_type(self._geometry_type.nesting, dims)

    @property
    def dims(self):
        return self._dims

    @property
    def srid(self):
        return self._srid

    @property
    def geometry_type(self):
        return self._geometry_type

    def __arrow_ext_serialize__(self):
        return "dims={};srid={}".format(self.dims.value, self.srid).encode()

    @classmethod
    def __arrow_ext_deserialize__(cls, storage_type, serialized):
        # return an instance of this subclass given the serialized
        # metadata.
        params = dict(
            item.split("=", 1) for item in serialized.decode().split(";") if "=" in item
        )
        return cls(dims=params.get("dims", "xy"), srid=int(params.get("srid") or 0))

    def __arrow_ext_class__(self):
        return ArrowGeometryArray


class PointGeometryType(BaseGeometryType):
    _extension_name = "geoarrow.point"
    _geometry_type = GeometryType.POINT


class LineStringGeometryType(BaseGeometryType):
    _extension_name = "geoarrow.linestring"
    _geometry_type = GeometryType.LINESTRING


class PolygonGeometryType(BaseGeometryType):
    _extension_name = "geoarrow.polygon"
    _geometry_type = GeometryType.POLYGON


class MultiPointGeometryType(BaseGeometryType):
    _extension_name = "geoarrow.multipoint"
    _geometry_type = GeometryType.MULTIPOINT


class MultiLineStringGeometryType(BaseGeometryType):
    _extension_name = "geoarrow.multilinestring"
    _geometry_type = GeometryType.MULTILINESTRING


class MultiPolygonGeometryType(BaseGeometryType):
    _extension_name = "geoarrow.multipolygon"
    _geometry_type = GeometryType.MULTIPOLYGON


class WkbGeometryType(BaseGeometryType):
    """Serialized (EWKB) storage, used for collections and mixed columns."""

    _extension_name = "geoarrow.wkb"
    _geometry_type = GeometryType.GEOMETRY

    def _make_storage_type(self, dims):
        return pa.binary()


_NATIVE_TYPES = {
    cls._geometry_type: cls
    for cls in (
        PointGeometryType,
        LineStringGeometryType,
        PolygonGeometryType,
        MultiPointGeometryType,
        MultiLineStringGeometryType,
        MultiPolygonGeometryType,
    )
}

_ALL_TYPES = list(_NATIVE_TYPES.values()) + [WkbGeometryType]


def register_geometry_extension_types():
    for cls in _ALL_TYPES:
        try:
            pa.register_extension_type(cls())
        except pa.ArrowKeyError:
            # already registered
            pass


def unregister_geometry_extension_types():
    for cls in _ALL_TYPES:
        try:
            pa.unregister_extension_type(cls._extension_name)
        except (pa.ArrowKeyError, KeyError):
            pass


def construct_geometry_array(arr):
    """Expose a columnar geometry array as a pyarrow extension array.

    Native arrays with a single SRID keep their layout; collections, mixed
    columns and columns mixing SRIDs fall back to EWKB storage.
    """
    if not isinstance(arr, BaseGeometryArray):
        raise TypeError(f"expected a geometry array, got {type(arr).__name__}")

    srid = arr.srid
    if not isinstance(arr, GeometryArray) or srid is None:
        storage = encode_column(arr, dialect="ewkb", byte_order="little")
        return pa.ExtensionArray.from_storage(WkbGeometryType(), storage)

    typ = _NATIVE_TYPES[arr.geometry_type](dims=arr.dims, srid=srid)
    mask = pa.array(~arr.validity) if arr.null_count else None
    values = pa.array(arr.coords.ravel(), type=pa.float64())

    if not arr.offsets:
        parr = pa.FixedSizeListArray.from_arrays(values, arr.dims.size, mask=mask)
        return pa.ExtensionArray.from_storage(typ, parr)

    parr = pa.FixedSizeListArray.from_arrays(values, arr.dims.size)
    *inner, outer = arr.offsets
    for offsets in inner:
        parr = pa.ListArray.from_arrays(pa.array(offsets, type=pa.int32()), parr)
    parr = pa.ListArray.from_arrays(pa.array(outer, type=pa.int32()), parr, mask=mask)
    return pa.ExtensionArray.from_storage(typ, parr)


def _fixed_size_values(level, size):
    # .values ignores the slice offset of the fixed size list itself
    values = np.asarray(level.values, dtype=np.float64)
    start = level.offset * size
    return values[start : start + len(level) * size].reshape(-1, size)


def geometry_array_from_pyarrow(arr):
    """Inverse of ``construct_geometry_array``."""
    if isinstance(arr, pa.ChunkedArray):
        arr = arr.combine_chunks()
    typ = arr.type
    if not isinstance(typ, BaseGeometryType):
        raise TypeError(f"expected a geoarrow extension array, got {typ}")

    if isinstance(typ, WkbGeometryType):
        return decode_column(arr.storage)

    storage = arr.storage
    validity = ~np.asarray(storage.is_null().to_numpy(zero_copy_only=False))
    level = storage
    offsets = []
    for _ in range(typ.geometry_type.nesting):
        o = np.asarray(level.offsets, dtype=np.int64)
        start, stop = int(o[0]), int(o[-1])
        offsets.append(o - start)
        level = level.values.slice(start, stop - start)
    coords = _fixed_size_values(level, typ.dims.size)

    srids = np.full(len(arr), typ.srid, dtype=np.int32)
    srids[~validity] = 0
    return GeometryArray(
        typ.geometry_type,
        typ.dims,
        coords,
        tuple(reversed(offsets)),
        validity,
        srids,
    )
