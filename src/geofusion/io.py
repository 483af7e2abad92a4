import json
import logging
import re
import warnings

import numpy as np
import pyarrow as pa
from pyarrow import parquet

from .array import decode_column, encode_column, from_geometries
from .extension_types import (
    BaseGeometryType,
    construct_geometry_array,
    geometry_array_from_pyarrow,
)

logger = logging.getLogger(__name__)

GEOPARQUET_VERSION = "1.0.0"

_EPSG = re.compile(r"^EPSG:(\d+)$", re.IGNORECASE)


def _crs(srid):
    return f"EPSG:{srid}" if srid else None


def _srid(crs):
    if crs is None:
        return 0
    if isinstance(crs, dict):
        # PROJJSON
        ident = crs.get("id") or {}
        if ident.get("authority") == "EPSG":
            return int(ident["code"])
        return 0
    match = _EPSG.match(str(crs))
    return int(match.group(1)) if match else 0


def _geometry_columns(table):
    return [
        name
        for name, field in zip(table.column_names, table.schema)
        if isinstance(field.type, BaseGeometryType)
    ]


def _decode_metadata(metadata):
    if metadata is None or b"geo" not in metadata:
        raise ValueError(
            """Missing geo metadata in Parquet file.
            Use pyarrow.parquet.read_table() instead."""
        )
    try:
        return json.loads(metadata[b"geo"].decode("utf-8"))
    except (TypeError, UnicodeDecodeError, json.decoder.JSONDecodeError):
        raise ValueError("Missing or malformed geo metadata in Parquet file")


def _with_srid(array, srid):
    if not srid:
        return array
    geoms = [None if g is None else g.with_srid(srid) for g in array]
    return from_geometries(geoms, array.diagnostics)


def read_parquet(path, columns=None, **kwargs):
    """Read a GeoParquet file into a table with geometry extension columns.

    WKB encoded columns are decoded; rows that fail to decode become null.
    """
    table = parquet.read_table(path, columns=columns, **kwargs)
    metadata = _decode_metadata(table.schema.metadata)

    geometry_columns = [c for c in table.column_names if c in metadata["columns"]]
    if not geometry_columns:
        raise ValueError(
            """No geometry columns are included in the columns read from
            the Parquet file."""
        )

    for col in geometry_columns:
        info = metadata["columns"][col]
        if isinstance(table.schema.field(col).type, BaseGeometryType):
            continue
        if info.get("encoding", "WKB").upper() != "WKB":
            raise ValueError(f"unsupported geometry encoding {info['encoding']!r}")
        array = _with_srid(decode_column(table[col]), _srid(info.get("crs")))
        idx = table.column_names.index(col)
        table = table.set_column(idx, col, construct_geometry_array(array))
    logger.debug("read %d rows, geometry columns %s", len(table), geometry_columns)
    return table


def _column_metadata(array):
    types = sorted(
        {
            g.geometry_type.st_name[3:]
            + (" Z" if g.dims is not None and g.dims.has_z else "")
            for g in array
            if g is not None
        }
    )
    bounds = array.bounds()
    valid = bounds[~np.isnan(bounds).any(axis=1)]
    info = {"encoding": "WKB", "geometry_types": types, "crs": _crs(array.srid)}
    if len(valid):
        info["bbox"] = [
            float(valid[:, 0].min()),
            float(valid[:, 1].min()),
            float(valid[:, 2].max()),
            float(valid[:, 3].max()),
        ]
    return info


def _table_to_geoparquet(table):
    columns = _geometry_columns(table)
    if not columns:
        raise ValueError("table has no geometry columns")

    geo_metadata = {
        "version": GEOPARQUET_VERSION,
        "primary_column": columns[0],
        "columns": {},
    }
    for col in columns:
        array = geometry_array_from_pyarrow(table[col])
        if array.srid is None:
            raise ValueError(f"geometry column {col!r} mixes SRIDs")
        geo_metadata["columns"][col] = _column_metadata(array)
        wkb_values = encode_column(array, dialect="wkb", include_srid=False)
        idx = table.column_names.index(col)
        table = table.set_column(idx, col, wkb_values)

    metadata = dict(table.schema.metadata or {})
    metadata[b"geo"] = json.dumps(geo_metadata).encode("utf-8")
    return table.replace_schema_metadata(metadata)


def to_parquet(table, path, compression="snappy", **kwargs):
    """Write a table with geometry extension columns to GeoParquet."""
    table = _table_to_geoparquet(table)
    parquet.write_table(table, path, compression=compression, **kwargs)


def to_geopandas(table):
    """Convert a table with geometry extension columns to a GeoDataFrame.

    The first geometry column becomes the active geometry.
    """
    try:
        import geopandas
    except ImportError as e:
        raise ImportError(
            "to_geopandas requires 'geopandas'. Install via: pip install geofusion[geopandas]"
        ) from e

    if isinstance(table, pa.RecordBatch):
        table = pa.Table.from_batches([table])
    columns = _geometry_columns(table)
    if not columns:
        raise ValueError("table has no geometry columns")

    data = {}
    for col in table.column_names:
        if col not in columns:
            data[col] = table[col].to_pandas()
            continue
        array = geometry_array_from_pyarrow(table[col])
        srid = array.srid
        if srid is None:
            warnings.warn(
                f"Geometry column {col!r} mixes SRIDs, its CRS is left unset."
            )
        values = encode_column(array, dialect="wkb", include_srid=False)
        data[col] = geopandas.GeoSeries.from_wkb(values.to_pylist(), crs=_crs(srid))
    return geopandas.GeoDataFrame(data, geometry=columns[0])
