import logging

import numpy as np
import pyarrow as pa
import pytest

from geofusion import wkb
from geofusion.array import (
    GeometryArray,
    GeometryCollectionArray,
    MixedGeometryArray,
    decode_column,
    encode_column,
    from_geometries,
    split_type_id,
    type_id,
)
from geofusion.geometry import (
    Dimensions,
    GeometryCollection,
    GeometryType,
    LineString,
    MultiLineString,
    MultiPoint,
    MultiPolygon,
    Point,
    Polygon,
)

SQUARE = [(0, 0), (4, 0), (4, 4), (0, 4), (0, 0)]
TRIANGLE = [(10, 10), (12, 10), (11, 12), (10, 10)]
HOLE = [(1, 1), (2, 1), (2, 2), (1, 1)]


def test_points():
    arr = from_geometries([Point((1, 2)), None, Point(), Point((5, 6))])
    assert isinstance(arr, GeometryArray)
    assert arr.geometry_type is GeometryType.POINT
    assert arr.dims is Dimensions.XY
    assert arr.offsets == ()
    assert arr.coords.shape == (4, 2)
    np.testing.assert_array_equal(arr.validity, [True, False, True, True])
    assert np.isnan(arr.coords[1]).all()
    assert np.isnan(arr.coords[2]).all()
    assert arr.null_count == 1
    assert arr[0] == Point((1, 2))
    assert arr[1] is None
    assert arr[2].is_empty
    assert arr[-1] == Point((5, 6))
    with pytest.raises(IndexError):
        arr[4]


def test_linestring_offsets():
    arr = from_geometries(
        [LineString([(0, 0), (1, 1)]), None, LineString([(2, 2), (3, 3), (4, 4)])]
    )
    (geom_offsets,) = arr.offsets
    np.testing.assert_array_equal(geom_offsets, [0, 2, 2, 5])
    assert arr.coords.shape == (5, 2)
    np.testing.assert_array_equal(arr.coord_offsets(), [0, 2, 2, 5])


def test_polygon_offsets():
    geoms = [Polygon([SQUARE, HOLE]), Polygon([TRIANGLE]), None, Polygon()]
    arr = from_geometries(geoms)
    ring_offsets, geom_offsets = arr.offsets
    np.testing.assert_array_equal(geom_offsets, [0, 2, 3, 3, 3])
    np.testing.assert_array_equal(ring_offsets, [0, 5, 9, 13])
    np.testing.assert_array_equal(arr.coord_offsets(), [0, 9, 13, 13, 13])
    assert arr.to_geometries() == geoms


def test_multipolygon_offsets():
    geoms = [
        MultiPolygon([[SQUARE, HOLE], [TRIANGLE]]),
        None,
        MultiPolygon([[TRIANGLE]]),
    ]
    arr = from_geometries(geoms)
    ring_offsets, polygon_offsets, geom_offsets = arr.offsets
    np.testing.assert_array_equal(geom_offsets, [0, 2, 2, 3])
    np.testing.assert_array_equal(polygon_offsets, [0, 2, 3, 4])
    np.testing.assert_array_equal(ring_offsets, [0, 5, 9, 13, 17])
    assert arr.to_geometries() == geoms


@pytest.mark.parametrize(
    "geoms",
    [
        [Point((1, 2, 3)), None, Point((4, 5, 6))],
        [MultiPoint([(0, 0), (1, 1)]), MultiPoint(), None],
        [MultiLineString([[(0, 0), (1, 1)], [(2, 2), (3, 3)]]), None],
        [Polygon([[(0, 0, 1, 2), (1, 0, 1, 2), (1, 1, 1, 2), (0, 0, 1, 2)]])],
    ],
)
def test_to_geometries_roundtrip(geoms):
    arr = from_geometries(geoms)
    assert isinstance(arr, GeometryArray)
    assert arr.to_geometries() == geoms


def test_srids():
    arr = from_geometries([Point((0, 0), srid=4326), None, Point((1, 1), srid=4326)])
    np.testing.assert_array_equal(arr.srids, [4326, 0, 4326])
    assert arr.srid == 4326
    assert arr[2].srid == 4326

    arr = from_geometries([Point((0, 0), srid=4326), Point((1, 1), srid=3857)])
    assert arr.srid is None


def test_buffers_are_read_only():
    arr = from_geometries([LineString([(0, 0), (1, 1)])])
    for buf in (arr.coords, arr.validity, arr.srids) + arr.offsets:
        assert not buf.flags.writeable
    with pytest.raises(ValueError):
        arr.coords[0, 0] = 10.0


def test_collections():
    geoms = [
        GeometryCollection([Point((0, 0)), LineString([(1, 1), (2, 2)])]),
        None,
        GeometryCollection(),
        GeometryCollection([Polygon([SQUARE])], srid=4326),
    ]
    arr = from_geometries(geoms)
    assert isinstance(arr, GeometryCollectionArray)
    np.testing.assert_array_equal(arr.geom_offsets, [0, 2, 2, 2, 3])
    assert len(arr.members) == 3
    assert arr.to_geometries() == geoms
    bounds = arr.bounds()
    np.testing.assert_array_equal(bounds[0], [0, 0, 2, 2])
    assert np.isnan(bounds[1]).all()
    assert np.isnan(bounds[2]).all()


def test_mixed():
    geoms = [
        Point((0, 0)),
        None,
        LineString([(0, 0), (1, 1)]),
        Point((1, 2, 3)),
        Point((3, 3)),
    ]
    arr = from_geometries(geoms)
    assert isinstance(arr, MixedGeometryArray)
    assert arr.dims is None
    np.testing.assert_array_equal(arr.type_ids, [1, 0, 2, 11, 1])
    np.testing.assert_array_equal(arr.value_offsets, [0, -1, 0, 0, 1])
    assert sorted(arr.children) == [1, 2, 11]
    assert arr.to_geometries() == geoms
    np.testing.assert_array_equal(arr.bounds()[4], [3, 3, 3, 3])


def test_type_ids():
    assert type_id(GeometryType.POLYGON, Dimensions.XYZM) == 33
    assert split_type_id(33) == (GeometryType.POLYGON, Dimensions.XYZM)


def test_bounds():
    arr = from_geometries(
        [Polygon([SQUARE]), None, Polygon(), Polygon([TRIANGLE])]
    )
    bounds = arr.bounds()
    np.testing.assert_array_equal(bounds[0], [0, 0, 4, 4])
    assert np.isnan(bounds[1]).all()
    assert np.isnan(bounds[2]).all()
    np.testing.assert_array_equal(bounds[3], [10, 10, 12, 12])


def test_all_null():
    arr = from_geometries([None, None])
    assert arr.geometry_type is GeometryType.POINT
    assert arr.null_count == 2
    assert arr.srid == 0


def test_invalid_buffers():
    coords = np.zeros((3, 2))
    with pytest.raises(ValueError):
        # offsets decrease
        GeometryArray(GeometryType.LINESTRING, "xy", coords, ([0, 4, 3],), [True, True])
    with pytest.raises(ValueError):
        # last offset does not match the coordinates
        GeometryArray(GeometryType.LINESTRING, "xy", coords, ([0, 1, 2],), [True, True])
    with pytest.raises(ValueError):
        GeometryArray(GeometryType.LINESTRING, "xyz", coords, ([0, 3],), [True])
    with pytest.raises(ValueError):
        GeometryArray(GeometryType.POLYGON, "xy", coords, ([0, 3],), [True])
    with pytest.raises(ValueError):
        GeometryArray(GeometryType.GEOMETRYCOLLECTION, "xy", coords, (), [True] * 3)
    with pytest.raises(ValueError):
        GeometryArray(GeometryType.POINT, "xy", coords, (), [True, True])


def test_build_in_parallel_chunks():
    rng = np.random.default_rng(42)
    geoms = []
    for i in range(500):
        if i % 7 == 0:
            geoms.append(None)
            continue
        n = int(rng.integers(2, 6))
        geoms.append(LineString(rng.uniform(0, 100, (n, 2)).tolist()))
    serial = from_geometries(geoms)
    parallel = from_geometries(geoms, chunk_size=16, max_workers=4)
    np.testing.assert_array_equal(serial.coords, parallel.coords)
    np.testing.assert_array_equal(serial.offsets[0], parallel.offsets[0])
    assert parallel.to_geometries() == geoms


def test_decode_column_valid_null_truncated(caplog):
    point = wkb.encode(Point((1, 2)))
    values = pa.array([point, None, point[:-3]], type=pa.binary())

    with caplog.at_level(logging.WARNING, logger="geofusion"):
        arr = decode_column(values)

    np.testing.assert_array_equal(arr.validity, [True, False, False])
    assert arr[0] == Point((1, 2))
    assert len(arr.diagnostics) == 1
    diagnostic = arr.diagnostics[0]
    assert diagnostic.row == 2
    assert diagnostic.kind == "TruncatedError"
    assert "1 of 3 rows failed to decode" in caplog.text


@pytest.mark.parametrize(
    "values",
    [
        [b"\x01\x01\x00\x00\x00" + b"\x00" * 16],
        pa.array([b"\x01\x01\x00\x00\x00" + b"\x00" * 16], type=pa.large_binary()),
        pa.chunked_array([[b"\x01\x01\x00\x00\x00" + b"\x00" * 16]]),
    ],
)
def test_decode_column_inputs(values):
    arr = decode_column(values)
    assert arr.to_geometries() == [Point((0, 0))]


def test_decode_column_rejects_non_binary():
    with pytest.raises(TypeError):
        decode_column(pa.array([1, 2]))
    with pytest.raises(TypeError):
        decode_column(["POINT (1 2)"])


def test_batch_roundtrip_is_idempotent():
    geoms = [
        Point((1, 2), srid=4326),
        None,
        LineString([(0, 0), (1, 1)]),
        Polygon([SQUARE, HOLE], srid=3857),
        GeometryCollection([Point((1, 1)), MultiPoint([(2, 2)])]),
    ]
    first = encode_column(geoms)
    assert first.type == pa.binary()
    assert first[1].as_py() is None

    decoded = decode_column(first, chunk_size=2, max_workers=2)
    assert decoded.to_geometries() == geoms
    assert encode_column(decoded).equals(first)


def test_encode_column_dialect():
    arr = from_geometries([Point((1, 2))])
    (data,) = encode_column(arr, dialect="wkb", byte_order="big").to_pylist()
    assert data == bytes.fromhex("00000000013FF00000000000004000000000000000")


def test_equals():
    a = from_geometries([Point((1, 2)), None])
    b = from_geometries([Point((1, 2)), None])
    c = from_geometries([Point((1, 2)), Point((1, 2))])
    assert a.equals(b)
    assert not a.equals(c)
    assert "POINT" in repr(a)
