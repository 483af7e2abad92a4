import pytest

from geofusion import wkt
from geofusion.errors import CodecError, WktError
from geofusion.geometry import (
    Dimensions,
    GeometryCollection,
    GeometryType,
    LineString,
    MultiPoint,
    Point,
    Polygon,
)


@pytest.mark.parametrize(
    "text",
    [
        "POINT (1 2)",
        "POINT Z (1 2 3)",
        "POINT M (1 2 3)",
        "POINT ZM (1 2 3 4)",
        "POINT EMPTY",
        "LINESTRING (0 0, 1.5 2)",
        "LINESTRING EMPTY",
        "POLYGON ((0 0, 1 0, 1 1, 0 0))",
        "POLYGON ((0 0, 10 0, 10 10, 0 10, 0 0), (2 2, 3 2, 3 3, 2 2))",
        "MULTIPOINT ((1 2), (3 4))",
        "MULTILINESTRING ((0 0, 1 1), (2 2, 3 3))",
        "MULTIPOLYGON (((0 0, 1 0, 1 1, 0 0)), ((5 5, 6 5, 6 6, 5 5)))",
        "GEOMETRYCOLLECTION (POINT (1 2), GEOMETRYCOLLECTION EMPTY)",
        "GEOMETRYCOLLECTION EMPTY",
    ],
)
def test_roundtrip(text):
    assert wkt.dumps(wkt.loads(text)) == text


def test_loads():
    assert wkt.loads("POINT (1 2)") == Point((1, 2))
    assert wkt.loads("point(1 2)") == Point((1, 2))
    assert wkt.loads("POINT M (1 2 3)").dims is Dimensions.XYM
    assert wkt.loads("LINESTRING (0 0, 1e3 -2.5)") == LineString([(0, 0), (1000, -2.5)])
    polygon = wkt.loads("POLYGON ((0 0, 1 0, 1 1, 0 0))")
    assert polygon == Polygon([[(0, 0), (1, 0), (1, 1), (0, 0)]])


def test_loads_ewkt():
    g = wkt.loads("SRID=4326;POINT Z (1 2 3)")
    assert g == Point((1, 2, 3), srid=4326)
    assert wkt.dumps(g, srid=True) == "SRID=4326;POINT Z (1 2 3)"
    assert wkt.dumps(g) == "POINT Z (1 2 3)"


def test_multipoint_forms():
    expected = MultiPoint([(1, 2), (3, 4)])
    assert wkt.loads("MULTIPOINT (1 2, 3 4)") == expected
    assert wkt.loads("MULTIPOINT ((1 2), (3 4))") == expected


def test_collection():
    g = wkt.loads("GEOMETRYCOLLECTION (POINT (1 2), LINESTRING (0 0, 1 1))")
    assert isinstance(g, GeometryCollection)
    assert [p.geometry_type for p in g.parts] == [
        GeometryType.POINT,
        GeometryType.LINESTRING,
    ]


def test_dumps_numbers():
    assert wkt.dumps(Point((0.1, -2))) == "POINT (0.1 -2)"
    assert wkt.dumps(Point((1e20, 0))) == "POINT (1e+20 0)"


@pytest.mark.parametrize(
    "text",
    [
        "POINT (1)",
        "POINTX (1 2)",
        "GEOMETRY (1 2)",
        "POINT (1 2) POINT",
        "POINT (1 2",
        "POINT (1 2) #",
        "SRID=abc;POINT (1 2)",
        "POLYGON ((0 0, 1 0, 1 1))",
        "",
    ],
)
def test_invalid(text):
    with pytest.raises(CodecError):
        wkt.loads(text)


def test_wkt_error_is_codec_error():
    with pytest.raises(WktError):
        wkt.loads("LINESTRING (0 0,)")
