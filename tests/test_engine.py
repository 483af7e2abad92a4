import struct
import sys

import pytest
import shapely

from geofusion import algorithms, wkb
from geofusion.engine import ShapelyEngine, load_engine
from geofusion.errors import DegenerateInputError, UnsupportedOperationError
from geofusion.geometry import (
    GeometryCollection,
    LineString,
    MultiPoint,
    MultiPolygon,
    Point,
    Polygon,
)

SQUARE = [(0, 0), (4, 0), (4, 4), (0, 4), (0, 0)]
HOLE = [(1, 1), (2, 1), (2, 2), (1, 2), (1, 1)]

SHAPES = [
    Point((1, 1)),
    Point((5, 5)),
    LineString([(-1, 2), (6, 2)]),
    LineString([(10, 10), (11, 12)]),
    Polygon([SQUARE, HOLE]),
    Polygon([[(3, 3), (8, 3), (8, 8), (3, 3)]]),
    MultiPoint([(1.5, 1.5), (20, 20)]),
    MultiPolygon([[HOLE], [[(30, 30), (31, 30), (31, 31), (30, 30)]]]),
]


@pytest.fixture
def engine():
    return ShapelyEngine()


def test_load_engine(monkeypatch):
    assert load_engine(False) is None
    assert isinstance(load_engine(True), ShapelyEngine)
    assert load_engine() is None
    monkeypatch.setenv("GEOFUSION_USE_ENGINE", "true")
    assert isinstance(load_engine(), ShapelyEngine)


def test_load_engine_without_shapely(monkeypatch):
    monkeypatch.setitem(sys.modules, "shapely", None)
    assert load_engine(False) is None
    with pytest.raises(ImportError, match=r"geofusion\[engine\]"):
        load_engine(True)


def test_provides(engine):
    assert engine.provides("buffer")
    assert engine.provides("covered_by")
    assert engine.provides("split")
    assert not engine.provides("translate")


def test_conversion(engine):
    polygon = Polygon([SQUARE, HOLE], srid=4326)
    geom = engine.to_shapely(polygon)
    assert isinstance(geom, shapely.Polygon)
    assert shapely.get_srid(geom) == 0
    assert engine.from_shapely(geom, 4326) == polygon


@pytest.mark.parametrize("geometry", SHAPES, ids=str)
def test_measures_agree_with_native(engine, geometry):
    assert engine.area(geometry) == pytest.approx(algorithms.area(geometry))
    assert engine.length(geometry) == pytest.approx(algorithms.length(geometry))
    assert engine.perimeter(geometry) == pytest.approx(algorithms.perimeter(geometry))


@pytest.mark.parametrize("a", SHAPES, ids=str)
@pytest.mark.parametrize("b", SHAPES, ids=str)
def test_intersects_and_distance_agree_with_native(engine, a, b):
    assert engine.intersects(a, b) == algorithms.intersects(a, b)
    assert engine.distance(a, b) == pytest.approx(algorithms.distance(a, b))


def test_containment(engine):
    donut = Polygon([SQUARE, HOLE])
    assert engine.contains(donut, Point((3, 3)))
    assert not engine.contains(donut, Point((1.5, 1.5)))
    assert engine.covers(donut, Point((4, 2)))
    assert not engine.contains(donut, Point((4, 2)))
    assert engine.within(Point((3, 3)), donut)
    assert engine.covered_by(Point((4, 2)), donut)
    # only the engine handles lines as containers
    assert engine.contains(LineString([(0, 0), (2, 2)]), Point((1, 1)))


def test_equals_is_topological(engine):
    a = LineString([(0, 0), (2, 2)])
    b = LineString([(0, 0), (1, 1), (2, 2)])
    assert engine.equals(a, b)
    assert not algorithms.equals(a, b)


def test_distance_to_empty(engine):
    with pytest.raises(DegenerateInputError):
        engine.distance(Point(), Point((0, 0)))


def test_buffer_and_boundary(engine):
    buffered = engine.buffer(Point((0, 0), srid=3857), 2.0, quad_segs=4)
    assert isinstance(buffered, Polygon)
    assert buffered.srid == 3857
    assert len(buffered.exterior) == 17

    boundary = engine.boundary(LineString([(0, 0), (1, 1), (2, 0)]))
    assert boundary == MultiPoint([(0, 0), (2, 0)])
    assert engine.boundary(Point((1, 1))) == GeometryCollection()


def test_geos_errors_are_row_errors(engine):
    single = wkb.decode(struct.pack("<BII2d", 1, 2, 1, 0.0, 0.0))
    with pytest.raises(DegenerateInputError):
        engine.length(single)
    with pytest.raises(DegenerateInputError):
        engine.intersects(single, Point((0, 0)))


def test_split(engine):
    blade = LineString([(2, -1), (2, 5)])
    result = engine.split(LineString([(0, 0), (4, 0)], srid=4326), blade)
    assert result == GeometryCollection(
        [LineString([(0, 0), (2, 0)]), LineString([(2, 0), (4, 0)])], srid=4326
    )
    with pytest.raises(UnsupportedOperationError):
        engine.split(Point((1, 1)), blade)
