# tests/unit/test_index.py

import pytest
import numpy as np
from shapely.geometry import Polygon

from lascatalog.errors import StaleIndexError
from lascatalog.geometry import Box, Circle, region_contains
from lascatalog.io.header import Header
from lascatalog.points.index import GridIndex, build_index
from lascatalog.points.layer import PointSet

from helpers import make_point_set

REGIONS = [
    Box(10.0, 10.0, 35.5, 42.0),
    Box(-50.0, -50.0, 0.0, 0.0),
    Box(200.0, 200.0, 300.0, 300.0),
    Circle(50.0, 50.0, 12.5),
    Circle(0.0, 100.0, 30.0),
    Circle(20.0, 20.0, 0.0),
    Polygon([(5, 5), (60, 10), (45, 70), (30, 40), (8, 55)]),
    Polygon([(0, 0), (100, 0), (100, 100), (0, 100)], holes=[[(20, 20), (80, 20), (80, 80), (20, 80)]]),
]

def _brute_force(point_set, region):
    return np.flatnonzero(region_contains(region, point_set.x, point_set.y))

@pytest.mark.parametrize("cell_size", [None, 0.5, 3.0, 25.0, 500.0])
@pytest.mark.parametrize("region", REGIONS)
def test_query_matches_brute_force(point_set, region, cell_size):
    """Query results are exact for every cell size."""
    index = GridIndex(point_set, cell_size=cell_size)
    np.testing.assert_array_equal(index.query(region), _brute_force(point_set, region))

def test_query_helpers(point_set):
    index = build_index(point_set)
    np.testing.assert_array_equal(
        index.query_box(10, 10, 40, 40), _brute_force(point_set, Box(10, 10, 40, 40))
    )
    np.testing.assert_array_equal(
        index.query_circle(50, 50, 20), _brute_force(point_set, Circle(50, 50, 20))
    )
    triangle = Polygon([(0, 0), (100, 0), (50, 80)])
    np.testing.assert_array_equal(index.query_polygon(triangle), _brute_force(point_set, triangle))
    np.testing.assert_array_equal(index.query((0, 0, 50, 50)), index.query_box(0, 0, 50, 50))

def test_boundary_points_are_inside(point_set):
    index = build_index(point_set)
    x, y = float(point_set.x[10]), float(point_set.y[10])
    assert 10 in index.query_box(x, y, x + 1, y + 1)
    assert 10 in index.query_circle(x + 2.0, y, 2.0)

def test_index_becomes_stale_after_mutation(point_set):
    index = build_index(point_set)
    assert not index.is_stale
    point_set.set_field("classification", np.full(len(point_set), 2))
    assert index.is_stale
    with pytest.raises(StaleIndexError):
        index.query_box(0, 0, 10, 10)

def test_columns_cannot_change_behind_the_index(point_set):
    """In-place writes are refused; moving a point goes through set_field and stales the index."""
    index = build_index(point_set)
    for column in (point_set.x, point_set["y"], point_set.columns["z"], point_set[:10].x):
        with pytest.raises(ValueError):
            column[0] = 1000.0
    assert not index.is_stale

    moved = point_set.x.copy()
    moved[0] = 1000.0
    point_set.set_field("x", moved)
    with pytest.raises(StaleIndexError):
        index.query(Box(999.0, -1.0, 1001.0, 1000.0))
    np.testing.assert_array_equal(build_index(point_set).query(Box(999.0, -1.0, 1001.0, 1000.0)), [0])

def test_append_stales_the_index(point_set):
    index = build_index(point_set)
    point_set.append(point_set[:5])
    assert index.is_stale
    with pytest.raises(ValueError):
        point_set.x[-1] = 0.0

def test_index_on_empty_set():
    empty = PointSet.empty(Header(point_format=0))
    index = build_index(empty)
    assert index.query_box(0, 0, 10, 10).size == 0
    assert index.query_circle(0, 0, 5).size == 0

def test_collinear_points():
    """Points on a vertical line give a degenerate extent."""
    n = 50
    point_set = PointSet(Header(point_format=0), {
        "x": np.full(n, 5.0),
        "y": np.arange(n, dtype=float),
        "z": np.zeros(n),
    })
    index = build_index(point_set)
    np.testing.assert_array_equal(index.query_box(4, 10, 6, 19.5), np.arange(10, 20))

def test_cell_count_is_bounded():
    point_set = make_point_set(n=20, bounds=(0, 0, 1000, 1000))
    index = GridIndex(point_set, cell_size=0.01)
    assert index.n_cells < 200
    assert index.cell_size > 0.01
