# tests/unit/test_rasterize.py

import pytest
import numpy as np
import rasterio

from lascatalog.io.header import Header
from lascatalog.points.layer import PointSet
from lascatalog.points.rasterize import NODATA_VAL, points_to_grid

@pytest.fixture
def small_set():
    header = Header(point_format=0, crs="EPSG:32619")
    return PointSet(header, {
        "x": np.array([0.0, 0.5, 0.6, 1.5, 2.0]),
        "y": np.array([0.0, 0.5, 0.4, 1.5, 2.0]),
        "z": np.array([0.5, 1.0, 3.0, 2.0, 4.0]),
    })

def test_count_grid_holds_every_point(point_set):
    grid = points_to_grid(point_set, resolution=10.0, method="count")
    assert grid.data.dtype == np.uint32
    assert grid.nodata is None
    assert int(grid.data.sum()) == len(point_set)

def test_max_grid(small_set):
    """Row 0 is the northern edge; points on the outer edge fall into the last cell."""
    grid = points_to_grid(small_set, resolution=1.0, method="max")

    assert grid.shape == (2, 2)
    expected = np.array([
        [NODATA_VAL, 4.0],
        [3.0, NODATA_VAL],
    ], dtype=np.float32)
    np.testing.assert_array_equal(grid.data, expected)
    assert grid.bounds == (0.0, 0.0, 2.0, 2.0)
    assert grid.resolution == 1.0

def test_min_grid_with_custom_nodata(small_set):
    grid = points_to_grid(small_set, resolution=1.0, method="min", nodata=-1.0)
    assert grid.nodata == -1.0
    assert grid.data[1, 0] == 0.5
    assert grid.data[0, 1] == 2.0
    assert grid.data[0, 0] == -1.0

def test_explicit_bounds_ignore_outside_points(small_set):
    grid = points_to_grid(small_set, resolution=0.5, method="count", bounds=(0, 0, 1, 1))
    assert grid.shape == (2, 2)
    assert int(grid.data.sum()) == 3

def test_empty_set_with_bounds():
    empty = PointSet.empty(Header(point_format=0))
    grid = points_to_grid(empty, resolution=1.0, bounds=(0, 0, 3, 2))
    assert grid.shape == (2, 3)
    assert np.all(grid.data == NODATA_VAL)

def test_invalid_arguments(small_set):
    with pytest.raises(ValueError, match="resolution"):
        points_to_grid(small_set, resolution=0)
    with pytest.raises(ValueError, match="Unknown rasterization method"):
        points_to_grid(small_set, resolution=1.0, method="mean")
    with pytest.raises(ValueError, match="empty"):
        points_to_grid(PointSet.empty(Header(point_format=0)), resolution=1.0)

def test_save_and_reload(tmp_path, small_set):
    grid = points_to_grid(small_set, resolution=1.0, method="max")
    path = grid.save(tmp_path / "out" / "chm.tif")

    with rasterio.open(path) as src:
        assert src.count == 1
        assert src.nodata == NODATA_VAL
        assert src.crs.to_epsg() == 32619
        assert src.transform == grid.transform
        np.testing.assert_array_equal(src.read(1), grid.data)
