# tests/unit/test_interop.py

import laspy
import numpy as np

from lascatalog.io.interop import from_laspy, read_with_laspy, to_laspy
from lascatalog.io.reader import read_las

from helpers import assert_same_points, make_point_set

def test_to_laspy_carries_dimensions(point_set):
    las = to_laspy(point_set)
    assert las.header.point_format.id == 1
    assert len(las.points) == len(point_set)
    np.testing.assert_allclose(np.asarray(las.x), point_set.x, atol=1e-9)
    np.testing.assert_array_equal(np.asarray(las.classification), point_set["classification"])

def test_laspy_written_file_reads_back(tmp_path):
    point_set = make_point_set(n=300, crs=None, seed=7)
    path = tmp_path / "from_laspy.las"
    to_laspy(point_set).write(str(path))

    loaded = read_with_laspy(path)
    assert_same_points(loaded, point_set, atol=1e-9)
    np.testing.assert_array_equal(loaded["intensity"], point_set["intensity"])

    native = read_las(path)
    assert_same_points(native, point_set, atol=1e-9)

def test_from_laspy_keeps_scales(las_path, point_set):
    las = laspy.read(str(las_path))
    converted = from_laspy(las)
    assert converted.header.scales == point_set.header.scales
    assert len(converted) == len(point_set)
    np.testing.assert_array_equal(converted["return_number"], point_set["return_number"])
