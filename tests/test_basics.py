# tests/test_basics.py
import numpy as np

import lascatalog
from lascatalog import catalog, io, points

def test_imports():
    """Simple smoke test to ensure modules import correctly."""
    assert io is not None
    assert points is not None
    assert catalog is not None
    assert lascatalog.__version__

def test_public_names_resolve():
    for name in lascatalog.__all__:
        assert getattr(lascatalog, name) is not None
    for module in (io, points, catalog):
        for name in module.__all__:
            assert getattr(module, name) is not None

def test_point_set_indexing():
    """
    Module: points
    Class: PointSet
    Test: int, mask and field-name indexing on a tiny set (no file needed).
    """
    header = lascatalog.Header(point_format=0)
    point_set = lascatalog.PointSet(header, {
        "x": np.array([1.0, 2.0, 3.0]),
        "y": np.array([4.0, 5.0, 6.0]),
        "z": np.array([7.0, 8.0, 9.0]),
        "classification": np.array([2, 1, 2]),
    })

    assert len(point_set) == 3
    assert point_set[1].x == 2.0
    assert point_set[-1].classification == 2
    assert len(point_set[point_set["classification"] == 2]) == 2
    assert point_set.bounds == (1.0, 4.0, 3.0, 6.0)

def test_write_then_read(tmp_path, point_set):
    """
    Module: io
    Functions: write_las, read_las
    Test: Minimal file round trip through the top-level API.
    """
    path = lascatalog.write_las(tmp_path / "basic.las", point_set)
    loaded = lascatalog.read_las(path)
    assert len(loaded) == len(point_set)
    assert loaded.header.point_format == point_set.header.point_format
