# tests/unit/test_validate.py

import pytest
import numpy as np

from lascatalog.io.header import Header
from lascatalog.points.layer import PointSet
from lascatalog.points.validate import Severity, validate

from helpers import make_point_set

def _rebuild(columns, header):
    point_set = PointSet(header, columns)
    return PointSet(point_set.updated_header(), columns)

@pytest.fixture
def clean_set():
    """Single-return points with a CRS and a consistent header."""
    n = 50
    columns = {
        "x": np.arange(n, dtype=float),
        "y": np.arange(n, dtype=float) * 2,
        "z": np.linspace(0, 10, n),
        "return_number": np.ones(n, dtype=np.uint8),
        "number_of_returns": np.ones(n, dtype=np.uint8),
        "gps_time": np.arange(n, dtype=float),
    }
    return _rebuild(columns, Header(point_format=1, crs="EPSG:32619"))

def test_clean_set_passes(clean_set):
    report = validate(clean_set)
    assert report.is_valid
    assert report.issues == []

def test_reports_every_violation(clean_set):
    """Duplicates and bad return numbers are both reported, with every offending index."""
    columns = clean_set.columns
    for axis in ("x", "y", "z"):
        columns[axis] = columns[axis].copy()
        columns[axis][[5, 7]] = columns[axis][3]
    columns["number_of_returns"] = columns["number_of_returns"].copy()
    columns["return_number"] = columns["return_number"].copy()
    columns["number_of_returns"][8] = 2
    columns["return_number"][8] = 3
    point_set = _rebuild(columns, clean_set.header)

    report = validate(point_set)

    duplicates = report.by_check("duplicates")
    assert len(duplicates) == 1
    assert duplicates[0].severity == Severity.WARNING
    np.testing.assert_array_equal(duplicates[0].indices, [5, 7])

    returns = report.by_check("return_numbers")
    assert len(returns) == 1
    assert returns[0].severity == Severity.ERROR
    np.testing.assert_array_equal(returns[0].indices, [8])
    assert not report.is_valid

def test_zero_return_number(clean_set):
    columns = clean_set.columns
    columns["return_number"] = columns["return_number"].copy()
    columns["return_number"][[0, 4]] = 0
    report = validate(_rebuild(columns, clean_set.header), checks=["return_numbers"])
    assert report.errors[0].count == 2

def test_missing_first_return():
    n = 6
    columns = {
        "x": np.arange(n, dtype=float),
        "y": np.arange(n, dtype=float),
        "z": np.zeros(n),
        "return_number": np.array([1, 2, 2, 3, 1, 1], dtype=np.uint8),
        "number_of_returns": np.array([2, 2, 3, 3, 1, 1], dtype=np.uint8),
        "gps_time": np.array([10.0, 10.0, 11.0, 11.0, 12.0, 13.0]),
        "point_source_id": np.ones(n, dtype=np.uint16),
    }
    point_set = _rebuild(columns, Header(point_format=1, crs="EPSG:32619"))

    issues = validate(point_set, checks=["first_returns"]).by_check("first_returns")
    assert len(issues) == 1
    np.testing.assert_array_equal(issues[0].indices, [2, 3])
    assert "1 multi-return pulse" in issues[0].message

def test_header_disagreement(clean_set):
    header = clean_set.header.copy(point_count=len(clean_set) + 5)
    report = validate(PointSet(header, clean_set.columns), checks=["header_count"])
    assert report.errors[0].check == "header_count"

    shifted = clean_set.columns
    shifted["x"] = shifted["x"] + 100
    report = validate(PointSet(clean_set.header, shifted), checks=["header_bbox"])
    assert report.errors[0].count > 0

def test_points_by_return_disagreement(clean_set):
    header = clean_set.header.copy(points_by_return=(1, 2, 3, 0, 0))
    report = validate(PointSet(header, clean_set.columns), checks=["header_count"])
    assert report.is_valid
    assert report.warnings[0].check == "header_count"

def test_set_level_warnings():
    point_set = make_point_set(n=30, crs=None)
    point_set = PointSet(point_set.header.copy(scales=(0.1, 0.1, 0.1)), point_set.columns)
    report = validate(point_set, checks=["crs", "scale_factors"])
    assert {issue.check for issue in report.warnings} == {"crs", "scale_factors"}
    assert report.is_valid

def test_degenerate_and_empty_sets():
    line = PointSet(Header(point_format=0), {
        "x": np.zeros(5), "y": np.arange(5, dtype=float), "z": np.zeros(5)
    })
    assert validate(line, checks=["bbox"]).warnings[0].check == "bbox"

    empty = PointSet.empty(Header(point_format=0))
    report = validate(empty)
    assert report.is_valid
    assert "empty" in report.by_check("bbox")[0].message

def test_unknown_check():
    with pytest.raises(ValueError, match="Unknown checks"):
        validate(make_point_set(n=5), checks=["spelling"])
