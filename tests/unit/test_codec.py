# tests/unit/test_codec.py

import pytest
import numpy as np

from lascatalog.errors import FormatError, UnsupportedVersionError
from lascatalog.io.codec import (
    decode,
    decode_points,
    encode,
    encode_points,
    quantize,
    round_half_away
)
from lascatalog.io.fields import FieldMask, PointRecord, point_dtype, point_size
from lascatalog.io.header import Header

@pytest.fixture
def header_fmt3():
    return Header(
        point_format=3,
        scales=(0.01, 0.01, 0.001),
        offsets=(500000.0, 5000000.0, 0.0)
    )

def test_standard_record_sizes():
    """Record sizes of the supported formats match the LAS layouts."""
    expected = {0: 20, 1: 28, 2: 26, 3: 34, 6: 30, 7: 36, 8: 38}
    for fmt, size in expected.items():
        assert point_size(fmt) == size

def test_record_round_trip_within_scale(header_fmt3):
    record = PointRecord(
        x=500012.344, y=5000020.126, z=12.3456,
        intensity=1200, return_number=2, number_of_returns=3,
        classification=5, scan_angle=-12.0, user_data=3, point_source_id=7,
        gps_time=123456.789, red=100, green=200, blue=300
    )
    raw = encode(record, header_fmt3)
    assert len(raw) == header_fmt3.point_record_length

    decoded = decode(raw, header_fmt3)
    assert abs(decoded.x - record.x) <= 0.005
    assert abs(decoded.y - record.y) <= 0.005
    assert abs(decoded.z - record.z) <= 0.0005
    assert decoded.intensity == 1200
    assert decoded.return_number == 2
    assert decoded.number_of_returns == 3
    assert decoded.classification == 5
    assert decoded.scan_angle == -12.0
    assert decoded.gps_time == 123456.789
    assert (decoded.red, decoded.green, decoded.blue) == (100, 200, 300)

def test_record_mask_reflects_populated_fields():
    record = PointRecord(x=1.0, y=2.0, z=3.0, intensity=10)
    assert record.mask == FieldMask.INTENSITY
    assert record.present_fields() == ("x", "y", "z", "intensity")

def test_decode_with_selection_leaves_other_fields_absent(header_fmt3):
    record = PointRecord(x=500001.0, y=5000001.0, z=1.0, intensity=55, classification=2, gps_time=9.5)
    decoded = decode(encode(record, header_fmt3), header_fmt3, select="xyzi")

    assert decoded.intensity == 55
    assert decoded.classification is None
    assert decoded.gps_time is None
    assert FieldMask.CLASSIFICATION not in decoded.mask

def test_decode_points_only_materializes_selected_fields(point_set):
    buffer = encode_points(point_set.columns, point_set.header)
    columns = decode_points(buffer, point_set.header, fields=["classification"])
    assert set(columns) == {"x", "y", "z", "classification"}
    np.testing.assert_array_equal(columns["classification"], point_set["classification"])

def test_selected_dtype_spans_full_record():
    dtype = point_dtype(1, raw_fields=["X", "Y", "Z"])
    assert dtype.itemsize == 28
    assert dtype.names == ("X", "Y", "Z")

def test_extended_format_round_trip():
    header = Header(version=(1, 4), point_format=6)
    columns = {
        "x": np.array([1.0, 2.5]),
        "y": np.array([3.0, 4.25]),
        "z": np.array([0.5, 0.75]),
        "return_number": np.array([1, 9], dtype=np.uint8),
        "number_of_returns": np.array([1, 15], dtype=np.uint8),
        "classification": np.array([2, 200], dtype=np.uint8),
        "overlap": np.array([False, True]),
        "scanner_channel": np.array([0, 3], dtype=np.uint8),
        "scan_angle": np.array([-30.0, 45.0], dtype=np.float32),
    }
    decoded = decode_points(encode_points(columns, header), header)

    np.testing.assert_array_equal(decoded["return_number"], [1, 9])
    np.testing.assert_array_equal(decoded["number_of_returns"], [1, 15])
    np.testing.assert_array_equal(decoded["classification"], [2, 200])
    np.testing.assert_array_equal(decoded["overlap"], [False, True])
    np.testing.assert_array_equal(decoded["scanner_channel"], [0, 3])
    np.testing.assert_allclose(decoded["scan_angle"], [-30.0, 45.0], atol=0.006)

def test_round_half_away_from_zero():
    values = np.array([0.5, 1.5, 2.5, -0.5, -2.5, 0.49, -1.2])
    np.testing.assert_array_equal(round_half_away(values), [1, 2, 3, -1, -3, 0, -1])

def test_quantize_ties_round_away_from_zero():
    np.testing.assert_array_equal(quantize(np.array([0.25, -0.25, 0.75]), 0.5, 0.0), [1, -1, 2])

def test_quantize_overflow_raises():
    with pytest.raises(FormatError, match="int32"):
        quantize(np.array([1e10]), 0.01, 0.0)

def test_bit_field_overflow_raises():
    header = Header(point_format=0)
    columns = {
        "x": np.zeros(1), "y": np.zeros(1), "z": np.zeros(1),
        "return_number": np.array([8]),
    }
    with pytest.raises(FormatError, match="3 bits"):
        encode_points(columns, header)

def test_decode_wrong_length_raises(header_fmt3):
    with pytest.raises(FormatError):
        decode(b"\x00" * 10, header_fmt3)

def test_decode_points_partial_record_raises(header_fmt3):
    with pytest.raises(FormatError, match="whole number"):
        decode_points(b"\x00" * 50, header_fmt3)

def test_unknown_point_format_raises():
    with pytest.raises(UnsupportedVersionError):
        Header(point_format=5)
    with pytest.raises(UnsupportedVersionError):
        Header(version=(1, 2), point_format=6)
    with pytest.raises(FormatError):
        point_dtype(4)

def test_record_length_with_extra_bytes():
    header = Header(point_format=0, point_record_length=24)
    record = PointRecord(x=1.0, y=2.0, z=3.0, intensity=7)
    raw = encode(record, header)
    assert len(raw) == 24
    assert decode(raw, header).intensity == 7

def test_record_length_too_short_raises():
    with pytest.raises(FormatError):
        Header(point_format=1, point_record_length=20)
