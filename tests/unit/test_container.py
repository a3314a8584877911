# tests/unit/test_container.py

import pytest
import numpy as np

from lascatalog.catalog.layer import Catalog
from lascatalog.errors import (
    BoundingBoxMismatchError,
    CorruptStreamError,
    FormatError,
    StreamConsumedError,
    UnsupportedVersionError
)
from lascatalog.io.compression import available_compressors, get_compressor, register_compressor
from lascatalog.io.reader import open_las, read_header, read_las
from lascatalog.io.writer import LasWriter, write_las
from lascatalog.points.layer import PointSet

from helpers import assert_same_points, make_point_set

def _assert_same_attributes(current, reference):
    for name in ("intensity", "return_number", "number_of_returns", "classification", "gps_time"):
        np.testing.assert_array_equal(current[name], reference[name])

def test_raw_round_trip(las_path, point_set):
    loaded = read_las(las_path)

    assert loaded.header.point_format == 1
    assert loaded.header.point_count == 500
    assert_same_points(loaded, point_set, atol=1e-9)
    _assert_same_attributes(loaded, point_set)

def test_compressed_round_trip(compressed_las_path, point_set):
    loaded = read_las(compressed_las_path)

    assert loaded.header.compression == "zlib"
    assert_same_points(loaded, point_set, atol=1e-9)
    _assert_same_attributes(loaded, point_set)

def test_header_bounds_and_return_counts(las_path, point_set):
    header = read_header(las_path)
    assert header.mins[0] == pytest.approx(point_set.x.min())
    assert header.maxs[1] == pytest.approx(point_set.y.max())
    counts = np.bincount(point_set["return_number"], minlength=6)[1:6]
    assert header.points_by_return == tuple(int(c) for c in counts)

def test_crs_round_trip(las_path):
    assert read_header(las_path).crs.to_epsg() == 32619

def test_extended_format_file_round_trip(tmp_path):
    point_set = make_point_set(n=200, point_format=6, seed=4)
    path = write_las(tmp_path / "fmt6.las", point_set)

    loaded = read_las(path)
    assert loaded.header.version == (1, 4)
    assert loaded.header.point_count == 200
    assert_same_points(loaded, point_set, atol=1e-9)

def test_point_format_conversion(tmp_path, point_set):
    path = write_las(tmp_path / "fmt0.las", point_set, point_format=0)
    loaded = read_las(path)
    assert loaded.header.point_format == 0
    assert "gps_time" not in loaded.fields
    np.testing.assert_array_equal(loaded["classification"], point_set["classification"])

def test_stream_chunks_cover_file(las_path):
    with open_las(las_path, chunk_size=64) as reader:
        sizes = [len(c["x"]) for c in reader.points.iter_chunks()]
    assert sum(sizes) == 500
    assert max(sizes) == 64

def test_unfiltered_stream_restarts(las_path):
    with open_las(las_path) as reader:
        assert reader.points.restartable
        first = reader.points.read()
        second = reader.points.read()
    assert len(first) == len(second) == 500

def test_filtered_stream_is_single_pass(las_path):
    with open_las(las_path, filter="-keep_first") as reader:
        assert not reader.points.restartable
        reader.points.read()
        with pytest.raises(StreamConsumedError):
            reader.points.read()

def test_record_iteration(las_path, point_set):
    with open_las(las_path, select="xyzi") as reader:
        records = list(reader.points)
    assert len(records) == 500
    assert records[3].intensity == point_set["intensity"][3]
    assert records[3].classification is None

def test_truncated_raw_file(las_path):
    data = las_path.read_bytes()
    las_path.write_bytes(data[:-28 * 3])
    with pytest.raises(CorruptStreamError):
        read_las(las_path)

def test_trailing_bytes_raw_file(las_path):
    las_path.write_bytes(las_path.read_bytes() + b"\x00" * 10)
    with pytest.raises(CorruptStreamError):
        read_las(las_path)

def test_truncated_compressed_file(compressed_las_path):
    data = compressed_las_path.read_bytes()
    compressed_las_path.write_bytes(data[:-20])
    with pytest.raises(CorruptStreamError):
        read_las(compressed_las_path)

def test_unknown_minor_version(las_path):
    data = bytearray(las_path.read_bytes())
    data[25] = 9
    las_path.write_bytes(bytes(data))
    with pytest.raises(UnsupportedVersionError):
        read_header(las_path)

def test_bad_signature(las_path):
    data = bytearray(las_path.read_bytes())
    data[:4] = b"XXXX"
    las_path.write_bytes(bytes(data))
    with pytest.raises(FormatError, match="signature"):
        read_las(las_path)

def test_unreadable_compression_record(compressed_las_path, las_path, caplog):
    data = bytearray(compressed_las_path.read_bytes())
    start = data.index(b"point compression") + 32
    assert bytes(data[start:start + 4]) == b"zlib"
    data[start:start + 4] = b"\xff\xfe\xfd\xfc"
    compressed_las_path.write_bytes(bytes(data))

    with pytest.raises(FormatError, match="compression record"):
        read_header(compressed_las_path)

    catalog = Catalog([compressed_las_path, las_path])
    assert [d.path for d in catalog.files] == [las_path]
    assert compressed_las_path.name in caplog.text

def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_las(tmp_path / "missing.las")

def test_strict_writer_rejects_points_outside_box(tmp_path, point_set):
    """A non-regenerating writer aborts and leaves no partial file."""
    target = tmp_path / "strict.las"
    shifted = point_set.columns
    shifted["x"] = shifted["x"] + 500.0

    with pytest.raises(BoundingBoxMismatchError):
        with LasWriter(target, point_set.header) as writer:
            writer.write_points(shifted)
    assert not target.exists()

def test_regenerating_writer_accepts_any_box(tmp_path, point_set):
    shifted = point_set.columns
    shifted["x"] = shifted["x"] + 500.0
    path = write_las(tmp_path / "moved.las", PointSet(point_set.header, shifted))
    assert read_header(path).mins[0] == pytest.approx(shifted["x"].min())

def test_writer_accepts_records(tmp_path, point_set):
    target = tmp_path / "records.las"
    with LasWriter(target, point_set.header, chunk_size=100) as writer:
        writer.write_records(point_set.records())
    assert_same_points(read_las(target), point_set, atol=1e-9)

def test_coordinates_that_do_not_fit_int32(tmp_path, point_set):
    columns = point_set.columns
    columns["z"] = columns["z"] + 1e9
    with pytest.raises(FormatError):
        write_las(tmp_path / "overflow.las", PointSet(point_set.header, columns))
    assert not (tmp_path / "overflow.las").exists()

def test_compressor_registry():
    assert {"zlib", "lzma"} <= set(available_compressors())
    with pytest.raises(FormatError):
        get_compressor("does-not-exist")
    with pytest.raises(ValueError):
        register_compressor("zlib", bytes, bytes)

def test_custom_compressor(tmp_path, point_set):
    register_compressor("reverse", lambda data: data[::-1], lambda data: data[::-1], replace=True)
    path = write_las(tmp_path / "reverse.las", point_set, compressor="reverse", chunk_size=100)
    assert read_header(path).compression == "reverse"
    assert_same_points(read_las(path), point_set, atol=1e-9)

def test_unknown_compressor_on_write(tmp_path, point_set):
    with pytest.raises(FormatError):
        write_las(tmp_path / "unknown.las", point_set, compressor="does-not-exist")
