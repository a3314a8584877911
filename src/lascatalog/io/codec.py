# src/lascatalog/io/codec.py

"""
This module implements the point record codec: binary encoding and decoding of point records
for every supported point format.

Decoding works on runs of records through numpy structured views. Field selection narrows the
view to the selected byte ranges, so unselected attributes are never copied out of the buffer.
Coordinates are stored as scaled integers: decoding applies `raw * scale + offset` and encoding
inverts it with round-half-away-from-zero.
"""

import logging
from typing import Dict, Iterable, Mapping, Optional, Sequence, Union

import numpy as np

from lascatalog.errors import FormatError
from .fields import (
    FIELD_DTYPES,
    PointRecord,
    field_sources,
    format_fields,
    parse_select,
    point_dtype
)
from .header import Header

log = logging.getLogger(__name__)

__all__ = [
    "round_half_away",
    "quantize",
    "decode",
    "decode_points",
    "encode",
    "encode_points",
    "records_to_columns"
]

Buffer = Union[bytes, bytearray, memoryview, np.ndarray]
_AXES = ("x", "y", "z")
_RAW_AXES = ("X", "Y", "Z")

def round_half_away(values: np.ndarray) -> np.ndarray:
    """Rounds to the nearest integer, ties away from zero (2.5 -> 3, -2.5 -> -3)."""
    values = np.asarray(values, dtype=np.float64)
    return np.sign(values) * np.floor(np.abs(values) + 0.5)

def quantize(values: np.ndarray, scale: float, offset: float, name: str = "coordinate") -> np.ndarray:
    """
    Converts real-world coordinates into the stored int32 representation.

    Raises:
        FormatError: If a value is not finite or does not fit in int32 with this scale and offset.
    """
    scaled = round_half_away((np.asarray(values, dtype=np.float64) - offset) / scale)
    if scaled.size and not np.all(np.isfinite(scaled)):
        raise FormatError(f"Non-finite {name} values cannot be encoded")
    info = np.iinfo(np.int32)
    if scaled.size and (scaled.min() < info.min or scaled.max() > info.max):
        raise FormatError(
            f"{name} values do not fit in int32 with scale {scale} and offset {offset}"
        )
    return scaled.astype(np.int32)

def _check_buffer(buffer: Buffer, record_length: int) -> np.ndarray:
    data = np.frombuffer(buffer, dtype=np.uint8) if not isinstance(buffer, np.ndarray) else buffer.view(np.uint8)
    if data.size % record_length != 0:
        raise FormatError(
            f"Buffer of {data.size} bytes is not a whole number of {record_length}-byte records"
        )
    return data

def decode_points(
    buffer: Buffer,
    header: Header,
    fields: Optional[Sequence[str]] = None
) -> Dict[str, np.ndarray]:
    """
    Decodes a run of raw point records into columns.

    Args:
        buffer: Raw bytes of consecutive records.
        header: Header providing format, record length, scales and offsets.
        fields: Logical fields to decode. Defaults to every field of the format;
            names the format does not carry are ignored.

    Returns:
        Dict[str, np.ndarray]: One array per decoded field, x/y/z first.

    Raises:
        FormatError: Unknown format or a buffer that is not a whole number of records.
    """
    fmt = header.point_format
    sources = field_sources(fmt)
    available = format_fields(fmt)
    wanted = available if fields is None else tuple(n for n in available if n in set(fields) | set(_AXES))

    raw_fields = set(_RAW_AXES)
    raw_fields.update(sources[name].raw for name in wanted if name in sources)
    dtype = point_dtype(fmt, header.point_record_length, sorted(raw_fields))

    data = _check_buffer(buffer, header.point_record_length)
    raw = data.view(dtype) if data.size else np.zeros(0, dtype=dtype)

    columns: Dict[str, np.ndarray] = {}
    for axis, raw_axis, scale, offset in zip(_AXES, _RAW_AXES, header.scales, header.offsets):
        columns[axis] = raw[raw_axis].astype(np.float64) * scale + offset

    for name in wanted:
        if name in columns:
            continue
        src = sources[name]
        values = raw[src.raw]
        if src.bits:
            values = (values >> src.shift) & ((1 << src.bits) - 1)
        if src.scale != 1.0:
            values = values.astype(np.float64) * src.scale
        columns[name] = values.astype(FIELD_DTYPES[name])
    return columns

def _checked(values: np.ndarray, dtype: np.dtype, name: str) -> np.ndarray:
    values = np.asarray(values)
    if np.issubdtype(dtype, np.integer) and values.size:
        info = np.iinfo(dtype)
        if values.min() < info.min or values.max() > info.max:
            raise FormatError(f"Field '{name}' has values outside [{info.min}, {info.max}]")
    return values.astype(dtype)

def encode_points(columns: Mapping[str, np.ndarray], header: Header) -> bytes:
    """
    Encodes columns into raw point records of the header's format.

    Fields missing from `columns` are written as zero. Extra bytes declared by the header
    record length are zero-filled.

    Raises:
        FormatError: Values that do not fit the target field, or missing coordinates.
    """
    for axis in _AXES:
        if axis not in columns:
            raise FormatError(f"Cannot encode points without '{axis}'")
    n = len(columns["x"])
    dtype = point_dtype(header.point_format, header.point_record_length)
    out = np.zeros(n, dtype=dtype)

    for axis, raw_axis, scale, offset in zip(_AXES, _RAW_AXES, header.scales, header.offsets):
        out[raw_axis] = quantize(columns[axis], scale, offset, name=axis)

    for name, src in field_sources(header.point_format).items():
        values = columns.get(name)
        if values is None:
            continue
        raw_dtype = dtype.fields[src.raw][0]
        if src.bits:
            values = np.asarray(values).astype(np.int64)
            if values.size and (values.min() < 0 or values.max() >= (1 << src.bits)):
                raise FormatError(
                    f"Field '{name}' does not fit in {src.bits} bits for format {header.point_format}"
                )
            packed = (values << src.shift).astype(raw_dtype)
            out[src.raw] = out[src.raw] | packed
        elif name == "scan_angle":
            out[src.raw] = _checked(round_half_away(np.asarray(values) / src.scale), raw_dtype, name)
        else:
            out[src.raw] = _checked(values, raw_dtype, name)
    return out.tobytes()

def records_to_columns(records: Iterable[PointRecord], fields: Sequence[str]) -> Dict[str, np.ndarray]:
    """Gathers PointRecords into columns; absent optional values become zero."""
    records = list(records)
    columns = {}
    for name in fields:
        values = [getattr(r, name) for r in records]
        columns[name] = np.array([0 if v is None else v for v in values], dtype=FIELD_DTYPES[name])
    return columns

def decode(raw: Buffer, header: Header, select: Optional[Union[str, Sequence[str]]] = None) -> PointRecord:
    """
    Decodes exactly one point record.

    Args:
        raw: Bytes of a single record.
        header: Header describing the format.
        select: Field-selection string ('xyzi') or explicit list of logical field names.

    Raises:
        FormatError: If the byte count differs from the declared record length.
    """
    size = np.frombuffer(raw, dtype=np.uint8).size if not isinstance(raw, np.ndarray) else raw.nbytes
    if size != header.point_record_length:
        raise FormatError(
            f"Record has {size} bytes but format {header.point_format} declares {header.point_record_length}"
        )
    fields = parse_select(select, header.point_format) if isinstance(select, str) or select is None else select
    return PointRecord.from_columns(decode_points(raw, header, fields), 0)

def encode(record: PointRecord, header: Header) -> bytes:
    """Encodes one PointRecord; attributes absent from the record are written as zero."""
    fields = [name for name in record.present_fields() if name in format_fields(header.point_format)]
    return encode_points(records_to_columns([record], fields), header)
