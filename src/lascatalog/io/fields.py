# src/lascatalog/io/fields.py

"""
This module declares the point record schema: the binary layout of every supported point format,
the logical fields exposed to users, and the short field codes of the selection mini-language.

Raw layouts are expressed as numpy structured dtypes so that a run of records can be viewed
directly from a byte buffer. Logical fields are derived from raw fields, either as a plain copy,
a scaled value or a bit range inside a packed byte.
"""

import logging
import enum
from dataclasses import dataclass, fields as dc_fields
from typing import Dict, List, Optional, Tuple, NamedTuple

import numpy as np

from lascatalog.errors import FormatError

log = logging.getLogger(__name__)

__all__ = [
    "FieldMask",
    "PointRecord",
    "FIELD_DTYPES",
    "FIELD_CODES",
    "SUPPORTED_FORMATS",
    "point_size",
    "raw_layout",
    "point_dtype",
    "format_fields",
    "parse_select"
]

class FieldMask(enum.IntFlag):
    """
    Bitmask of the optional fields populated in a PointRecord.

    X, Y and Z are always present and have no flag.
    """
    NONE = 0
    INTENSITY = enum.auto()
    RETURN_NUMBER = enum.auto()
    NUMBER_OF_RETURNS = enum.auto()
    SCAN_DIRECTION_FLAG = enum.auto()
    EDGE_OF_FLIGHT_LINE = enum.auto()
    CLASSIFICATION = enum.auto()
    SYNTHETIC = enum.auto()
    KEY_POINT = enum.auto()
    WITHHELD = enum.auto()
    OVERLAP = enum.auto()
    SCANNER_CHANNEL = enum.auto()
    SCAN_ANGLE = enum.auto()
    USER_DATA = enum.auto()
    POINT_SOURCE_ID = enum.auto()
    GPS_TIME = enum.auto()
    RED = enum.auto()
    GREEN = enum.auto()
    BLUE = enum.auto()
    NIR = enum.auto()

    @classmethod
    def from_fields(cls, names) -> "FieldMask":
        mask = cls.NONE
        for name in names:
            if name in ("x", "y", "z"):
                continue
            mask |= cls[name.upper()]
        return mask

# Logical field name -> output dtype. Order here is the canonical column order.
FIELD_DTYPES: Dict[str, np.dtype] = {
    "x": np.dtype(np.float64),
    "y": np.dtype(np.float64),
    "z": np.dtype(np.float64),
    "intensity": np.dtype(np.uint16),
    "return_number": np.dtype(np.uint8),
    "number_of_returns": np.dtype(np.uint8),
    "scan_direction_flag": np.dtype(bool),
    "edge_of_flight_line": np.dtype(bool),
    "classification": np.dtype(np.uint8),
    "synthetic": np.dtype(bool),
    "key_point": np.dtype(bool),
    "withheld": np.dtype(bool),
    "overlap": np.dtype(bool),
    "scanner_channel": np.dtype(np.uint8),
    "scan_angle": np.dtype(np.float32),
    "user_data": np.dtype(np.uint8),
    "point_source_id": np.dtype(np.uint16),
    "gps_time": np.dtype(np.float64),
    "red": np.dtype(np.uint16),
    "green": np.dtype(np.uint16),
    "blue": np.dtype(np.uint16),
    "nir": np.dtype(np.uint16),
}

FIELD_CODES: Dict[str, str] = {
    "x": "x",
    "y": "y",
    "z": "z",
    "i": "intensity",
    "t": "gps_time",
    "a": "scan_angle",
    "n": "number_of_returns",
    "r": "return_number",
    "c": "classification",
    "s": "synthetic",
    "k": "key_point",
    "w": "withheld",
    "o": "overlap",
    "u": "user_data",
    "p": "point_source_id",
    "e": "edge_of_flight_line",
    "d": "scan_direction_flag",
    "R": "red",
    "G": "green",
    "B": "blue",
    "N": "nir",
}

class Source(NamedTuple):
    """Where a logical field lives inside a raw record."""
    raw: str
    shift: int = 0
    bits: int = 0
    scale: float = 1.0

_XYZ = [("X", "<i4"), ("Y", "<i4"), ("Z", "<i4"), ("intensity", "<u2")]
_LEGACY_TAIL = [("bit_fields", "u1"), ("class_byte", "u1"), ("scan_angle_rank", "i1"),
                ("user_data", "u1"), ("point_source_id", "<u2")]
_EXTENDED_TAIL = [("return_byte", "u1"), ("flag_byte", "u1"), ("classification", "u1"),
                  ("user_data", "u1"), ("scan_angle", "<i2"), ("point_source_id", "<u2"),
                  ("gps_time", "<f8")]
_GPS = [("gps_time", "<f8")]
_RGB = [("red", "<u2"), ("green", "<u2"), ("blue", "<u2")]
_NIR = [("nir", "<u2")]

_RAW_LAYOUTS: Dict[int, List[Tuple[str, str]]] = {
    0: _XYZ + _LEGACY_TAIL,
    1: _XYZ + _LEGACY_TAIL + _GPS,
    2: _XYZ + _LEGACY_TAIL + _RGB,
    3: _XYZ + _LEGACY_TAIL + _GPS + _RGB,
    6: _XYZ + _EXTENDED_TAIL,
    7: _XYZ + _EXTENDED_TAIL + _RGB,
    8: _XYZ + _EXTENDED_TAIL + _RGB + _NIR,
}

SUPPORTED_FORMATS = tuple(sorted(_RAW_LAYOUTS))

_LEGACY_SOURCES: Dict[str, Source] = {
    "intensity": Source("intensity"),
    "return_number": Source("bit_fields", 0, 3),
    "number_of_returns": Source("bit_fields", 3, 3),
    "scan_direction_flag": Source("bit_fields", 6, 1),
    "edge_of_flight_line": Source("bit_fields", 7, 1),
    "classification": Source("class_byte", 0, 5),
    "synthetic": Source("class_byte", 5, 1),
    "key_point": Source("class_byte", 6, 1),
    "withheld": Source("class_byte", 7, 1),
    "scan_angle": Source("scan_angle_rank"),
    "user_data": Source("user_data"),
    "point_source_id": Source("point_source_id"),
}

_EXTENDED_SOURCES: Dict[str, Source] = {
    "intensity": Source("intensity"),
    "return_number": Source("return_byte", 0, 4),
    "number_of_returns": Source("return_byte", 4, 4),
    "synthetic": Source("flag_byte", 0, 1),
    "key_point": Source("flag_byte", 1, 1),
    "withheld": Source("flag_byte", 2, 1),
    "overlap": Source("flag_byte", 3, 1),
    "scanner_channel": Source("flag_byte", 4, 2),
    "scan_direction_flag": Source("flag_byte", 6, 1),
    "edge_of_flight_line": Source("flag_byte", 7, 1),
    "classification": Source("classification"),
    "user_data": Source("user_data"),
    "scan_angle": Source("scan_angle", scale=0.006),
    "point_source_id": Source("point_source_id"),
}

_OPTIONAL_SOURCES: Dict[str, Source] = {
    "gps_time": Source("gps_time"),
    "red": Source("red"),
    "green": Source("green"),
    "blue": Source("blue"),
    "nir": Source("nir"),
}

def _check_format(point_format: int):
    if point_format not in _RAW_LAYOUTS:
        raise FormatError(
            f"Unrecognized point format {point_format}. Supported formats: {SUPPORTED_FORMATS}"
        )

def raw_layout(point_format: int) -> List[Tuple[str, str]]:
    _check_format(point_format)
    return list(_RAW_LAYOUTS[point_format])

def point_size(point_format: int) -> int:
    """Standard record length in bytes of a point format, without extra bytes."""
    return int(np.dtype(raw_layout(point_format)).itemsize)

def field_sources(point_format: int) -> Dict[str, Source]:
    """Maps each logical field of a format (except x, y, z) to its raw source."""
    _check_format(point_format)
    base = _EXTENDED_SOURCES if point_format >= 6 else _LEGACY_SOURCES
    raw_names = {name for name, _ in _RAW_LAYOUTS[point_format]}
    sources = dict(base)
    for name, src in _OPTIONAL_SOURCES.items():
        if src.raw in raw_names:
            sources[name] = src
    return sources

def format_fields(point_format: int) -> Tuple[str, ...]:
    """Logical fields carried by a point format, in canonical order."""
    available = set(field_sources(point_format)) | {"x", "y", "z"}
    return tuple(name for name in FIELD_DTYPES if name in available)

def point_dtype(
    point_format: int,
    record_length: Optional[int] = None,
    raw_fields: Optional[List[str]] = None
) -> np.dtype:
    """
    Builds the structured dtype used to view raw records of a point format.

    When raw_fields is given, only those fields are part of the dtype but the itemsize
    still spans the full record, so unselected byte ranges are stepped over without being copied.

    Args:
        point_format (int): Point format code.
        record_length (int): Declared record length, which may include extra bytes.
        raw_fields (List[str]): Optional subset of raw field names to expose.

    Returns:
        np.dtype: Structured dtype with explicit offsets.
    """
    layout = raw_layout(point_format)
    size = point_size(point_format)
    record_length = size if record_length is None else int(record_length)
    if record_length < size:
        raise FormatError(
            f"Record length {record_length} is shorter than the {size} bytes required by format {point_format}"
        )

    names, formats, offsets = [], [], []
    offset = 0
    for name, fmt in layout:
        if raw_fields is None or name in raw_fields:
            names.append(name)
            formats.append(fmt)
            offsets.append(offset)
        offset += np.dtype(fmt).itemsize

    return np.dtype({
        "names": names,
        "formats": formats,
        "offsets": offsets,
        "itemsize": record_length
    })

def parse_select(select: Optional[str], point_format: int) -> Tuple[str, ...]:
    """
    Resolves a field-selection string into the logical fields to decode.

    Codes are single characters ('xyzirn'), '*' selects every field and a '-' prefix
    excludes codes ('* -i -t'). X, Y and Z are always decoded. Codes for fields that the
    point format does not carry are ignored.

    Args:
        select (str): Selection string, or None for all fields.
        point_format (int): Point format the selection applies to.

    Returns:
        Tuple[str, ...]: Logical field names in canonical order.
    """
    available = format_fields(point_format)
    if select is None:
        return available

    included, excluded = set(), set()
    wildcard = False
    for token in select.split():
        if token == "*":
            wildcard = True
            continue
        target = included
        if token.startswith("-"):
            target, token = excluded, token[1:]
        for code in token:
            if code == "*":
                wildcard = True
                continue
            if code not in FIELD_CODES:
                raise ValueError(f"Unknown field code '{code}' in select string '{select}'")
            target.add(FIELD_CODES[code])

    if wildcard or (excluded and not included):
        chosen = set(available)
    else:
        chosen = included
    chosen = (chosen - excluded) | {"x", "y", "z"}
    return tuple(name for name in available if name in chosen)

@dataclass
class PointRecord:
    """
    A single decoded point.

    Coordinates are real-world values (scale and offset applied). Optional attributes are None
    when the point format does not carry them or when they were not selected; `mask` records
    which optional attributes are populated.
    """
    x: float
    y: float
    z: float
    intensity: Optional[int] = None
    return_number: Optional[int] = None
    number_of_returns: Optional[int] = None
    scan_direction_flag: Optional[bool] = None
    edge_of_flight_line: Optional[bool] = None
    classification: Optional[int] = None
    synthetic: Optional[bool] = None
    key_point: Optional[bool] = None
    withheld: Optional[bool] = None
    overlap: Optional[bool] = None
    scanner_channel: Optional[int] = None
    scan_angle: Optional[float] = None
    user_data: Optional[int] = None
    point_source_id: Optional[int] = None
    gps_time: Optional[float] = None
    red: Optional[int] = None
    green: Optional[int] = None
    blue: Optional[int] = None
    nir: Optional[int] = None
    mask: FieldMask = FieldMask.NONE

    def __post_init__(self):
        if self.mask == FieldMask.NONE:
            populated = [
                f.name for f in dc_fields(self)
                if f.name not in ("x", "y", "z", "mask") and getattr(self, f.name) is not None
            ]
            self.mask = FieldMask.from_fields(populated)

    @classmethod
    def from_columns(cls, columns: Dict[str, np.ndarray], i: int) -> "PointRecord":
        values = {name: columns[name][i].item() for name in columns}
        return cls(mask=FieldMask.from_fields(columns), **values)

    def present_fields(self) -> Tuple[str, ...]:
        return tuple(
            f.name for f in dc_fields(self)
            if f.name != "mask" and (f.name in ("x", "y", "z") or FieldMask[f.name.upper()] in self.mask)
        )

    def as_dict(self) -> Dict[str, object]:
        return {name: getattr(self, name) for name in self.present_fields()}
