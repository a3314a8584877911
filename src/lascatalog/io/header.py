# src/lascatalog/io/header.py

"""
This module parses and serializes the public header block and the variable-length record table.

The layout follows LAS 1.0 to 1.4. Files are written as 1.2 (formats 0-3) or 1.4 (formats 0-3, 6-8).
Compressed payloads are flagged with bit 7 of the point format byte, and the codec name travels in
a dedicated variable-length record.
"""

import datetime
import logging
import struct
from dataclasses import dataclass, field, replace
from typing import BinaryIO, List, Optional, Tuple

from rasterio.crs import CRS
from rasterio.errors import CRSError

from lascatalog.errors import FormatError, UnsupportedVersionError
from .fields import SUPPORTED_FORMATS, point_size

log = logging.getLogger(__name__)

__all__ = [
    "VariableLengthRecord",
    "Header",
    "COMPRESSED_BIT"
]

LAS_SIGNATURE = b"LASF"
COMPRESSED_BIT = 0x80

PROJECTION_USER_ID = "LASF_Projection"
WKT_RECORD_ID = 2112
GEOKEY_RECORD_ID = 34735
LASCATALOG_USER_ID = "lascatalog"
COMPRESSION_RECORD_ID = 1

_BASE_STRUCT = struct.Struct("<4sHHIHH8sBB32s32sHHHIIBHI5I3d3d6d")
_WAVEFORM_STRUCT = struct.Struct("<Q")
_EXTENDED_STRUCT = struct.Struct("<QIQ15Q")
_VLR_STRUCT = struct.Struct("<H16sHH32s")

HEADER_SIZES = {0: 227, 1: 227, 2: 227, 3: 235, 4: 375}

def _to_text(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("ascii", errors="replace")

def _to_bytes(text: str, size: int) -> bytes:
    return text.encode("ascii", errors="replace")[:size].ljust(size, b"\x00")

@dataclass
class VariableLengthRecord:
    """
    Header-embedded metadata block of declared type and length.

    Args:
        user_id (str): Registering organisation (16 bytes max).
        record_id (int): Record type within the user id namespace.
        description (str): Free text (32 bytes max).
        data (bytes): Record payload.
    """
    user_id: str
    record_id: int
    description: str = ""
    data: bytes = b""

    def to_bytes(self) -> bytes:
        if len(self.data) > 0xFFFF:
            raise FormatError(f"VLR payload of {len(self.data)} bytes exceeds 65535")
        head = _VLR_STRUCT.pack(
            0,
            _to_bytes(self.user_id, 16),
            self.record_id,
            len(self.data),
            _to_bytes(self.description, 32)
        )
        return head + self.data

    @classmethod
    def from_stream(cls, fh: BinaryIO) -> "VariableLengthRecord":
        raw = fh.read(_VLR_STRUCT.size)
        if len(raw) < _VLR_STRUCT.size:
            raise FormatError("Truncated variable-length record header")
        _, user_id, record_id, length, description = _VLR_STRUCT.unpack(raw)
        data = fh.read(length)
        if len(data) < length:
            raise FormatError(f"Truncated variable-length record {_to_text(user_id)}/{record_id}")
        return cls(_to_text(user_id), record_id, _to_text(description), data)

    @property
    def size(self) -> int:
        return _VLR_STRUCT.size + len(self.data)

def _crs_from_geokeys(data: bytes) -> Optional[CRS]:
    """Extracts an EPSG code from a GeoTIFF key directory (ProjectedCSType, then GeographicType)."""
    count = len(data) // 2
    if count < 4:
        return None
    shorts = struct.unpack(f"<{count}H", data[:count * 2])
    n_keys = shorts[3]
    keys = {}
    for k in range(n_keys):
        base = 4 + 4 * k
        if base + 3 >= count:
            break
        key_id, location, _, value = shorts[base:base + 4]
        if location == 0:
            keys[key_id] = value
    for key_id in (3072, 2048):
        code = keys.get(key_id)
        if code and code != 32767:
            return CRS.from_epsg(code)
    return None

@dataclass
class Header:
    """
    File-level metadata of a point cloud.

    Attributes:
        version (Tuple[int, int]): (major, minor) file version.
        point_format (int): Point format code (compression bit excluded).
        point_record_length (int): Bytes per record, at least the format's standard size.
        scales (Tuple[float, float, float]): Scale factors applied to the stored integers.
        offsets (Tuple[float, float, float]): Offsets added after scaling.
        mins (Tuple[float, float, float]): Lower corner of the bounding box.
        maxs (Tuple[float, float, float]): Upper corner of the bounding box.
        point_count (int): Number of point records in the payload.
        points_by_return (Tuple[int, ...]): Counts of points per return number (5 or 15 slots).
        crs (CRS): Coordinate reference system, if declared.
        compression (str): Name of the payload compressor, None for raw records.
        vlrs (List[VariableLengthRecord]): Variable-length records other than CRS and compression.
    """
    version: Tuple[int, int] = (1, 2)
    point_format: int = 0
    point_record_length: Optional[int] = None
    scales: Tuple[float, float, float] = (0.01, 0.01, 0.01)
    offsets: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    mins: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    maxs: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    point_count: int = 0
    points_by_return: Tuple[int, ...] = (0, 0, 0, 0, 0)
    crs: Optional[CRS] = None
    file_source_id: int = 0
    global_encoding: int = 0
    system_identifier: str = "OTHER"
    generating_software: str = "lascatalog"
    creation_date: Optional[datetime.date] = None
    compression: Optional[str] = None
    vlrs: List[VariableLengthRecord] = field(default_factory=list)
    offset_to_point_data: int = 0
    start_of_first_evlr: int = 0

    def __post_init__(self):
        if self.point_format not in SUPPORTED_FORMATS:
            raise UnsupportedVersionError(
                f"Point format {self.point_format} is not supported. Supported formats: {SUPPORTED_FORMATS}"
            )
        if self.point_format >= 6 and self.version < (1, 4):
            raise UnsupportedVersionError(
                f"Point format {self.point_format} requires version 1.4, got {self.version[0]}.{self.version[1]}"
            )
        if self.point_record_length is None:
            self.point_record_length = point_size(self.point_format)
        elif self.point_record_length < point_size(self.point_format):
            raise FormatError(
                f"Record length {self.point_record_length} is too short for format {self.point_format}"
            )
        if self.crs is not None and not isinstance(self.crs, CRS):
            self.crs = CRS.from_user_input(self.crs)
        n_slots = 15 if self.version >= (1, 4) else 5
        counts = tuple(int(c) for c in self.points_by_return)[:n_slots]
        self.points_by_return = counts + (0,) * (n_slots - len(counts))

    @property
    def header_size(self) -> int:
        return HEADER_SIZES[self.version[1]]

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """Planimetric bounding box as (xmin, ymin, xmax, ymax)."""
        return (self.mins[0], self.mins[1], self.maxs[0], self.maxs[1])

    @property
    def has_bounds(self) -> bool:
        return any(self.mins) or any(self.maxs)

    @property
    def is_compressed(self) -> bool:
        return self.compression is not None

    def copy(self, **changes) -> "Header":
        """Returns a copy with the given attributes replaced."""
        changes.setdefault("vlrs", list(self.vlrs))
        return replace(self, **changes)

    def contains(self, x, y, z, tolerance: Optional[float] = None) -> bool:
        """Checks that coordinate extremes fall inside the declared box, allowing half a scale step."""
        if tolerance is None:
            tolerance = max(self.scales) / 2
        return (
            x.min() >= self.mins[0] - tolerance and x.max() <= self.maxs[0] + tolerance
            and y.min() >= self.mins[1] - tolerance and y.max() <= self.maxs[1] + tolerance
            and z.min() >= self.mins[2] - tolerance and z.max() <= self.maxs[2] + tolerance
        )

    def _output_vlrs(self) -> List[VariableLengthRecord]:
        """Records written to disk: user VLRs plus regenerated CRS and compression records."""
        regenerated = {PROJECTION_USER_ID, LASCATALOG_USER_ID}
        out = [v for v in self.vlrs if v.user_id not in regenerated]
        if self.crs is not None:
            out.append(VariableLengthRecord(
                PROJECTION_USER_ID, WKT_RECORD_ID, "OGC WKT",
                self.crs.to_wkt().encode("ascii") + b"\x00"
            ))
        if self.compression is not None:
            out.append(VariableLengthRecord(
                LASCATALOG_USER_ID, COMPRESSION_RECORD_ID, "point compression",
                self.compression.encode("ascii")
            ))
        return out

    def to_bytes(self) -> bytes:
        """Serializes the header block followed by the VLR table."""
        vlrs = self._output_vlrs()
        vlr_bytes = b"".join(v.to_bytes() for v in vlrs)
        self.offset_to_point_data = self.header_size + len(vlr_bytes)

        date = self.creation_date or datetime.date.today()
        format_byte = self.point_format | (COMPRESSED_BIT if self.compression else 0)
        global_encoding = self.global_encoding
        if self.version >= (1, 4) and self.crs is not None:
            global_encoding |= 0x10

        extended = self.version >= (1, 4)
        fits_legacy = self.point_format < 6 and self.point_count <= 0xFFFFFFFF
        legacy_count = self.point_count if fits_legacy else 0
        legacy_returns = tuple(self.points_by_return[:5]) if fits_legacy else (0,) * 5

        block = _BASE_STRUCT.pack(
            LAS_SIGNATURE,
            self.file_source_id,
            global_encoding,
            0, 0, 0, b"\x00" * 8,
            self.version[0], self.version[1],
            _to_bytes(self.system_identifier, 32),
            _to_bytes(self.generating_software, 32),
            date.timetuple().tm_yday, date.year,
            self.header_size,
            self.offset_to_point_data,
            len(vlrs),
            format_byte,
            self.point_record_length,
            legacy_count,
            *legacy_returns,
            *self.scales,
            *self.offsets,
            self.maxs[0], self.mins[0], self.maxs[1], self.mins[1], self.maxs[2], self.mins[2]
        )
        if self.version >= (1, 3):
            block += _WAVEFORM_STRUCT.pack(0)
        if extended:
            block += _EXTENDED_STRUCT.pack(0, 0, self.point_count, *self.points_by_return)
        return block + vlr_bytes

    @classmethod
    def from_stream(cls, fh: BinaryIO) -> "Header":
        """
        Parses a header block and its VLR table, leaving the stream at the first point record.

        Raises:
            FormatError: Bad signature, truncated block or inconsistent offsets.
            UnsupportedVersionError: Unknown version or point format.
        """
        raw = fh.read(_BASE_STRUCT.size)
        if len(raw) < _BASE_STRUCT.size:
            raise FormatError(f"Truncated header: {len(raw)} bytes")
        values = _BASE_STRUCT.unpack(raw)
        if values[0] != LAS_SIGNATURE:
            raise FormatError(f"Bad file signature {values[0]!r}, expected {LAS_SIGNATURE!r}")

        (_, file_source_id, global_encoding, _, _, _, _, major, minor,
         system_identifier, generating_software, day, year, header_size,
         offset_to_point_data, n_vlrs, format_byte, record_length, legacy_count) = values[:19]
        legacy_returns = values[19:24]
        scales, offsets = values[24:27], values[27:30]
        max_x, min_x, max_y, min_y, max_z, min_z = values[30:36]

        if major != 1 or minor not in HEADER_SIZES:
            raise UnsupportedVersionError(f"Unsupported file version {major}.{minor}")

        point_count = legacy_count
        points_by_return = legacy_returns
        start_of_first_evlr = 0
        if minor >= 3:
            fh.read(_WAVEFORM_STRUCT.size)
        if minor >= 4:
            ext = fh.read(_EXTENDED_STRUCT.size)
            if len(ext) < _EXTENDED_STRUCT.size:
                raise FormatError("Truncated 1.4 header extension")
            ext_values = _EXTENDED_STRUCT.unpack(ext)
            start_of_first_evlr = ext_values[0]
            point_count = ext_values[2] or legacy_count
            points_by_return = ext_values[3:]

        if header_size < HEADER_SIZES[minor]:
            raise FormatError(f"Declared header size {header_size} is too small for version 1.{minor}")
        fh.seek(header_size)

        vlrs = [VariableLengthRecord.from_stream(fh) for _ in range(n_vlrs)]
        if fh.tell() > offset_to_point_data:
            raise FormatError("Variable-length records overlap the point data")

        point_format = format_byte & 0x3F
        compressed = bool(format_byte & COMPRESSED_BIT)
        crs = None
        compression = None
        kept = []
        for vlr in vlrs:
            if vlr.user_id == LASCATALOG_USER_ID and vlr.record_id == COMPRESSION_RECORD_ID:
                try:
                    compression = vlr.data.decode("ascii")
                except UnicodeDecodeError as e:
                    raise FormatError(f"Unreadable compression record: {e}") from e
                continue
            if vlr.user_id == PROJECTION_USER_ID:
                try:
                    if vlr.record_id == WKT_RECORD_ID:
                        crs = CRS.from_wkt(_to_text(vlr.data))
                    elif vlr.record_id == GEOKEY_RECORD_ID and crs is None:
                        crs = _crs_from_geokeys(vlr.data)
                except CRSError as e:
                    log.warning(f"Ignoring unparsable CRS record {vlr.record_id}: {e}")
            kept.append(vlr)

        if compressed and compression is None:
            raise FormatError(
                "Payload is compressed with an external codec (e.g. LASzip). "
                "Use lascatalog.io.from_laspy to load it."
            )

        try:
            creation_date = datetime.date(year, 1, 1) + datetime.timedelta(days=max(day, 1) - 1)
        except (ValueError, OverflowError):
            creation_date = None

        return cls(
            version=(major, minor),
            point_format=point_format,
            point_record_length=record_length,
            scales=tuple(scales),
            offsets=tuple(offsets),
            mins=(min_x, min_y, min_z),
            maxs=(max_x, max_y, max_z),
            point_count=point_count,
            points_by_return=tuple(points_by_return),
            crs=crs,
            file_source_id=file_source_id,
            global_encoding=global_encoding,
            system_identifier=_to_text(system_identifier),
            generating_software=_to_text(generating_software),
            creation_date=creation_date,
            compression=compression,
            vlrs=kept,
            offset_to_point_data=offset_to_point_data,
            start_of_first_evlr=start_of_first_evlr
        )
