# src/lascatalog/io/reader.py

"""
This module reads point cloud containers.

Opening a file parses the header only. Points are pulled lazily in blocks, decoded with the
requested field selection, and filtered before they are turned into records, so memory grows
with the number of kept points rather than the number of stored points.
"""

import logging
import os
import struct
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, Optional, Union

import numpy as np

from lascatalog.errors import CorruptStreamError, StreamConsumedError
from lascatalog.points.layer import PointSet
from .codec import decode_points
from .compression import get_compressor
from .fields import PointRecord, parse_select
from .filters import PointFilter, parse_filter
from .header import Header

log = logging.getLogger(__name__)

__all__ = [
    "LasReader",
    "PointStream",
    "open_las",
    "read_las",
    "read_header",
    "DEFAULT_CHUNK_SIZE"
]

DEFAULT_CHUNK_SIZE = 500_000
_BLOCK_STRUCT = struct.Struct("<II")

class PointStream:
    """
    Lazy, finite sequence of points from an open reader.

    Without a filter the stream restarts from the first record on every iteration.
    Once a filter is bound it is single-pass: iterating a second time raises StreamConsumedError.
    """
    def __init__(self, reader: "LasReader"):
        self._reader = reader
        self._started = False

    @property
    def restartable(self) -> bool:
        return not self._reader.filter

    def iter_chunks(self) -> Iterator[Dict[str, np.ndarray]]:
        """Yields decoded and filtered column blocks."""
        if self._started and not self.restartable:
            raise StreamConsumedError(
                f"Filtered stream over {self._reader.path.name} has already been consumed"
            )
        self._started = True
        return self._reader._iter_blocks()

    def __iter__(self) -> Iterator[PointRecord]:
        for columns in self.iter_chunks():
            for i in range(len(columns["x"])):
                yield PointRecord.from_columns(columns, i)

    def read(self) -> PointSet:
        """Materializes the remaining stream into a PointSet."""
        blocks = list(self.iter_chunks())
        fields = self._reader.fields
        if not blocks:
            header = self._reader.header
            if self._reader.filter:
                header = header.copy(point_count=0, points_by_return=(0,) * len(header.points_by_return))
            return PointSet.empty(header, fields)
        columns = {name: np.concatenate([b[name] for b in blocks]) for name in blocks[0]}
        point_set = PointSet(self._reader.header, columns)
        if self._reader.filter:
            # filtered sets describe what they hold, not what the file holds
            point_set = PointSet(point_set.updated_header(), columns)
        return point_set

class LasReader:
    """
    Reader over a single point cloud file.

    Args:
        path (Union[str, Path]): File to open.
        select (str): Field-selection string. Defaults to every field of the format.
        filter (Union[str, PointFilter]): Read-time filter. Defaults to keeping every point.
        chunk_size (int): Records decoded per block for raw payloads.

    Raises:
        FileNotFoundError: If the file does not exist.
        FormatError: Malformed header.
        UnsupportedVersionError: Unknown version or point format.
        CorruptStreamError: Payload size disagrees with the declared point count.
    """
    def __init__(
        self,
        path: Union[str, Path],
        select: Optional[str] = None,
        filter: Optional[Union[str, PointFilter]] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE
    ):
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Point cloud file not found: {self.path}")
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")

        self._fh: BinaryIO = open(self.path, "rb")
        try:
            self.header = Header.from_stream(self._fh)
            self._payload_end = self._find_payload_end()
            if not self.header.is_compressed:
                self._check_raw_payload()
            self.fields = parse_select(select, self.header.point_format)
            self.filter = parse_filter(filter)
        except Exception:
            self._fh.close()
            raise

        self.chunk_size = chunk_size
        self.points = PointStream(self)
        log.debug(
            f"Opened {self.path.name}: format {self.header.point_format}, "
            f"{self.header.point_count} points, fields={self.fields}, filter='{self.filter}'"
        )

    def _find_payload_end(self) -> int:
        file_size = os.fstat(self._fh.fileno()).st_size
        evlr = self.header.start_of_first_evlr
        if self.header.offset_to_point_data < evlr <= file_size:
            return evlr
        return file_size

    def _check_raw_payload(self):
        available = self._payload_end - self.header.offset_to_point_data
        expected = self.header.point_count * self.header.point_record_length
        if available != expected:
            stored = available / self.header.point_record_length
            raise CorruptStreamError(
                f"{self.path.name} declares {self.header.point_count} points but its payload "
                f"holds {stored:g} records of {self.header.point_record_length} bytes"
            )

    def _finish(self, columns: Dict[str, np.ndarray]) -> Dict[str, np.ndarray]:
        if self.filter:
            keep = self.filter.mask(columns)
            columns = {name: values[keep] for name, values in columns.items()}
        return {name: columns[name] for name in self.fields}

    def _iter_blocks(self) -> Iterator[Dict[str, np.ndarray]]:
        decode_fields = tuple(dict.fromkeys(self.fields + self.filter.fields))
        if self.header.is_compressed:
            blocks = self._iter_compressed()
        else:
            blocks = self._iter_raw()
        for buffer in blocks:
            yield self._finish(decode_points(buffer, self.header, decode_fields))

    def _iter_raw(self) -> Iterator[bytes]:
        record_length = self.header.point_record_length
        remaining = self.header.point_count
        self._fh.seek(self.header.offset_to_point_data)
        while remaining > 0:
            n = min(self.chunk_size, remaining)
            buffer = self._fh.read(n * record_length)
            if len(buffer) != n * record_length:
                raise CorruptStreamError(
                    f"{self.path.name} ended after {self.header.point_count - remaining} "
                    f"of {self.header.point_count} declared points"
                )
            remaining -= n
            yield buffer

    def _iter_compressed(self) -> Iterator[bytes]:
        compressor = get_compressor(self.header.compression)
        record_length = self.header.point_record_length
        decoded = 0
        self._fh.seek(self.header.offset_to_point_data)
        while decoded < self.header.point_count:
            head = self._fh.read(_BLOCK_STRUCT.size)
            if len(head) != _BLOCK_STRUCT.size:
                raise CorruptStreamError(
                    f"{self.path.name} ended after {decoded} of {self.header.point_count} declared points"
                )
            n_points, n_bytes = _BLOCK_STRUCT.unpack(head)
            payload = self._fh.read(n_bytes)
            if len(payload) != n_bytes:
                raise CorruptStreamError(f"Truncated compressed block in {self.path.name}")
            try:
                buffer = compressor.decompress(payload)
            except Exception as e:
                raise CorruptStreamError(f"Cannot decompress block in {self.path.name}: {e}") from e
            if len(buffer) != n_points * record_length:
                raise CorruptStreamError(
                    f"Compressed block in {self.path.name} declares {n_points} points "
                    f"but expands to {len(buffer)} bytes"
                )
            decoded += n_points
            if decoded > self.header.point_count:
                raise CorruptStreamError(
                    f"{self.path.name} holds more points than the {self.header.point_count} declared"
                )
            yield buffer
        if self._fh.tell() != self._payload_end:
            raise CorruptStreamError(
                f"{self.path.name} holds trailing data after its {self.header.point_count} declared points"
            )

    def read(self) -> PointSet:
        return self.points.read()

    def close(self):
        self._fh.close()

    def __enter__(self) -> "LasReader":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self):
        return f"<LasReader {self.path.name} points={self.header.point_count}>"

def open_las(
    path: Union[str, Path],
    select: Optional[str] = None,
    filter: Optional[Union[str, PointFilter]] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE
) -> LasReader:
    """
    Opens a file for lazy reading. Use as a context manager; the header is available
    immediately as `reader.header` and the points as `reader.points`.
    """
    return LasReader(path, select=select, filter=filter, chunk_size=chunk_size)

def read_las(
    path: Union[str, Path],
    select: Optional[str] = None,
    filter: Optional[Union[str, PointFilter]] = None
) -> PointSet:
    """
    Reads a whole file into memory.

    Args:
        path (Union[str, Path]): File to read.
        select (str): Field-selection string, e.g. 'xyzc' or '* -i'.
        filter (str): Read-time filter, e.g. '-keep_first -drop_z_below 2'.

    Returns:
        PointSet: Decoded points with the file header.
    """
    with open_las(path, select=select, filter=filter) as reader:
        point_set = reader.read()
    log.info(f"Read {len(point_set)} of {reader.header.point_count} points from {Path(path).name}")
    return point_set

def read_header(path: Union[str, Path]) -> Header:
    """Parses the header of a file without touching its points."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Point cloud file not found: {path}")
    with open(path, "rb") as fh:
        return Header.from_stream(fh)
