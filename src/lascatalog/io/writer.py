# src/lascatalog/io/writer.py

"""
This module writes point cloud containers.

Points are streamed to disk block by block; the writer keeps only running statistics (count,
bounding box, return counts) and rewrites the header when it is closed.
"""

import itertools
import logging
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Union

import numpy as np

from lascatalog.errors import BoundingBoxMismatchError
from lascatalog.points.layer import PointSet
from .codec import encode_points, quantize, records_to_columns
from .compression import get_compressor
from .fields import PointRecord, format_fields
from .header import Header
from .reader import DEFAULT_CHUNK_SIZE, _BLOCK_STRUCT

log = logging.getLogger(__name__)

__all__ = [
    "LasWriter",
    "write_las"
]

class LasWriter:
    """
    Streaming writer.

    Args:
        path (Union[str, Path]): Destination file, overwritten if present.
        header (Header): Template header. Its point count and return counts are recomputed.
        regenerate_header (bool): Recompute the bounding box from the written points. When False
            and the header declares a box, points outside it raise BoundingBoxMismatchError.
            A header without a declared box is always regenerated.
        compressor (str): Name of a registered compressor; None writes raw records.
            Defaults to the template header's compressor.
        chunk_size (int): Points per compressed block.
    """
    def __init__(
        self,
        path: Union[str, Path],
        header: Header,
        regenerate_header: bool = False,
        compressor: Optional[str] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE
    ):
        self.path = Path(path)
        compression = compressor if compressor is not None else header.compression
        if compression is not None:
            get_compressor(compression)
        self.header = header.copy(compression=compression)
        self.regenerate = regenerate_header or not header.has_bounds
        self.chunk_size = chunk_size

        self._count = 0
        self._mins = np.full(3, np.inf)
        self._maxs = np.full(3, -np.inf)
        self._returns = np.zeros(len(self.header.points_by_return) + 1, dtype=np.int64)
        self._pending = []
        self._pending_count = 0
        self._fields = format_fields(self.header.point_format)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(self.path, "wb")
        self._fh.write(self.header.to_bytes())
        self._closed = False

    def write_points(self, points: Union[PointSet, Mapping[str, np.ndarray]]):
        """
        Appends a block of points given as a PointSet or a mapping of columns.

        Raises:
            BoundingBoxMismatchError: Coordinates outside the declared box (non-regenerating writer).
            FormatError: Values that the point format cannot represent.
        """
        columns: Dict[str, np.ndarray] = points.columns if isinstance(points, PointSet) else dict(points)
        n = len(columns["x"])
        if n == 0:
            return

        if not self.regenerate and not self.header.contains(columns["x"], columns["y"], columns["z"]):
            raise BoundingBoxMismatchError(
                f"Points written to {self.path.name} fall outside the declared bounding box "
                f"{self.header.mins} - {self.header.maxs}"
            )

        for axis, name in enumerate(("x", "y", "z")):
            values = columns[name]
            scale, offset = self.header.scales[axis], self.header.offsets[axis]
            extremes = quantize(np.array([values.min(), values.max()]), scale, offset, name) * scale + offset
            self._mins[axis] = min(self._mins[axis], extremes[0])
            self._maxs[axis] = max(self._maxs[axis], extremes[1])

        if "return_number" in columns:
            counts = np.bincount(columns["return_number"].astype(np.int64), minlength=len(self._returns))
            self._returns += counts[:len(self._returns)]

        data = encode_points(columns, self.header)
        self._count += n
        if self.header.is_compressed:
            self._pending.append(data)
            self._pending_count += n
            if self._pending_count >= self.chunk_size:
                self._flush_block()
        else:
            self._fh.write(data)

    def write_records(self, records: Iterable[PointRecord]):
        """Appends PointRecords, encoding them in blocks of `chunk_size`."""
        iterator = iter(records)
        while True:
            batch = list(itertools.islice(iterator, self.chunk_size))
            if not batch:
                break
            fields = [f for f in batch[0].present_fields() if f in self._fields]
            self.write_points(records_to_columns(batch, fields))

    def _flush_block(self):
        if not self._pending:
            return
        compressor = get_compressor(self.header.compression)
        payload = compressor.compress(b"".join(self._pending))
        self._fh.write(_BLOCK_STRUCT.pack(self._pending_count, len(payload)))
        self._fh.write(payload)
        log.debug(f"Wrote compressed block of {self._pending_count} points ({len(payload)} bytes)")
        self._pending = []
        self._pending_count = 0

    def close(self):
        if self._closed:
            return
        self._flush_block()
        changes = {
            "point_count": self._count,
            "points_by_return": tuple(int(c) for c in self._returns[1:])
        }
        if self.regenerate and self._count:
            changes["mins"] = tuple(float(v) for v in self._mins)
            changes["maxs"] = tuple(float(v) for v in self._maxs)
        self.header = self.header.copy(**changes)
        self._fh.seek(0)
        self._fh.write(self.header.to_bytes())
        self._fh.close()
        self._closed = True
        log.debug(f"Closed {self.path.name} with {self._count} points")

    def abort(self):
        """Closes the file and removes the partial output."""
        if not self._closed:
            self._fh.close()
            self._closed = True
        self.path.unlink(missing_ok=True)

    def __enter__(self) -> "LasWriter":
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.abort()
        else:
            self.close()

def write_las(
    path: Union[str, Path],
    point_set: PointSet,
    regenerate_header: bool = True,
    compressor: Optional[str] = None,
    point_format: Optional[int] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE
) -> Path:
    """
    Writes a PointSet to disk.

    Args:
        path (Union[str, Path]): Destination file.
        point_set (PointSet): Points to write; its header is the template.
        regenerate_header (bool): Recompute the bounding box from the data (default). When False,
            the point set header's box is enforced.
        compressor (str): Registered compressor name, or None for raw records.
        point_format (int): Convert to another point format. Fields the target lacks are dropped;
            fields it adds are zero.
        chunk_size (int): Points per block.

    Returns:
        Path: The written file.
    """
    header = point_set.header
    if point_format is not None and point_format != header.point_format:
        version = (1, 4) if point_format >= 6 else header.version
        header = header.copy(point_format=point_format, point_record_length=None, version=version)

    with LasWriter(path, header, regenerate_header=regenerate_header,
                   compressor=compressor, chunk_size=chunk_size) as writer:
        for start in range(0, len(point_set), chunk_size):
            writer.write_points(point_set[start:start + chunk_size])
    log.info(f"Wrote {len(point_set)} points to {Path(path).name}")
    return Path(path)
