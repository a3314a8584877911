# src/lascatalog/points/layer.py

"""
This module defines the core in-memory data structure for point clouds, along with methods for
loading, subsetting and basic manipulation.
"""

from pathlib import Path
from typing import Dict, Iterable, Iterator, Mapping, Optional, Sequence, Tuple, Union
import logging

import numpy as np
import pandas as pd

from lascatalog.io.fields import FIELD_DTYPES, PointRecord
from lascatalog.io.header import Header

log = logging.getLogger(__name__)

__all__ = [
    "PointSet"
]

def _read_only(values: np.ndarray) -> np.ndarray:
    """Read-only view of a column. Writes must go through PointSet methods so the version advances."""
    view = values.view()
    view.setflags(write=False)
    return view

class PointSet:
    """
    Ordered collection of points stored column-wise, plus the Header that owns them.

    Primary attributes:
        header (Header): Metadata of the source file (scales, offsets, CRS, declared box).
        columns (Dict[str, np.ndarray]): One array per decoded field, all of equal length.
        version (int): Modification counter, incremented by every in-place mutation.
            Spatial indexes compare it to detect that they have become stale.

    Indexing with an int returns a PointRecord; indexing with a slice, boolean mask or index
    array returns a new PointSet; indexing with a field name returns that column.
    Columns are read-only; use set_field or append to modify the set.
    """

    def __init__(self, header: Header, columns: Mapping[str, np.ndarray]):
        for axis in ("x", "y", "z"):
            if axis not in columns:
                raise ValueError(f"PointSet requires a '{axis}' column")
        unknown = set(columns) - set(FIELD_DTYPES)
        if unknown:
            raise ValueError(f"Unknown point fields: {sorted(unknown)}")

        n = len(columns["x"])
        ordered = {}
        for name in FIELD_DTYPES:
            if name not in columns:
                continue
            values = np.asarray(columns[name], dtype=FIELD_DTYPES[name])
            if values.shape != (n,):
                raise ValueError(f"Column '{name}' has shape {values.shape}, expected ({n},)")
            ordered[name] = _read_only(values)

        self._header = header
        self._columns = ordered
        self._version = 0

    @classmethod
    def empty(cls, header: Header, fields: Optional[Sequence[str]] = None) -> "PointSet":
        fields = fields or ("x", "y", "z")
        return cls(header, {name: np.zeros(0, dtype=FIELD_DTYPES[name]) for name in fields})

    @classmethod
    def from_records(
        cls,
        records: Iterable[PointRecord],
        header: Header,
        fields: Optional[Sequence[str]] = None
    ) -> "PointSet":
        """
        Builds a PointSet from PointRecords.

        When `fields` is omitted, the fields populated on the first record are used.
        """
        from lascatalog.io.codec import records_to_columns

        records = list(records)
        if fields is None:
            fields = records[0].present_fields() if records else ("x", "y", "z")
        return cls(header, records_to_columns(records, fields))

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        select: Optional[str] = None,
        filter: Optional[str] = None
    ) -> "PointSet":
        """
        Loads a point cloud file into memory.

        Args:
            path (Union[str, Path]): Target file.
            select (str): Field-selection string, e.g. 'xyzrn'.
            filter (str): Read-time filter string, e.g. '-keep_first'.

        Returns:
            PointSet: Fully populated object.
        """
        from lascatalog.io.reader import read_las

        return read_las(path, select=select, filter=filter)

    @classmethod
    def iter_chunks(
        cls,
        path: Union[str, Path],
        chunk_size: int = 1_000_000,
        select: Optional[str] = None,
        filter: Optional[str] = None
    ) -> Iterator["PointSet"]:
        """
        Iterates over a file in fixed-size blocks to keep memory bounded.

        Yields:
            PointSet: Sequential fragments sharing the file header.
        """
        from lascatalog.io.reader import open_las

        with open_las(path, select=select, filter=filter, chunk_size=chunk_size) as reader:
            for columns in reader.points.iter_chunks():
                yield cls(reader.header, columns)

    @classmethod
    def concat(cls, point_sets: Sequence["PointSet"], header: Optional[Header] = None) -> "PointSet":
        """
        Concatenates point sets, keeping the fields common to all of them.

        The header defaults to the first set's header with counts and bounds recomputed.
        """
        if not point_sets:
            raise ValueError("Cannot concatenate an empty sequence of point sets")
        common = [n for n in point_sets[0].fields if all(n in ps.columns for ps in point_sets)]
        columns = {n: np.concatenate([ps.columns[n] for ps in point_sets]) for n in common}
        merged = cls(header or point_sets[0].header, columns)
        if header is None:
            merged._header = merged.updated_header()
        return merged

    @property
    def header(self) -> Header:
        return self._header

    @property
    def columns(self) -> Dict[str, np.ndarray]:
        return dict(self._columns)

    @property
    def fields(self) -> Tuple[str, ...]:
        return tuple(self._columns)

    @property
    def version(self) -> int:
        return self._version

    @property
    def crs(self):
        return self._header.crs

    @property
    def x(self) -> np.ndarray:
        return self._columns["x"]

    @property
    def y(self) -> np.ndarray:
        return self._columns["y"]

    @property
    def z(self) -> np.ndarray:
        return self._columns["z"]

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """Planimetric extent of the data as (xmin, ymin, xmax, ymax)."""
        if len(self) == 0:
            return (np.nan, np.nan, np.nan, np.nan)
        return (float(self.x.min()), float(self.y.min()), float(self.x.max()), float(self.y.max()))

    def __len__(self) -> int:
        return len(self._columns["x"])

    def __getitem__(self, key):
        if isinstance(key, str):
            return self._columns[key]
        if isinstance(key, (int, np.integer)):
            n = len(self)
            if not -n <= key < n:
                raise IndexError(f"Point index {key} out of range for {n} points")
            return PointRecord.from_columns(self._columns, int(key) % n)
        return PointSet(self._header, {name: values[key] for name, values in self._columns.items()})

    def __iter__(self) -> Iterator[PointRecord]:
        return self.records()

    def records(self) -> Iterator[PointRecord]:
        for i in range(len(self)):
            yield PointRecord.from_columns(self._columns, i)

    def set_field(self, name: str, values: np.ndarray):
        """Replaces or adds a column in place."""
        if name not in FIELD_DTYPES:
            raise ValueError(f"Unknown point field '{name}'")
        values = np.asarray(values, dtype=FIELD_DTYPES[name])
        if values.shape != (len(self),):
            raise ValueError(f"Column '{name}' must have shape ({len(self)},), got {values.shape}")
        self._columns[name] = _read_only(values)
        self._version += 1

    def append(self, other: "PointSet"):
        """Appends the points of another set in place. Fields missing from `other` are zero-filled."""
        for name, values in self._columns.items():
            extra = other._columns.get(name)
            if extra is None:
                extra = np.zeros(len(other), dtype=values.dtype)
            self._columns[name] = _read_only(np.concatenate([values, extra]))
        self._version += 1

    def updated_header(self) -> Header:
        """Returns a copy of the header with point count, bounding box and return counts taken from the data."""
        changes = {"point_count": len(self)}
        if len(self):
            changes["mins"] = (float(self.x.min()), float(self.y.min()), float(self.z.min()))
            changes["maxs"] = (float(self.x.max()), float(self.y.max()), float(self.z.max()))
        if "return_number" in self._columns:
            n_slots = len(self._header.points_by_return)
            counts = np.bincount(self._columns["return_number"], minlength=n_slots + 1)
            changes["points_by_return"] = tuple(int(c) for c in counts[1:n_slots + 1])
        return self._header.copy(**changes)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(self._columns)

    def to_file(self, path: Union[str, Path], **kwargs) -> Path:
        """Writes the points to disk. See lascatalog.io.writer.write_las for options."""
        from lascatalog.io.writer import write_las

        return write_las(path, self, **kwargs)

    def __repr__(self):
        return f"<PointSet points={len(self)} format={self._header.point_format} fields={list(self.fields)}>"
