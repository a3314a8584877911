# src/lascatalog/catalog/layer.py

"""
This module defines the catalog: a set of point cloud files handled as one logical dataset.

Building a catalog reads file headers only. Points are decoded later, one spatial subset at a
time, by the catalog engine or by region extraction.
"""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import geopandas as gpd

from lascatalog.errors import FormatError, ProcessingCancelled
from lascatalog.geometry import Box, Region, as_region, region_bounds
from lascatalog.io.fields import SUPPORTED_FORMATS, parse_select
from lascatalog.io.filters import PointFilter, box_filter, parse_filter
from lascatalog.io.header import Header
from lascatalog.io.reader import open_las, read_header
from lascatalog.points.index import GridIndex
from lascatalog.points.layer import PointSet

log = logging.getLogger(__name__)

__all__ = [
    "FileDescriptor",
    "CatalogOptions",
    "Catalog",
    "clip_region",
    "CHUNK_STRATEGIES"
]

CHUNK_STRATEGIES = ("file", "tile", "regions")
DEFAULT_PATTERNS = ("*.las", "*.laz")

@dataclass(frozen=True)
class FileDescriptor:
    """
    Header-level description of one file of a catalog.

    Args:
        path (Path): Location of the file.
        header (Header): Parsed header.
    """
    path: Path
    header: Header

    @property
    def bbox(self) -> Box:
        return Box.from_bounds(self.header.bounds)

    @property
    def point_count(self) -> int:
        return self.header.point_count

@dataclass
class CatalogOptions:
    """
    Processing options of a catalog.

    Args:
        strategy (str): How work is split into chunks. Options:
            'file': one chunk per file, the core being the file's bounding box.
            'tile': a regular grid of square chunks of side `chunk_size`.
            'regions': one chunk per box in `regions`.
        chunk_size (float): Side of the tiles for the 'tile' strategy.
        buffer (float): Margin loaded around every chunk core, in map units.
        alignment (Tuple[float, float]): Point the tile grid is aligned on.
        regions (Sequence): Boxes (or (xmin, ymin, xmax, ymax) tuples) for the 'regions' strategy.
        select (str): Field-selection string applied when loading chunks.
        filter (str): Read-time filter applied when loading chunks.
    """
    strategy: str = "file"
    chunk_size: Optional[float] = None
    buffer: float = 0.0
    alignment: Tuple[float, float] = (0.0, 0.0)
    regions: Sequence = field(default_factory=list)
    select: Optional[str] = None
    filter: Optional[str] = None

    def __post_init__(self):
        if self.strategy not in CHUNK_STRATEGIES:
            raise ValueError(f"Unknown chunk strategy '{self.strategy}'. Options: {CHUNK_STRATEGIES}")
        if self.strategy == "tile" and (self.chunk_size is None or self.chunk_size <= 0):
            raise ValueError("The 'tile' strategy requires a positive chunk_size")
        if self.strategy == "regions" and not self.regions:
            raise ValueError("The 'regions' strategy requires at least one region")
        if self.buffer < 0:
            raise ValueError(f"buffer must be non-negative, got {self.buffer}")
        self.regions = [region_bounds(r) for r in self.regions]
        # unknown select codes and filter flags raise before any chunk is loaded
        parse_select(self.select, max(SUPPORTED_FORMATS))
        parse_filter(self.filter)

class Catalog:
    """
    Collection of point cloud files processed as one dataset.

    Args:
        paths (Iterable[Union[str, Path]]): Files of the catalog.
        options (CatalogOptions): Chunking and loading options. Defaults to one chunk per file.
        strict (bool): Raise on unreadable headers instead of skipping the file.

    Raises:
        ValueError: If no readable file is left.
    """
    def __init__(
        self,
        paths: Iterable[Union[str, Path]],
        options: Optional[CatalogOptions] = None,
        strict: bool = False
    ):
        self.options = options or CatalogOptions()
        self.files: List[FileDescriptor] = []

        paths = [Path(p) for p in paths]
        if not paths:
            raise ValueError("Cannot build a catalog from an empty list of files")

        for path in paths:
            try:
                header = read_header(path)
            except (FileNotFoundError, FormatError) as e:
                if strict:
                    raise
                log.warning(f"Skipping {path}: {e}")
                continue
            self.files.append(FileDescriptor(path, header))

        if not self.files:
            raise ValueError(f"None of the {len(paths)} files could be read")
        self._check_crs()
        log.info(f"Catalog built from {len(self.files)} files, {self.point_count} points")

    @classmethod
    def from_directory(
        cls,
        directory: Union[str, Path],
        patterns: Sequence[str] = DEFAULT_PATTERNS,
        recursive: bool = False,
        options: Optional[CatalogOptions] = None,
        strict: bool = False
    ) -> "Catalog":
        """
        Builds a catalog from the point cloud files of a directory.

        Args:
            directory (Union[str, Path]): Folder to scan.
            patterns (Sequence[str]): Glob patterns of the files to include.
            recursive (bool): Also scan subfolders.
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise FileNotFoundError(f"Catalog directory not found: {directory}")
        globber = directory.rglob if recursive else directory.glob
        paths = sorted({p for pattern in patterns for p in globber(pattern) if p.is_file()})
        if not paths:
            raise ValueError(f"No files matching {list(patterns)} in {directory}")
        return cls(paths, options=options, strict=strict)

    def _check_crs(self):
        wkts = {d.header.crs.to_wkt() for d in self.files if d.header.crs is not None}
        if len(wkts) > 1:
            log.warning(f"Catalog files declare {len(wkts)} different CRS; the first one is used")

    @property
    def crs(self):
        for descriptor in self.files:
            if descriptor.header.crs is not None:
                return descriptor.header.crs
        return None

    @property
    def extent(self) -> Box:
        """Union of the file bounding boxes."""
        extent = self.files[0].bbox
        for descriptor in self.files[1:]:
            extent = extent.union(descriptor.bbox)
        return extent

    @property
    def point_count(self) -> int:
        return sum(d.point_count for d in self.files)

    def files_intersecting(self, box: Box) -> List[FileDescriptor]:
        return [d for d in self.files if d.bbox.intersects(box)]

    def to_geodataframe(self) -> gpd.GeoDataFrame:
        """File table with one bounding-box polygon per file."""
        records = [
            {
                "path": str(d.path),
                "point_format": d.header.point_format,
                "point_count": d.point_count,
                "zmin": d.header.mins[2],
                "zmax": d.header.maxs[2],
                "geometry": d.bbox.to_shapely(),
            }
            for d in self.files
        ]
        crs = self.crs.to_wkt() if self.crs is not None else None
        return gpd.GeoDataFrame(records, geometry="geometry", crs=crs)

    def read_box(
        self,
        box: Box,
        files: Optional[Sequence[FileDescriptor]] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> Optional[PointSet]:
        """
        Loads the points inside a box (boundary included) from the files it touches.

        The box is applied as a read-time filter together with the catalog's own filter and
        field selection, so only matching points are materialized.

        Args:
            box (Box): Region to load.
            files (Sequence[FileDescriptor]): Files to read. Defaults to those intersecting the box.
            cancel_event (threading.Event): Checked between files and between blocks.

        Returns:
            Optional[PointSet]: Loaded points, or None if no file intersects the box.

        Raises:
            ProcessingCancelled: If the event is set while loading.
        """
        files = self.files_intersecting(box) if files is None else list(files)
        if not files:
            return None

        point_filter: PointFilter = box_filter(*box.bounds) & parse_filter(self.options.filter)
        parts = []
        for descriptor in files:
            _raise_if_cancelled(cancel_event)
            with open_las(descriptor.path, select=self.options.select, filter=point_filter) as reader:
                for columns in reader.points.iter_chunks():
                    _raise_if_cancelled(cancel_event)
                    if len(columns["x"]):
                        parts.append(PointSet(reader.header, columns))
        _raise_if_cancelled(cancel_event)

        if not parts:
            header = files[0].header
            header = header.copy(point_count=0, points_by_return=(0,) * len(header.points_by_return))
            return PointSet.empty(header, parse_select(self.options.select, header.point_format))
        return PointSet.concat(parts)

    def __len__(self) -> int:
        return len(self.files)

    def __iter__(self) -> Iterator[FileDescriptor]:
        return iter(self.files)

    def __repr__(self):
        return f"<Catalog files={len(self.files)} points={self.point_count} extent={self.extent.bounds}>"

def _raise_if_cancelled(cancel_event: Optional[threading.Event]):
    if cancel_event is not None and cancel_event.is_set():
        raise ProcessingCancelled("Catalog processing was cancelled")

def clip_region(catalog: Catalog, region: Region) -> Optional[PointSet]:
    """
    Extracts the points of a catalog that fall inside a region.

    File bounding boxes select the files to read, the region's bounding box is applied at
    decode time, and a GridIndex performs the exact membership test.

    Args:
        catalog (Catalog): Source files.
        region (Region): Box, Circle, shapely polygon or (xmin, ymin, xmax, ymax).

    Returns:
        Optional[PointSet]: Points inside the region (boundary included), or None when the
            region does not touch any file.
    """
    region = as_region(region)
    point_set = catalog.read_box(region_bounds(region))
    if point_set is None:
        log.warning(f"Region {region_bounds(region).bounds} does not intersect any catalog file")
        return None
    if isinstance(region, Box):
        return point_set

    inside = GridIndex(point_set).query(region)
    subset = point_set[inside]
    clipped = PointSet(subset.updated_header(), subset.columns)
    log.info(f"Clipped {len(clipped)} points from {len(catalog)} files")
    return clipped
