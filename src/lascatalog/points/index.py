# src/lascatalog/points/index.py

"""
This module implements the spatial index used for region queries on in-memory point sets.

The index is a uniform grid laid over the data extent. Points are sorted by cell once at build
time; each cell then maps to a contiguous range of that permutation (compressed sparse rows).
Queries visit only the cells overlapping the region and run the exact membership test on their
points, so results never depend on the chosen cell size.
"""

import logging
import math
from typing import Optional, Tuple

import numpy as np
import shapely
from shapely.geometry.base import BaseGeometry

from lascatalog.errors import StaleIndexError
from lascatalog.geometry import Box, Circle, Region, as_region, region_bounds, region_contains
from .layer import PointSet

log = logging.getLogger(__name__)

__all__ = [
    "GridIndex",
    "build_index",
    "DEFAULT_POINTS_PER_CELL"
]

DEFAULT_POINTS_PER_CELL = 8
MAX_CELLS_PER_POINT = 4

class GridIndex:
    """
    Read-only uniform grid index over a PointSet.

    Args:
        point_set (PointSet): Points to index.
        points_per_cell (float): Target average occupancy used to derive the cell size.
            Smaller values speed up small queries at the cost of more cells.
        cell_size (float): Explicit cell size, overriding points_per_cell.

    Attributes:
        origin (Tuple[float, float]): Lower-left corner of the grid.
        cell_size (float): Side of a square cell.
        shape (Tuple[int, int]): (rows, cols).
    """
    def __init__(
        self,
        point_set: PointSet,
        points_per_cell: float = DEFAULT_POINTS_PER_CELL,
        cell_size: Optional[float] = None
    ):
        if points_per_cell <= 0:
            raise ValueError(f"points_per_cell must be positive, got {points_per_cell}")
        if cell_size is not None and cell_size <= 0:
            raise ValueError(f"cell_size must be positive, got {cell_size}")

        self._point_set = point_set
        self._version = point_set.version
        self._size = len(point_set)
        x, y = point_set.x, point_set.y

        if self._size == 0:
            self.origin = (0.0, 0.0)
            self.extent = None
            self.cell_size = cell_size or 1.0
            self.shape = (1, 1)
            self._order = np.zeros(0, dtype=np.int64)
            self._starts = np.zeros(2, dtype=np.int64)
            return

        xmin, ymin, xmax, ymax = point_set.bounds
        self.origin = (xmin, ymin)
        self.extent = Box(xmin, ymin, xmax, ymax)
        self.cell_size = cell_size or self._derive_cell_size(xmax - xmin, ymax - ymin, points_per_cell)

        ncols = max(1, math.ceil((xmax - xmin) / self.cell_size))
        nrows = max(1, math.ceil((ymax - ymin) / self.cell_size))
        max_cells = max(1, MAX_CELLS_PER_POINT * self._size)
        if ncols * nrows > max_cells:
            # cap the cell table at MAX_CELLS_PER_POINT cells per point
            factor = math.sqrt(ncols * nrows / max_cells)
            self.cell_size *= factor
            ncols = max(1, math.ceil((xmax - xmin) / self.cell_size))
            nrows = max(1, math.ceil((ymax - ymin) / self.cell_size))
        self.shape = (nrows, ncols)

        rows, cols = self._cell_of(x, y)
        cell_ids = rows * ncols + cols
        self._order = np.argsort(cell_ids, kind="stable").astype(np.int64)
        counts = np.bincount(cell_ids, minlength=nrows * ncols)
        self._starts = np.concatenate([[0], np.cumsum(counts)]).astype(np.int64)
        log.debug(
            f"Built grid index: {self._size} points, {nrows}x{ncols} cells of {self.cell_size:.3f}"
        )

    @classmethod
    def build(cls, point_set: PointSet, points_per_cell: float = DEFAULT_POINTS_PER_CELL,
              cell_size: Optional[float] = None) -> "GridIndex":
        return cls(point_set, points_per_cell=points_per_cell, cell_size=cell_size)

    def _derive_cell_size(self, width: float, height: float, points_per_cell: float) -> float:
        """Side of a square cell giving `points_per_cell` points on average over the extent."""
        target_cells = max(1.0, self._size / points_per_cell)
        if width > 0 and height > 0:
            return math.sqrt(width * height / target_cells)
        if width > 0 or height > 0:
            return max(width, height) / target_cells
        return 1.0

    def _cell_of(self, x: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Row and column of coordinates, clamped to the grid. Monotone in x and y."""
        nrows, ncols = self.shape
        cols = np.clip(np.floor((np.asarray(x) - self.origin[0]) / self.cell_size), 0, ncols - 1)
        rows = np.clip(np.floor((np.asarray(y) - self.origin[1]) / self.cell_size), 0, nrows - 1)
        return rows.astype(np.int64), cols.astype(np.int64)

    @property
    def n_cells(self) -> int:
        return self.shape[0] * self.shape[1]

    @property
    def is_stale(self) -> bool:
        return self._point_set.version != self._version or len(self._point_set) != self._size

    def _check_fresh(self):
        if self.is_stale:
            raise StaleIndexError("The point set was modified after the index was built; rebuild it")

    def _candidate_cells(self, bounds: Box) -> np.ndarray:
        (r0, r1), (c0, c1) = self._cell_of(
            np.array([bounds.xmin, bounds.xmax]), np.array([bounds.ymin, bounds.ymax])
        )
        rows = np.arange(r0, r1 + 1, dtype=np.int64)
        cols = np.arange(c0, c1 + 1, dtype=np.int64)
        return (rows[:, None] * self.shape[1] + cols[None, :]).ravel()

    def _gather(self, cells: np.ndarray) -> np.ndarray:
        """Point indices stored in the given cells."""
        lo = self._starts[cells]
        lengths = self._starts[cells + 1] - lo
        total = int(lengths.sum())
        if total == 0:
            return np.zeros(0, dtype=np.int64)
        run_offsets = np.repeat(lo - np.concatenate([[0], np.cumsum(lengths)[:-1]]), lengths)
        return self._order[run_offsets + np.arange(total)]

    def _narrow_to_polygon(self, cells: np.ndarray, polygon: BaseGeometry) -> np.ndarray:
        """Keeps the cells whose (slightly grown) box intersects the polygon."""
        ncols = self.shape[1]
        rows, cols = cells // ncols, cells % ncols
        eps = self.cell_size * 1e-6
        x0 = self.origin[0] + cols * self.cell_size - eps
        y0 = self.origin[1] + rows * self.cell_size - eps
        boxes = shapely.box(x0, y0, x0 + self.cell_size + 2 * eps, y0 + self.cell_size + 2 * eps)
        return cells[shapely.intersects(polygon, boxes)]

    def query(self, region: Region) -> np.ndarray:
        """
        Indices of the points inside a region, in ascending order.

        Args:
            region (Region): Box (or (xmin, ymin, xmax, ymax) tuple), Circle or shapely polygon.
                Boundaries are inclusive.

        Returns:
            np.ndarray: int64 point indices into the indexed PointSet.

        Raises:
            StaleIndexError: If the PointSet changed since the index was built.
        """
        self._check_fresh()
        region = as_region(region)
        if self._size == 0:
            return np.zeros(0, dtype=np.int64)
        if isinstance(region, BaseGeometry) and region.is_empty:
            return np.zeros(0, dtype=np.int64)

        bounds = region_bounds(region)
        if not bounds.intersects(self.extent):
            return np.zeros(0, dtype=np.int64)

        cells = self._candidate_cells(bounds)
        if isinstance(region, BaseGeometry):
            shapely.prepare(region)
            cells = self._narrow_to_polygon(cells, region)

        candidates = self._gather(cells)
        if candidates.size == 0:
            return candidates
        inside = region_contains(region, self._point_set.x[candidates], self._point_set.y[candidates])
        return np.sort(candidates[inside])

    def query_box(self, xmin: float, ymin: float, xmax: float, ymax: float) -> np.ndarray:
        return self.query(Box(xmin, ymin, xmax, ymax))

    def query_circle(self, x: float, y: float, radius: float) -> np.ndarray:
        return self.query(Circle(x, y, radius))

    def query_polygon(self, polygon: BaseGeometry) -> np.ndarray:
        return self.query(polygon)

    def __repr__(self):
        return f"<GridIndex points={self._size} shape={self.shape} cell_size={self.cell_size:.3f}>"

def build_index(point_set: PointSet, points_per_cell: float = DEFAULT_POINTS_PER_CELL) -> GridIndex:
    """Builds a GridIndex over a PointSet."""
    return GridIndex(point_set, points_per_cell=points_per_cell)
