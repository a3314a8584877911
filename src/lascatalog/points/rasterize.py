# src/lascatalog/points/rasterize.py

"""
This module implements functions to rasterize point sets into surface grids.
"""

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import rasterio
from numba import jit
from rasterio.crs import CRS
from rasterio.transform import Affine

from .layer import PointSet

log = logging.getLogger(__name__)

__all__ = [
    "SurfaceGrid",
    "points_to_grid",
    "NODATA_VAL"
]

NODATA_VAL = -9999.0

_METHOD_FLAGS = {"count": 0, "max": 1, "min": 2}

@dataclass
class SurfaceGrid:
    """
    Georeferenced 2D grid produced by rasterizing points.

    Args:
        data (np.ndarray): Array of shape (rows, cols). Row 0 is the northern edge.
        transform (Affine): Pixel to world transform.
        crs (CRS): Coordinate reference system, if known.
        nodata (float): Value of empty cells, None for count grids.
    """
    data: np.ndarray
    transform: Affine
    crs: Optional[CRS] = None
    nodata: Optional[float] = None

    @property
    def shape(self) -> Tuple[int, int]:
        return self.data.shape

    @property
    def resolution(self) -> float:
        return self.transform.a

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        rows, cols = self.shape
        xmin, ymax = self.transform * (0, 0)
        xmax, ymin = self.transform * (cols, rows)
        return (xmin, ymin, xmax, ymax)

    @property
    def profile(self) -> dict:
        rows, cols = self.shape
        return {
            "driver": "GTiff",
            "height": rows,
            "width": cols,
            "count": 1,
            "dtype": self.data.dtype.name,
            "crs": self.crs,
            "transform": self.transform,
            "nodata": self.nodata,
        }

    def save(self, path: Union[str, Path], **profile_kwargs) -> Path:
        """
        Writes the grid to disk as a single-band raster (GeoTIFF by default).

        Args:
            path (Union[str, Path]): Output file path.
            **profile_kwargs: Override default rasterio profile settings.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        profile = self.profile
        profile.update(profile_kwargs)

        log.info(f"Saving surface grid {self.shape} -> {path}")
        try:
            with rasterio.open(path, "w", **profile) as dst:
                dst.write(self.data, 1)
        except rasterio.RasterioIOError as e:
            raise IOError(f"Failed to save surface grid to {path}: {e}") from e
        return path

def _create_affine_transform(min_x: float, max_y: float, resolution: float) -> Affine:
    """Affine transform of a north-up grid anchored at its upper-left corner."""
    return Affine.translation(min_x, max_y) * Affine.scale(resolution, -resolution)

@jit(nopython=True, cache=True)
def _rasterize_chunk(
    grid: np.ndarray,
    rows: np.ndarray,
    cols: np.ndarray,
    z: np.ndarray,
    method_flag: int
    ):
    """
    Accumulates points into the grid in place (0=count, 1=max, 2=min).
    """
    for i in range(len(rows)):
        r = rows[i]
        c = cols[i]
        if method_flag == 0:
            grid[r, c] += 1
        elif method_flag == 1:
            if z[i] > grid[r, c]:
                grid[r, c] = z[i]
        elif method_flag == 2:
            if z[i] < grid[r, c]:
                grid[r, c] = z[i]

def points_to_grid(
    point_set: PointSet,
    resolution: float,
    method: str = "max",
    nodata: float = NODATA_VAL,
    bounds: Optional[Sequence[float]] = None
) -> SurfaceGrid:
    """
    Rasterizes a point set into a surface grid.

    This can be used to create surface models (max), lowest-point grids (min) or density maps (count).
    Cells are half-open on their max sides, except the last row and column which also take the
    points lying on the grid's outer edge.

    Args:
        point_set (PointSet): Points to rasterize.
        resolution (float): Geographic units per cell.
        method (str): Statistical aggregator ('max', 'min', 'count').
        nodata (float): Filler value for empty cells of 'max' and 'min' grids.
        bounds (Sequence[float]): (xmin, ymin, xmax, ymax) of the grid. Defaults to the data extent.
            Points outside are ignored.

    Returns:
        SurfaceGrid: Grid with its transform and the point set's CRS.
    """
    if resolution <= 0:
        raise ValueError(f"resolution must be positive, got {resolution}")
    if method not in _METHOD_FLAGS:
        raise ValueError(f"Unknown rasterization method: {method}. Options: {list(_METHOD_FLAGS)}")

    if bounds is None:
        if len(point_set) == 0:
            raise ValueError("Cannot derive grid bounds from an empty point set; pass bounds explicitly")
        bounds = point_set.bounds
    min_x, min_y, max_x, max_y = (float(v) for v in bounds)

    width = max(1, math.ceil((max_x - min_x) / resolution))
    height = max(1, math.ceil((max_y - min_y) / resolution))
    shape = (height, width)
    transform = _create_affine_transform(min_x, min_y + height * resolution, resolution)

    if method == "count":
        grid = np.zeros(shape, dtype=np.uint32)
        actual_nodata = None
    elif method == "max":
        grid = np.full(shape, -np.inf, dtype=np.float32)
        actual_nodata = nodata
    else:
        grid = np.full(shape, np.inf, dtype=np.float32)
        actual_nodata = nodata

    x, y = point_set.x, point_set.y
    inside = (x >= min_x) & (x <= max_x) & (y >= min_y) & (y <= max_y)
    if np.any(inside):
        cols = np.minimum(np.floor((x[inside] - min_x) / resolution), width - 1).astype(np.int64)
        rows_from_bottom = np.minimum(np.floor((y[inside] - min_y) / resolution), height - 1)
        rows = (height - 1 - rows_from_bottom).astype(np.int64)
        z = point_set.z[inside].astype(np.float32)
        _rasterize_chunk(grid, rows, cols, z, _METHOD_FLAGS[method])

    if method == "max":
        grid[grid == -np.inf] = nodata
    elif method == "min":
        grid[grid == np.inf] = nodata

    log.debug(f"Rasterized {int(inside.sum())} points into a {height}x{width} '{method}' grid")
    return SurfaceGrid(
        data=grid,
        transform=transform,
        crs=point_set.crs,
        nodata=actual_nodata
    )
