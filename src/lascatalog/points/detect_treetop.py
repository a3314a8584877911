# src/lascatalog/points/detect_treetop.py

"""
This module implements individual tree detection on normalized point sets.

Detection uses a point-based local maximum filter (LMF): a point is a treetop when it is high
enough and no other point within half the window size has a greater (z, x, y) key. Ties on
height are broken by coordinates, so the result does not depend on point order or chunking.
"""

import logging
from dataclasses import dataclass

import geopandas as gpd
import numpy as np
from scipy.spatial import cKDTree

from .layer import PointSet

log = logging.getLogger(__name__)

__all__ = [
    "DetectionParams",
    "locate_trees"
]

_UNIQUENESS = ("incremental", "bitmerge")

@dataclass
class DetectionParams:
    """
    Parameters for treetop detection.

    Args:
        window_size (float): Diameter of the circular search window, in map units.
        min_height (float): Minimum height of a treetop, in the units of Z.
        uniqueness (str): How tree IDs are assigned. 'incremental' numbers trees 1..n in (x, y)
            order; 'bitmerge' packs centimetric X and Y into one 64-bit integer, which stays
            unique when results from several chunks are merged.
    """
    window_size: float = 5.0
    min_height: float = 2.0
    uniqueness: str = "incremental"

def _key_rank(point_set: PointSet) -> np.ndarray:
    """Rank of each point when ordered by (z, x, y)."""
    order = np.lexsort((point_set.y, point_set.x, point_set.z))
    rank = np.empty(len(point_set), dtype=np.int64)
    rank[order] = np.arange(len(point_set))
    return rank

def _bitmerge(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    xi = np.round(x * 100).astype(np.int64) & 0xFFFFFFFF
    yi = np.round(y * 100).astype(np.int64) & 0xFFFFFFFF
    return (xi << 32) | yi

def _empty_result(crs) -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {"treeID": np.zeros(0, dtype=np.int64), "Z": np.zeros(0, dtype=np.float64)},
        geometry=gpd.GeoSeries([], crs=crs),
        crs=crs
    )

def locate_trees(
    point_set: PointSet,
    window_size: float = DetectionParams.window_size,
    min_height: float = DetectionParams.min_height,
    uniqueness: str = DetectionParams.uniqueness
) -> gpd.GeoDataFrame:
    """
    Detects treetops with a point-based local maximum filter.

    Steps:
        1. Ranks every point by its (z, x, y) key.
        2. Builds a KD-tree on planimetric coordinates.
        3. For every point at least `min_height` high, gathers the points within
           `window_size / 2` (boundary included) and keeps it when it holds the highest rank.

    Args:
        point_set (PointSet): Height-normalized points.
        window_size (float): Diameter of the search window.
        min_height (float): Minimum treetop height.
        uniqueness (str): Tree ID scheme, 'incremental' or 'bitmerge'.

    Returns:
        gpd.GeoDataFrame: One row per tree with 'treeID', 'Z' and a Point geometry, in the
            point set's CRS.
    """
    if window_size <= 0:
        raise ValueError(f"window_size must be positive, got {window_size}")
    if uniqueness not in _UNIQUENESS:
        raise ValueError(f"Unknown uniqueness '{uniqueness}'. Options: {list(_UNIQUENESS)}")

    crs = point_set.crs.to_wkt() if point_set.crs is not None else None
    candidates = np.flatnonzero(point_set.z >= min_height)
    if candidates.size == 0:
        return _empty_result(crs)

    rank = _key_rank(point_set)
    xy = np.column_stack([point_set.x, point_set.y])
    tree = cKDTree(xy)
    neighborhoods = tree.query_ball_point(xy[candidates], r=window_size / 2)

    is_top = np.fromiter(
        (rank[nb].max() == rank[i] for i, nb in zip(candidates, neighborhoods)),
        dtype=bool,
        count=candidates.size
    )
    tops = candidates[is_top]
    tops = tops[np.lexsort((point_set.y[tops], point_set.x[tops]))]

    x, y, z = point_set.x[tops], point_set.y[tops], point_set.z[tops]
    if uniqueness == "bitmerge":
        tree_ids = _bitmerge(x, y)
    else:
        tree_ids = np.arange(1, tops.size + 1, dtype=np.int64)

    log.debug(f"Located {tops.size} trees among {candidates.size} candidate points")
    return gpd.GeoDataFrame(
        {"treeID": tree_ids, "Z": z.astype(np.float64)},
        geometry=gpd.points_from_xy(x, y),
        crs=crs
    )
