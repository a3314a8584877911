# src/lascatalog/catalog/merge.py

"""
This module combines per-chunk results into a single output.

Spatial results are clipped to the core of the chunk that produced them before being combined,
so objects detected in a buffer are kept only by the chunk that owns them.
"""

import logging
from itertools import chain
from typing import Any, List, Sequence, Tuple

import geopandas as gpd
import pandas as pd

from lascatalog.points.layer import PointSet
from .partition import Chunk

log = logging.getLogger(__name__)

__all__ = [
    "clip_to_core",
    "merge_results"
]

def clip_to_core(result: Any, chunk: Chunk) -> Any:
    """
    Removes the parts of a chunk result lying outside the chunk core.

    PointSets are clipped by coordinates; GeoDataFrames by the representative point of each
    geometry. Any other value is returned unchanged.
    """
    if isinstance(result, PointSet):
        return result[chunk.in_core(result.x, result.y)]
    if isinstance(result, gpd.GeoDataFrame):
        if result.empty:
            return result
        anchors = result.geometry.representative_point()
        return result[chunk.in_core(anchors.x.to_numpy(), anchors.y.to_numpy())]
    return result

def merge_results(results: Sequence[Tuple[Chunk, Any]]) -> Any:
    """
    Merges chunk results in chunk order.

    Args:
        results: (chunk, result) pairs. None results must already be removed.

    Returns:
        PointSet for point sets, GeoDataFrame for GeoDataFrames, DataFrame for DataFrames,
        a flat list for lists, otherwise the list of results. None when there is nothing to merge.
    """
    if not results:
        return None
    values = [value for _, value in results]

    if all(isinstance(v, PointSet) for v in values):
        clipped = [clip_to_core(value, chunk) for chunk, value in results]
        return PointSet.concat(clipped)

    if all(isinstance(v, gpd.GeoDataFrame) for v in values):
        clipped = [clip_to_core(value, chunk) for chunk, value in results]
        merged = pd.concat(clipped, ignore_index=True)
        return gpd.GeoDataFrame(merged, geometry=clipped[0].geometry.name, crs=clipped[0].crs)

    if all(isinstance(v, pd.DataFrame) for v in values):
        return pd.concat(values, ignore_index=True)

    if all(isinstance(v, list) for v in values):
        return list(chain.from_iterable(values))

    kinds = {type(v).__name__ for v in values}
    if len(kinds) > 1:
        log.warning(f"Chunk results have mixed types {sorted(kinds)}; collecting them as a list")
    collected: List[Any] = values
    return collected
