# src/lascatalog/catalog/partition.py

"""
This module splits a catalog into buffered chunks.

Every chunk has a core box and a buffer margin. Cores are half-open on their max-x and max-y
edges, unless no other core continues past that edge, in which case the edge is closed. With the
'tile' strategy this gives every point of the catalog exactly one owning core, including points
lying on the max-x or max-y edge of the catalog extent.
"""

import logging
import math
from bisect import bisect_left
from collections import defaultdict
from dataclasses import dataclass
from itertools import accumulate
from typing import Dict, List, Tuple

import numpy as np

from lascatalog.geometry import Box
from .layer import Catalog, CatalogOptions, FileDescriptor

log = logging.getLogger(__name__)

__all__ = [
    "Chunk",
    "partition",
    "tile_grid"
]

@dataclass(frozen=True)
class Chunk:
    """
    One unit of catalog work.

    Args:
        id (int): Position of the chunk in the partition.
        core (Box): Region whose results the chunk owns.
        buffer (float): Margin loaded around the core.
        files (Tuple[FileDescriptor, ...]): Files intersecting the buffered box.
        closed_right (bool): Points on core.xmax belong to this chunk.
        closed_top (bool): Points on core.ymax belong to this chunk.
    """
    id: int
    core: Box
    buffer: float
    files: Tuple[FileDescriptor, ...]
    closed_right: bool = True
    closed_top: bool = True

    @property
    def buffered(self) -> Box:
        return self.core.buffer(self.buffer)

    def in_core(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        """Boolean mask of the coordinates owned by this chunk's core."""
        core = self.core
        right = (x <= core.xmax) if self.closed_right else (x < core.xmax)
        top = (y <= core.ymax) if self.closed_top else (y < core.ymax)
        return (x >= core.xmin) & (y >= core.ymin) & right & top

    def __repr__(self):
        return f"<Chunk {self.id} core={self.core.bounds} buffer={self.buffer} files={len(self.files)}>"

def tile_grid(extent: Box, size: float, alignment: Tuple[float, float] = (0.0, 0.0)) -> List[Box]:
    """
    Regular square tiles covering an extent, aligned on `alignment`.

    Tiles are listed row by row from the bottom-left. Shared edges are computed from the same
    expression on both sides so neighbors meet exactly.
    """
    ax, ay = alignment
    x0 = ax + math.floor((extent.xmin - ax) / size) * size
    y0 = ay + math.floor((extent.ymin - ay) / size) * size
    ncols = max(1, math.ceil((extent.xmax - x0) / size))
    nrows = max(1, math.ceil((extent.ymax - y0) / size))
    # guard against rounding in the divisions above
    if x0 + ncols * size < extent.xmax:
        ncols += 1
    if y0 + nrows * size < extent.ymax:
        nrows += 1

    xs = [x0 + i * size for i in range(ncols + 1)]
    ys = [y0 + j * size for j in range(nrows + 1)]
    return [Box(xs[i], ys[j], xs[i + 1], ys[j + 1]) for j in range(nrows) for i in range(ncols)]

def _edge_buckets(intervals) -> Dict[float, tuple]:
    """Groups (edge, start, end, index) by edge, with starts sorted and a running max of ends."""
    grouped = defaultdict(list)
    for edge, start, end, i in intervals:
        grouped[edge].append((start, end, i))
    buckets = {}
    for edge, entries in grouped.items():
        entries.sort()
        starts = [start for start, _, _ in entries]
        reach = list(accumulate((end for _, end, _ in entries), max))
        buckets[edge] = (starts, reach, entries, {i for _, _, i in entries})
    return buckets

def _continued(buckets, edge: float, lo: float, hi: float, own: int) -> bool:
    """True if a core other than `own` starts on `edge` and overlaps the open interval (lo, hi)."""
    bucket = buckets.get(edge)
    if bucket is None:
        return False
    starts, reach, entries, members = bucket
    k = bisect_left(starts, hi)
    if k == 0 or reach[k - 1] <= lo:
        return False
    if own not in members:
        return True
    # zero-width core: it starts on its own max edge
    return any(end > lo and i != own for _, end, i in entries[:k])

def _closure_flags(cores: List[Box]) -> List[Tuple[bool, bool]]:
    """An edge is closed unless another core starts on it and overlaps along it."""
    by_xmin = _edge_buckets((c.xmin, c.ymin, c.ymax, i) for i, c in enumerate(cores))
    by_ymin = _edge_buckets((c.ymin, c.xmin, c.xmax, i) for i, c in enumerate(cores))
    return [
        (
            not _continued(by_xmin, core.xmax, core.ymin, core.ymax, i),
            not _continued(by_ymin, core.ymax, core.xmin, core.xmax, i)
        )
        for i, core in enumerate(cores)
    ]

def _cores(catalog: Catalog, options: CatalogOptions) -> List[Box]:
    if options.strategy == "file":
        return [d.bbox for d in catalog.files]
    if options.strategy == "regions":
        return list(options.regions)
    tiles = tile_grid(catalog.extent, options.chunk_size, options.alignment)
    kept = [t for t in tiles if catalog.files_intersecting(t)]
    log.debug(f"Kept {len(kept)} of {len(tiles)} tiles intersecting catalog files")
    return kept

def partition(catalog: Catalog, options: CatalogOptions = None) -> List[Chunk]:
    """
    Splits a catalog into chunks according to its options.

    Args:
        catalog (Catalog): Catalog to split.
        options (CatalogOptions): Overrides the catalog's own options.

    Returns:
        List[Chunk]: Chunks with their buffered file lists. Chunks whose buffered box touches no
            file are dropped.
    """
    options = options or catalog.options
    cores = _cores(catalog, options)
    flags = _closure_flags(cores)

    chunks = []
    for core, (closed_right, closed_top) in zip(cores, flags):
        files = tuple(catalog.files_intersecting(core.buffer(options.buffer)))
        if not files:
            log.warning(f"Region {core.bounds} does not intersect any catalog file; skipped")
            continue
        chunks.append(Chunk(len(chunks), core, options.buffer, files, closed_right, closed_top))

    log.info(f"Partitioned catalog into {len(chunks)} chunks ({options.strategy} strategy)")
    return chunks
