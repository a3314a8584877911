# src/lascatalog/catalog/engine.py

"""
This module manages catalog processing.

It serves as the core dispatch mechanism: every chunk of a partitioned catalog is loaded with its
buffer, handed to a user function on a worker thread, and the results are merged once all
workers have joined. A failing chunk is recorded, never fatal to the run.
"""

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from tqdm import tqdm

from lascatalog.errors import ChunkProcessingError, ProcessingCancelled
from lascatalog.points.layer import PointSet
from lascatalog.resources import default_workers, estimate_memory
from .layer import Catalog
from .merge import merge_results
from .partition import Chunk, partition

log = logging.getLogger(__name__)

__all__ = [
    "AggregationType",
    "DispatchConfig",
    "RunSummary",
    "CatalogResult",
    "dispatch",
    "process"
]

class AggregationType(Enum):
    """Strategies for combining results from chunked processing.

    Options:
        MERGE: Clip spatial results to chunk cores and combine them into one object.
        COLLECT: Return a dict of results keyed by chunk id.
        REDUCE: Accumulate results using a reducer function (e.g. sum, max).
        NONE: Discard individual results (useful for side-effect functions).
    """
    MERGE = "merge"
    COLLECT = "collect"
    REDUCE = "reduce"
    NONE = "none"

class DispatchConfig:
    """Configuration object for the catalog engine.

    Args:
        workers: Maximum number of chunks processed concurrently. Defaults to default_workers().
        aggregation: AggregationType for combining results. Default=MERGE.
        reducer: Function (acc, result) -> acc for REDUCE aggregation.
        progress: Show a tqdm progress bar.
        cancel_event: Event that stops the run when set. A private event is used otherwise.
        check_memory: Warn when a chunk is projected not to fit in available memory.
    """
    def __init__(
        self,
        workers: Optional[int] = None,
        aggregation: AggregationType = AggregationType.MERGE,
        reducer: Optional[Callable[[Any, Any], Any]] = None,
        progress: bool = False,
        cancel_event: Optional[threading.Event] = None,
        check_memory: bool = True
    ):
        if workers is not None and workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")
        if aggregation == AggregationType.REDUCE and reducer is None:
            raise ValueError("REDUCE requires 'reducer' function.")
        self.workers = workers or default_workers()
        self.aggregation = AggregationType(aggregation)
        self.reducer = reducer
        self.progress = progress
        self.cancel_event = cancel_event or threading.Event()
        self.check_memory = check_memory

@dataclass
class RunSummary:
    """
    Outcome of every chunk of a run.

    Args:
        succeeded: Ids of chunks processed without error.
        failed: Ids of chunks whose loading or processing raised.
        cancelled: Ids of chunks not processed because the run was cancelled.
        failures: Error recorded for each failed chunk.
    """
    succeeded: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    cancelled: List[int] = field(default_factory=list)
    failures: Dict[int, ChunkProcessingError] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed) + len(self.cancelled)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.cancelled

    def raise_for_failures(self):
        """Raises the error of the first failed chunk, if any."""
        if self.failures:
            raise self.failures[min(self.failures)]

    def __str__(self) -> str:
        return (
            f"{len(self.succeeded)} succeeded, {len(self.failed)} failed, "
            f"{len(self.cancelled)} cancelled of {self.total} chunks"
        )

@dataclass
class CatalogResult:
    """Merged output of a run and its per-chunk summary. Output is None for cancelled runs."""
    output: Any
    summary: RunSummary

    @property
    def cancelled(self) -> bool:
        return bool(self.summary.cancelled)

def _check_chunk_memory(catalog: Catalog, chunk: Chunk):
    box = chunk.buffered
    fractions = []
    for descriptor in chunk.files:
        bbox = descriptor.bbox
        if bbox.area == 0:
            fractions.append(1.0)
            continue
        overlap_w = max(0.0, min(bbox.xmax, box.xmax) - max(bbox.xmin, box.xmin))
        overlap_h = max(0.0, min(bbox.ymax, box.ymax) - max(bbox.ymin, box.ymin))
        fractions.append(overlap_w * overlap_h / bbox.area)
    estimate = estimate_memory(chunk.files, catalog.options.select, fractions)
    if not estimate.is_safe:
        log.warning(f"Chunk {chunk.id} may not fit in memory. {estimate.reason}")

def _run_chunk(
    catalog: Catalog,
    chunk: Chunk,
    func: Callable,
    static_kwargs: Dict,
    config: DispatchConfig
) -> Any:
    """Loads one chunk and applies the user function. Errors come out as ChunkProcessingError."""
    cancel_event = config.cancel_event
    if cancel_event.is_set():
        raise ProcessingCancelled(f"Chunk {chunk.id} cancelled before loading")

    try:
        if config.check_memory:
            _check_chunk_memory(catalog, chunk)
        point_set = catalog.read_box(chunk.buffered, files=chunk.files, cancel_event=cancel_event)
    except ProcessingCancelled:
        raise
    except Exception as e:
        raise ChunkProcessingError(chunk.id, f"{type(e).__name__}: {e}", stage="load") from e

    if cancel_event.is_set():
        raise ProcessingCancelled(f"Chunk {chunk.id} cancelled before processing")
    log.debug(f"Processing chunk {chunk.id}: {len(point_set)} points")

    try:
        return func(point_set, chunk, **static_kwargs)
    except ProcessingCancelled:
        raise
    except Exception as e:
        raise ChunkProcessingError(chunk.id, f"{type(e).__name__}: {e}", stage="process") from e

def _aggregate(results: Dict[int, Any], chunks_by_id: Dict[int, Chunk], config: DispatchConfig) -> Any:
    order = sorted(results)
    if config.aggregation == AggregationType.MERGE:
        return merge_results([(chunks_by_id[i], results[i]) for i in order])
    if config.aggregation == AggregationType.COLLECT:
        return {i: results[i] for i in order}
    if config.aggregation == AggregationType.REDUCE:
        acc = None
        for i in order:
            acc = results[i] if acc is None else config.reducer(acc, results[i])
        return acc
    return None

def dispatch(
    catalog: Catalog,
    func: Callable[..., Any],
    config: Optional[DispatchConfig] = None,
    static_kwargs: Optional[Dict] = None
) -> CatalogResult:
    """
    Execute a function over every chunk of a catalog.

    Args:
        catalog: Catalog to process; its options define chunking, buffer, select and filter.
        func: Called as func(point_set, chunk, **static_kwargs). Returning None means
            "nothing for this chunk".
        config: Execution configuration (workers, aggregation, progress, cancellation).
        static_kwargs: Keyword arguments to pass to func (passed through).

    Returns:
        CatalogResult: Aggregated output and the RunSummary. Failed chunks are recorded in the
            summary, never raised; call summary.raise_for_failures() to make them fatal.
    """
    config = config or DispatchConfig()
    static_kwargs = static_kwargs or {}
    cancel_event = config.cancel_event

    chunks = partition(catalog)
    chunks_by_id = {chunk.id: chunk for chunk in chunks}
    summary = RunSummary()
    results: Dict[int, Any] = {}
    name = getattr(func, "__name__", repr(func))
    log.info(f"Engine dispatching {name} over {len(chunks)} chunks with {config.workers} workers")

    chunk_iter = iter(chunks)
    pending: Dict[Future, Chunk] = {}

    with ThreadPoolExecutor(max_workers=config.workers) as executor, \
            tqdm(total=len(chunks), desc="Processing chunks", unit="chunk", disable=not config.progress) as pbar:

        def submit_next() -> bool:
            # at most `workers` chunks in flight; nothing new once cancelled
            if cancel_event.is_set():
                return False
            chunk = next(chunk_iter, None)
            if chunk is None:
                return False
            pending[executor.submit(_run_chunk, catalog, chunk, func, static_kwargs, config)] = chunk
            return True

        for _ in range(config.workers):
            if not submit_next():
                break

        while pending:
            done, _ = wait(pending, return_when=FIRST_COMPLETED)
            for future in done:
                chunk = pending.pop(future)
                try:
                    result = future.result()
                except ProcessingCancelled:
                    summary.cancelled.append(chunk.id)
                except ChunkProcessingError as e:
                    log.error(str(e))
                    summary.failed.append(chunk.id)
                    summary.failures[chunk.id] = e
                else:
                    summary.succeeded.append(chunk.id)
                    if result is not None:
                        results[chunk.id] = result
                pbar.update(1)
                submit_next()

    summary.cancelled.extend(chunk.id for chunk in chunk_iter)
    for ids in (summary.succeeded, summary.failed, summary.cancelled):
        ids.sort()

    if cancel_event.is_set():
        log.warning(f"Catalog run cancelled: {summary}")
        return CatalogResult(output=None, summary=summary)

    if summary.failed:
        log.warning(f"Catalog run finished with failures: {summary}")
    else:
        log.info(f"Catalog run finished: {summary}")
    return CatalogResult(output=_aggregate(results, chunks_by_id, config), summary=summary)

def process(
    catalog: Catalog,
    func: Callable[[PointSet, Chunk], Any],
    **config_kwargs
) -> CatalogResult:
    """Shortcut for dispatch(catalog, func, DispatchConfig(**config_kwargs))."""
    return dispatch(catalog, func, DispatchConfig(**config_kwargs))
