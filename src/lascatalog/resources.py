# src/lascatalog/resources.py

"""
This module performs static analysis of point cloud files and system hardware.

It checks two aspects before a catalog run:
- Memory safety of decoding a chunk into RAM (Memory Estimation)
- Number of worker threads the machine can sustain (Worker Count)
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import psutil

from lascatalog.io.fields import FIELD_DTYPES, parse_select
from lascatalog.io.header import Header

log = logging.getLogger(__name__)

__all__ = [
    "MemoryEstimate",
    "decoded_size",
    "estimate_memory",
    "default_workers"
]

DEFAULT_SAFETY_FACTOR = 3.0
MIN_FREE_GB = 1.0
MAX_DEFAULT_WORKERS = 8

@dataclass(frozen=True)
class MemoryEstimate:
    """
    Estimation of memory requirements and safety for decoding points.

    Args:
        total_required_bytes: Bytes required to hold the decoded columns (with overhead)
        available_system_bytes: Currently available system memory in bytes
        is_safe: Boolean indicating if loading is considered safe
        reason: Explanation for the safety assessment (e.g. "Req: 1.20GB, Avail: 8.00GB")
    """
    total_required_bytes: int
    available_system_bytes: int
    is_safe: bool
    reason: str

def decoded_size(header: Header, select: Optional[str] = None) -> int:
    """Bytes taken by the decoded columns of every point of a file."""
    fields = parse_select(select, header.point_format)
    bytes_per_point = sum(FIELD_DTYPES[name].itemsize for name in fields)
    return header.point_count * bytes_per_point

def estimate_memory(
    descriptors: Sequence,
    select: Optional[str] = None,
    fractions: Optional[Sequence[float]] = None,
    safety_factor: float = DEFAULT_SAFETY_FACTOR,
    min_free_gb: float = MIN_FREE_GB
) -> MemoryEstimate:
    """
    Checks if the decoded points of a set of files fit in RAM.

    Args:
        descriptors: Objects exposing a `header` (e.g. catalog FileDescriptors).
        select: Field-selection string applied when decoding.
        fractions: Share of each file expected to be loaded (e.g. chunk area over file area).
            Defaults to whole files.
        safety_factor: Multiplier to account for overhead (default 3.0)
        min_free_gb: Minimum free GB to leave available after loading (default 1.0)

    Returns:
        MemoryEstimate: Contains total required bytes, available bytes, safety boolean, and reason.
    """
    if fractions is None:
        fractions = [1.0] * len(descriptors)
    if len(fractions) != len(descriptors):
        raise ValueError("fractions must have one entry per descriptor")

    raw_bytes = int(sum(
        decoded_size(d.header, select) * min(1.0, max(0.0, f))
        for d, f in zip(descriptors, fractions)
    ))
    total_required = int(raw_bytes * safety_factor)

    mem = psutil.virtual_memory()
    min_free_bytes = int(min_free_gb * (1024**3))
    is_safe = (total_required + min_free_bytes) <= mem.available

    reason = f"Req: {total_required/1e9:.2f}GB, Avail: {mem.available/1e9:.2f}GB"

    return MemoryEstimate(total_required, mem.available, is_safe, reason)

def default_workers() -> int:
    """Worker count for catalog runs: physical cores, capped at MAX_DEFAULT_WORKERS."""
    cores = psutil.cpu_count(logical=False) or psutil.cpu_count() or 1
    return max(1, min(cores, MAX_DEFAULT_WORKERS))
