# src/lascatalog/catalog/__init__.py
#
# Copyright (c) The lascatalog project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The catalog subpackage processes collections of point cloud files as one dataset:
header-only discovery, buffered spatial chunking, parallel dispatch and result merging.
"""

# Data structure
from .layer import (
    FileDescriptor,
    CatalogOptions,
    Catalog,
    clip_region
)

# Chunking
from .partition import (
    Chunk,
    partition
)

# Execution
from .engine import (
    AggregationType,
    DispatchConfig,
    RunSummary,
    CatalogResult,
    dispatch,
    process
)
from .merge import (
    merge_results
)

__all__ = [
    # Data structure
    "FileDescriptor",
    "CatalogOptions",
    "Catalog",
    "clip_region",

    # Chunking
    "Chunk",
    "partition",

    # Execution
    "AggregationType",
    "DispatchConfig",
    "RunSummary",
    "CatalogResult",
    "dispatch",
    "process",
    "merge_results",
]
