# src/lascatalog/__init__.py
#
# Copyright (c) The lascatalog project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
lascatalog reads, validates, indexes and processes airborne laser scanning point clouds,
from single files up to catalogs of many files processed in buffered parallel chunks.
"""

__version__ = "0.1.0"

# io is imported first: its reader and writer build PointSets from lascatalog.points
from . import io
from . import points
from . import catalog

from .errors import (
    PointCloudError,
    FormatError,
    UnsupportedVersionError,
    CorruptStreamError,
    BoundingBoxMismatchError,
    StaleIndexError,
    StreamConsumedError,
    FilterSyntaxError,
    ChunkProcessingError,
    ProcessingCancelled
)
from .geometry import (
    Box,
    Circle
)
from .io import (
    Header,
    PointRecord,
    open_las,
    read_las,
    write_las
)
from .points import (
    PointSet,
    GridIndex,
    validate
)
from .catalog import (
    Catalog,
    CatalogOptions,
    DispatchConfig,
    AggregationType,
    dispatch
)

__all__ = [
    "__version__",

    # Errors
    "PointCloudError",
    "FormatError",
    "UnsupportedVersionError",
    "CorruptStreamError",
    "BoundingBoxMismatchError",
    "StaleIndexError",
    "StreamConsumedError",
    "FilterSyntaxError",
    "ChunkProcessingError",
    "ProcessingCancelled",

    # Geometry
    "Box",
    "Circle",

    # I/O
    "Header",
    "PointRecord",
    "open_las",
    "read_las",
    "write_las",

    # Points
    "PointSet",
    "GridIndex",
    "validate",

    # Catalog
    "Catalog",
    "CatalogOptions",
    "DispatchConfig",
    "AggregationType",
    "dispatch",
]
