# src/lascatalog/points/__init__.py
#
# Copyright (c) The lascatalog project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The points subpackage provides the in-memory point set and the algorithms that run on it:
structural validation, spatial indexing, surface rasterization and treetop detection.
"""

# Data structure
from .layer import (
    PointSet
)

# Validation
from .validate import (
    Severity,
    ValidationIssue,
    ValidationReport,
    validate
)

# Spatial index
from .index import (
    GridIndex,
    build_index
)

# Rasterization
from .rasterize import (
    SurfaceGrid,
    points_to_grid,
    NODATA_VAL
)

# Treetop detection
from .detect_treetop import (
    DetectionParams,
    locate_trees
)

__all__ = [
    # Data structure
    "PointSet",

    # Validation
    "Severity",
    "ValidationIssue",
    "ValidationReport",
    "validate",

    # Spatial index
    "GridIndex",
    "build_index",

    # Rasterization
    "SurfaceGrid",
    "points_to_grid",
    "NODATA_VAL",

    # Treetop detection
    "DetectionParams",
    "locate_trees",
]
