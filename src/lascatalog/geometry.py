# src/lascatalog/geometry.py

"""
This module defines the query regions shared by the spatial index and the catalog engine:
axis-aligned boxes, circles and shapely polygons.
"""

import logging
import math
from dataclasses import dataclass
from typing import Sequence, Tuple, Union

import numpy as np
import shapely
from shapely.geometry import box as shapely_box, Point
from shapely.geometry.base import BaseGeometry

log = logging.getLogger(__name__)

__all__ = [
    "Box",
    "Circle",
    "Region",
    "as_region",
    "region_bounds",
    "region_contains"
]

@dataclass(frozen=True)
class Box:
    """
    Axis-aligned rectangle, inclusive on every side.

    Args:
        xmin, ymin, xmax, ymax (float): Corner coordinates.
    """
    xmin: float
    ymin: float
    xmax: float
    ymax: float

    def __post_init__(self):
        if self.xmin > self.xmax or self.ymin > self.ymax:
            raise ValueError(f"Invalid box: ({self.xmin}, {self.ymin}, {self.xmax}, {self.ymax})")

    @classmethod
    def from_bounds(cls, bounds: Sequence[float]) -> "Box":
        xmin, ymin, xmax, ymax = (float(v) for v in bounds)
        return cls(xmin, ymin, xmax, ymax)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return (self.xmin, self.ymin, self.xmax, self.ymax)

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    @property
    def height(self) -> float:
        return self.ymax - self.ymin

    @property
    def area(self) -> float:
        return self.width * self.height

    def buffer(self, margin: float) -> "Box":
        return Box(self.xmin - margin, self.ymin - margin, self.xmax + margin, self.ymax + margin)

    def intersects(self, other: "Box") -> bool:
        return not (
            other.xmin > self.xmax or other.xmax < self.xmin
            or other.ymin > self.ymax or other.ymax < self.ymin
        )

    def union(self, other: "Box") -> "Box":
        return Box(
            min(self.xmin, other.xmin), min(self.ymin, other.ymin),
            max(self.xmax, other.xmax), max(self.ymax, other.ymax)
        )

    def contains(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        return (x >= self.xmin) & (x <= self.xmax) & (y >= self.ymin) & (y <= self.ymax)

    def to_shapely(self) -> BaseGeometry:
        return shapely_box(self.xmin, self.ymin, self.xmax, self.ymax)

@dataclass(frozen=True)
class Circle:
    """Disc of given radius; points on the circumference are inside."""
    x: float
    y: float
    radius: float

    def __post_init__(self):
        if self.radius < 0 or not math.isfinite(self.radius):
            raise ValueError(f"Circle radius must be finite and non-negative, got {self.radius}")

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        r = self.radius
        return (self.x - r, self.y - r, self.x + r, self.y + r)

    def contains(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        return (x - self.x) ** 2 + (y - self.y) ** 2 <= self.radius ** 2

    def to_shapely(self) -> BaseGeometry:
        return Point(self.x, self.y).buffer(self.radius)

Region = Union[Box, Circle, BaseGeometry]

def as_region(region) -> Region:
    """Normalizes a 4-tuple of bounds into a Box; other supported regions pass through."""
    if isinstance(region, (Box, Circle, BaseGeometry)):
        return region
    if isinstance(region, (tuple, list)) and len(region) == 4:
        return Box.from_bounds(region)
    raise TypeError(f"Unsupported region type: {type(region)}")

def region_bounds(region: Region) -> Box:
    region = as_region(region)
    if isinstance(region, Box):
        return region
    return Box.from_bounds(region.bounds)

def region_contains(region: Region, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """
    Exact membership test. Boundaries count as inside for every region type.

    Args:
        region (Region): Box, Circle or shapely polygon.
        x, y (np.ndarray): Point coordinates.

    Returns:
        np.ndarray: Boolean mask.
    """
    region = as_region(region)
    if isinstance(region, (Box, Circle)):
        return region.contains(x, y)
    if region.is_empty:
        return np.zeros(len(x), dtype=bool)
    shapely.prepare(region)
    return shapely.intersects_xy(region, x, y)
