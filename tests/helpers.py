# tests/helpers.py

from typing import Sequence, Tuple

import numpy as np

from lascatalog.io.header import Header
from lascatalog.points.layer import PointSet

def make_point_set(
    n: int = 500,
    bounds: Tuple[float, float, float, float] = (0.0, 0.0, 100.0, 100.0),
    point_format: int = 1,
    seed: int = 0,
    crs="EPSG:32619"
) -> PointSet:
    """
    Builds a synthetic PointSet with coordinates on the 1 cm grid and consistent returns.
    """
    rng = np.random.default_rng(seed)
    xmin, ymin, xmax, ymax = bounds
    x = rng.integers(int(xmin * 100), int(xmax * 100) + 1, n) / 100
    y = rng.integers(int(ymin * 100), int(ymax * 100) + 1, n) / 100
    z = rng.integers(0, 3000, n) / 100

    nr = rng.integers(1, 4, n).astype(np.uint8)
    rn = np.minimum(rng.integers(1, 4, n), nr).astype(np.uint8)
    columns = {
        "x": x,
        "y": y,
        "z": z,
        "intensity": rng.integers(0, 4000, n).astype(np.uint16),
        "return_number": rn,
        "number_of_returns": nr,
        "classification": rng.choice([1, 2], n).astype(np.uint8),
        "point_source_id": np.ones(n, dtype=np.uint16),
    }
    version = (1, 4) if point_format >= 6 else (1, 2)
    header = Header(version=version, point_format=point_format, crs=crs)
    if point_format in (1, 3, 6, 7, 8):
        columns["gps_time"] = np.arange(n, dtype=np.float64) + 1000.0
    point_set = PointSet(header, columns)
    return PointSet(point_set.updated_header(), point_set.columns)

def make_forest(
    n_trees: int = 12,
    extent: float = 60.0,
    seed: int = 1,
    crs="EPSG:32619"
) -> PointSet:
    """Cone-shaped crowns over a flat ground, as a height-normalized PointSet."""
    rng = np.random.default_rng(seed)
    xs, ys, zs = [], [], []

    ground = rng.integers(0, int(extent * 100) + 1, (1500, 2)) / 100
    xs.append(ground[:, 0])
    ys.append(ground[:, 1])
    zs.append(np.zeros(len(ground)))

    centers = rng.uniform(4, extent - 4, (n_trees, 2))
    heights = rng.uniform(10, 25, n_trees)
    for (cx, cy), h in zip(centers, heights):
        radius = h / 5
        r = radius * np.sqrt(rng.uniform(0, 1, 150))
        theta = rng.uniform(0, 2 * np.pi, 150)
        px = np.round((cx + r * np.cos(theta)) * 100) / 100
        py = np.round((cy + r * np.sin(theta)) * 100) / 100
        pz = np.round((h * (1 - r / radius) + 1) * 100) / 100
        xs.append(px)
        ys.append(py)
        zs.append(pz)

    x, y, z = (np.concatenate(v) for v in (xs, ys, zs))
    header = Header(version=(1, 2), point_format=0, crs=crs)
    point_set = PointSet(header, {
        "x": np.clip(x, 0, extent),
        "y": np.clip(y, 0, extent),
        "z": z,
        "return_number": np.ones(len(x), dtype=np.uint8),
        "number_of_returns": np.ones(len(x), dtype=np.uint8),
    })
    return PointSet(point_set.updated_header(), point_set.columns)

def split_into_tiles(point_set: PointSet, size: float) -> Sequence[PointSet]:
    """Splits a PointSet into non-overlapping square tiles aligned on the origin."""
    col = np.floor(point_set.x / size).astype(int)
    row = np.floor(point_set.y / size).astype(int)
    tiles = []
    for key in sorted(set(zip(row.tolist(), col.tolist()))):
        mask = (row == key[0]) & (col == key[1])
        tiles.append(point_set[mask])
    return tiles

def sorted_xyz(point_set: PointSet) -> np.ndarray:
    """Coordinates as an (n, 3) array in lexicographic order, for order-independent comparison."""
    xyz = np.column_stack([point_set.x, point_set.y, point_set.z])
    return xyz[np.lexsort((xyz[:, 2], xyz[:, 1], xyz[:, 0]))]

def assert_same_points(current: PointSet, reference: PointSet, atol: float = 0.0):
    """Checks that two point sets hold the same coordinates, in any order."""
    assert len(current) == len(reference), \
        f"Point count mismatch: {len(current)} != {len(reference)}"
    np.testing.assert_allclose(sorted_xyz(current), sorted_xyz(reference), rtol=0, atol=atol)

def assert_same_trees(current, reference):
    """Checks that two treetop tables locate the same trees, in any order."""
    assert len(current) == len(reference), \
        f"Tree count mismatch: {len(current)} != {len(reference)}"
    key_a = np.column_stack([current.geometry.x, current.geometry.y, current["Z"]])
    key_b = np.column_stack([reference.geometry.x, reference.geometry.y, reference["Z"]])
    key_a = key_a[np.lexsort(key_a.T[::-1])]
    key_b = key_b[np.lexsort(key_b.T[::-1])]
    np.testing.assert_array_equal(key_a, key_b)
