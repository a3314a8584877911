# tests/conftest.py

import pytest

from lascatalog.catalog.layer import Catalog, CatalogOptions
from lascatalog.io.writer import write_las

from helpers import make_forest, make_point_set, split_into_tiles

@pytest.fixture
def point_set():
    """A 500-point format 1 PointSet over a 100 m square, with a CRS."""
    return make_point_set()

@pytest.fixture
def las_path(tmp_path, point_set):
    """The `point_set` fixture written as a raw LAS 1.2 file."""
    return write_las(tmp_path / "points.las", point_set)

@pytest.fixture
def compressed_las_path(tmp_path, point_set):
    """The `point_set` fixture written with zlib-compressed blocks of 64 points."""
    return write_las(tmp_path / "points_zlib.las", point_set, compressor="zlib", chunk_size=64)

@pytest.fixture
def forest():
    """Height-normalized forest plot, 60 m square, 12 cone-shaped trees."""
    return make_forest()

@pytest.fixture
def tile_dir(tmp_path, forest):
    """
    Fixture: Writes the forest as 30 m tiles (plus edge slivers) into a folder.
    Returns the folder path.
    """
    folder = tmp_path / "tiles"
    folder.mkdir()
    for i, tile in enumerate(split_into_tiles(forest, 30.0)):
        write_las(folder / f"tile_{i:02d}.las", tile)
    return folder

@pytest.fixture
def catalog_factory(tile_dir):
    """Returns a function building a Catalog over `tile_dir` with the given options."""
    def _create(**option_kwargs):
        return Catalog.from_directory(tile_dir, options=CatalogOptions(**option_kwargs))
    return _create
