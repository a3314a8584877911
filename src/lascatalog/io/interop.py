# src/lascatalog/io/interop.py

"""
This module converts between laspy objects and lascatalog point sets.

It lets LAS/LAZ files of any version that laspy understands (including LASzip-compressed data)
enter the pipeline, and lets point sets be handed to laspy-based tools.
"""

from pathlib import Path
from typing import Union
import logging

import laspy
import numpy as np
import pyproj
from rasterio.crs import CRS

from lascatalog.points.layer import PointSet
from .codec import round_half_away
from .fields import format_fields
from .header import Header

log = logging.getLogger(__name__)

__all__ = [
    "from_laspy",
    "to_laspy",
    "read_with_laspy"
]

# Waveform formats are read without their waveform packets.
_FORMAT_FALLBACK = {4: 1, 5: 3, 9: 6, 10: 8}

_DIMENSIONS = {
    "intensity": "intensity",
    "return_number": "return_number",
    "number_of_returns": "number_of_returns",
    "scan_direction_flag": "scan_direction_flag",
    "edge_of_flight_line": "edge_of_flight_line",
    "classification": "classification",
    "synthetic": "synthetic",
    "key_point": "key_point",
    "withheld": "withheld",
    "overlap": "overlap",
    "scanner_channel": "scanner_channel",
    "user_data": "user_data",
    "point_source_id": "point_source_id",
    "gps_time": "gps_time",
    "red": "red",
    "green": "green",
    "blue": "blue",
    "nir": "nir",
}

def from_laspy(las: laspy.LasData) -> PointSet:
    """
    Converts a laspy LasData object into a PointSet.

    Args:
        las (laspy.LasData): Data as returned by laspy.read.

    Returns:
        PointSet: Points and header in the lascatalog model.
    """
    src_header = las.header
    point_format = src_header.point_format.id
    point_format = _FORMAT_FALLBACK.get(point_format, point_format)
    version = (src_header.version.major, src_header.version.minor)
    if point_format >= 6:
        version = (1, 4)

    crs = None
    try:
        parsed = src_header.parse_crs()
    except Exception as e:
        log.warning(f"laspy could not parse the CRS: {e}")
        parsed = None
    if parsed is not None:
        crs = CRS.from_wkt(parsed.to_wkt())

    header = Header(
        version=version,
        point_format=point_format,
        scales=tuple(float(s) for s in src_header.scales),
        offsets=tuple(float(o) for o in src_header.offsets),
        mins=tuple(float(v) for v in src_header.mins),
        maxs=tuple(float(v) for v in src_header.maxs),
        point_count=len(las.points),
        crs=crs,
        system_identifier=str(src_header.system_identifier),
        generating_software=str(src_header.generating_software)
    )

    available = set(las.point_format.dimension_names)
    columns = {
        "x": np.array(las.x, dtype=np.float64),
        "y": np.array(las.y, dtype=np.float64),
        "z": np.array(las.z, dtype=np.float64),
    }
    for name in format_fields(point_format):
        if name in columns:
            continue
        if name == "scan_angle":
            if "scan_angle_rank" in available:
                columns[name] = np.array(las["scan_angle_rank"], dtype=np.float32)
            elif "scan_angle" in available:
                columns[name] = np.array(las["scan_angle"], dtype=np.float64) * 0.006
            continue
        dim = _DIMENSIONS[name]
        if dim in available:
            columns[name] = np.array(las[dim])

    point_set = PointSet(header, columns)
    log.debug(f"Converted laspy data with {len(point_set)} points (format {point_format})")
    return point_set

def to_laspy(point_set: PointSet) -> laspy.LasData:
    """
    Converts a PointSet into a laspy LasData object.

    Args:
        point_set (PointSet): Points to convert.

    Returns:
        laspy.LasData: Data ready for laspy.LasData.write.
    """
    header = point_set.header
    las_header = laspy.LasHeader(
        point_format=header.point_format,
        version=f"{header.version[0]}.{header.version[1]}"
    )
    las_header.scales = np.array(header.scales)
    las_header.offsets = np.array(header.offsets)
    if header.crs is not None:
        las_header.add_crs(pyproj.CRS.from_wkt(header.crs.to_wkt()))

    las = laspy.LasData(las_header)
    las.x = point_set.x
    las.y = point_set.y
    las.z = point_set.z

    available = set(las.point_format.dimension_names)
    for name in point_set.fields:
        values = point_set[name]
        if name in ("x", "y", "z"):
            continue
        if name == "scan_angle":
            if "scan_angle_rank" in available:
                las["scan_angle_rank"] = round_half_away(values).astype(np.int8)
            else:
                las["scan_angle"] = round_half_away(values / 0.006).astype(np.int16)
            continue
        dim = _DIMENSIONS[name]
        if dim in available:
            las[dim] = values
    las.update_header()
    return las

def read_with_laspy(path: Union[str, Path]) -> PointSet:
    """Reads any LAS/LAZ file supported by laspy into a PointSet."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Point cloud file not found: {path}")
    return from_laspy(laspy.read(path))
