# src/lascatalog/io/__init__.py
#
# Copyright (c) The lascatalog project contributors
# This software is distributed under the Apache-2.0 license.
# See the NOTICE file for more information

"""
The io subpackage provides the point record codec and the file container reader/writer,
including read-time field selection and filtering, pluggable compression and laspy interop.
"""

# Record schema and codec
from .fields import (
    FieldMask,
    PointRecord,
    SUPPORTED_FORMATS,
    format_fields,
    parse_select
)
from .codec import (
    decode,
    decode_points,
    encode,
    encode_points,
    round_half_away
)
from .compression import (
    register_compressor,
    available_compressors
)

# Read-time filtering
from .filters import (
    PointFilter,
    parse_filter,
    apply_filter
)

# Container I/O
from .header import (
    Header,
    VariableLengthRecord
)
from .reader import (
    LasReader,
    open_las,
    read_las,
    read_header
)
from .writer import (
    LasWriter,
    write_las
)
from .interop import (
    from_laspy,
    to_laspy,
    read_with_laspy
)

__all__ = [
    # Record schema and codec
    "FieldMask",
    "PointRecord",
    "SUPPORTED_FORMATS",
    "format_fields",
    "parse_select",
    "decode",
    "decode_points",
    "encode",
    "encode_points",
    "round_half_away",
    "register_compressor",
    "available_compressors",

    # Read-time filtering
    "PointFilter",
    "parse_filter",
    "apply_filter",

    # Container I/O
    "Header",
    "VariableLengthRecord",
    "LasReader",
    "open_las",
    "read_las",
    "read_header",
    "LasWriter",
    "write_las",
    "from_laspy",
    "to_laspy",
    "read_with_laspy",
]
