# src/lascatalog/io/compression.py

"""
This module holds the registry of payload compressors.

The container treats compression as an external collaborator: a pair of functions turning a block
of raw point records into bytes and back. The codec name selected by the writer is stored in the
file so the reader can look up the matching decompressor.
"""

import logging
import lzma
import zlib
from dataclasses import dataclass
from typing import Callable, Dict

from lascatalog.errors import FormatError

log = logging.getLogger(__name__)

__all__ = [
    "Compressor",
    "register_compressor",
    "get_compressor",
    "available_compressors"
]

@dataclass(frozen=True)
class Compressor:
    """
    Named pair of block compression functions.

    Args:
        name: Identifier written to the file (ASCII).
        compress: Function mapping raw record bytes to compressed bytes.
        decompress: Inverse of compress.
    """
    name: str
    compress: Callable[[bytes], bytes]
    decompress: Callable[[bytes], bytes]

_REGISTRY: Dict[str, Compressor] = {}

def register_compressor(
    name: str,
    compress: Callable[[bytes], bytes],
    decompress: Callable[[bytes], bytes],
    replace: bool = False
) -> Compressor:
    """
    Makes a compressor available to readers and writers under `name`.

    Raises:
        ValueError: If the name is already taken and replace is False.
    """
    if not name or not name.isascii():
        raise ValueError(f"Compressor name must be non-empty ASCII, got {name!r}")
    if name in _REGISTRY and not replace:
        raise ValueError(f"Compressor '{name}' is already registered")
    compressor = Compressor(name, compress, decompress)
    _REGISTRY[name] = compressor
    log.debug(f"Registered compressor '{name}'")
    return compressor

def get_compressor(name: str) -> Compressor:
    try:
        return _REGISTRY[name]
    except KeyError:
        raise FormatError(
            f"No compressor registered under '{name}'. Available: {sorted(_REGISTRY)}"
        ) from None

def available_compressors():
    return sorted(_REGISTRY)

register_compressor("zlib", lambda data: zlib.compress(data, 6), zlib.decompress)
register_compressor("lzma", lzma.compress, lzma.decompress)
