# src/lascatalog/errors.py

"""
This module defines the exception hierarchy shared by every lascatalog subpackage.

Codec and container errors propagate to the direct caller. The catalog engine catches
them per chunk and records them as ChunkProcessingError instead of aborting a run.
"""

from typing import Optional

__all__ = [
    "PointCloudError",
    "FormatError",
    "UnsupportedVersionError",
    "CorruptStreamError",
    "BoundingBoxMismatchError",
    "StaleIndexError",
    "StreamConsumedError",
    "FilterSyntaxError",
    "ChunkProcessingError",
    "ProcessingCancelled"
]

class PointCloudError(Exception):
    """Base class for all lascatalog errors."""

class FormatError(PointCloudError):
    """Malformed header or point record, or an unrecognized point format."""

class UnsupportedVersionError(FormatError):
    """File version or point format that this package cannot decode."""

class CorruptStreamError(PointCloudError):
    """Declared point count disagrees with the length of the point payload."""

class BoundingBoxMismatchError(PointCloudError):
    """Written coordinates fall outside the bounding box declared in the header."""

class StaleIndexError(PointCloudError):
    """A spatial index was queried after its point set was modified."""

class StreamConsumedError(PointCloudError):
    """A filtered point stream was iterated a second time."""

class FilterSyntaxError(ValueError):
    """Unknown flag or wrong number of arguments in a filter string."""

class ProcessingCancelled(PointCloudError):
    """Raised at I/O boundaries once a catalog run has been cancelled."""

class ChunkProcessingError(PointCloudError):
    """
    Failure of a single chunk during a catalog run.

    Args:
        chunk_id (int): Identifier of the failed chunk.
        message (str): Short description of the failure.
        stage (str): Either 'load' or 'process'.
    """
    def __init__(self, chunk_id: int, message: str, stage: str = "process"):
        super().__init__(f"Chunk {chunk_id} failed during {stage}: {message}")
        self.chunk_id = chunk_id
        self.stage = stage

    @property
    def cause(self) -> Optional[BaseException]:
        return self.__cause__
