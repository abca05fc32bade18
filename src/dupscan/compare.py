import logging
from typing import BinaryIO

from .models import CompareResult

logger: logging.Logger = logging.getLogger(__name__)

COMPARE_CHUNK_SIZE: int = 8192


def compare_files(a: BinaryIO, b: BinaryIO, chunk_size: int = COMPARE_CHUNK_SIZE) -> CompareResult:
    """
    Compare two open files byte by byte, from their current positions.

    Chunks are read in lockstep; the first chunk pair that differs in length
    or content ends the comparison. Files of different length are detected
    the same way, on the step where one of them runs out.
    """
    while True:
        try:
            chunk_a: bytes = a.read(chunk_size)
            chunk_b: bytes = b.read(chunk_size)
        except OSError as e:
            logger.warning("Read failed while comparing %s and %s: %s", _name(a), _name(b), e)
            return CompareResult.IO_ERROR

        if len(chunk_a) != len(chunk_b) or chunk_a != chunk_b:
            return CompareResult.DIFFERENT

        if not chunk_a:
            return CompareResult.SAME


def _name(fh: BinaryIO) -> str:
    return str(getattr(fh, "name", "<anonymous>"))
