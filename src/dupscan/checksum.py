import hashlib
import os
from typing import BinaryIO

from .errors import AllocationFailureError, DigestIOError, UnsupportedAlgorithmError
from .models import HashAlgorithm


def digest_size(algorithm: HashAlgorithm) -> int:
    """Width in bytes of the digest produced by `algorithm`."""
    return hashlib.new(HashAlgorithm(algorithm).value).digest_size


def compute_digest(fh: BinaryIO | None, algorithm: HashAlgorithm | str, buffer_size: int) -> bytes:
    """
    Stream an open file through `algorithm` and return the raw digest.

    The file is read in chunks of `buffer_size` bytes from its current
    position (callers pass a freshly opened handle). Once the stream is
    exhausted, the number of bytes read is checked against the size
    reported by `fstat`, so a file that was truncated or grown while being
    read is rejected instead of producing a digest of partial content.

    The read cursor is left at end-of-stream; seek back to 0 before
    reusing the handle.

    Raises
    ------
    UnsupportedAlgorithmError
        Unknown algorithm, non-positive buffer size or missing handle.
    AllocationFailureError
        The hash object could not be constructed.
    DigestIOError
        A read or stat failed, or the size changed during the read.
    """
    if fh is None or buffer_size <= 0:
        raise UnsupportedAlgorithmError(f"Invalid handle or buffer size ({buffer_size})")

    try:
        selected: HashAlgorithm = HashAlgorithm(algorithm)
    except ValueError:
        raise UnsupportedAlgorithmError(f"Unsupported hash algorithm: {algorithm!r}")

    try:
        hasher = hashlib.new(selected.value)
    except (ValueError, MemoryError) as e:
        raise AllocationFailureError(f"Cannot construct {selected.value} hasher: {e}")

    total: int = 0
    try:
        for chunk in iter(lambda: fh.read(buffer_size), b""):
            hasher.update(chunk)
            total += len(chunk)

        size: int = os.fstat(fh.fileno()).st_size
    except OSError as e:
        raise DigestIOError(f"Read failed: {e}") from e

    if total != size:
        raise DigestIOError(f"Read {total} bytes but file size is {size}")

    return hasher.digest()
