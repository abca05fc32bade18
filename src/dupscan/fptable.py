import logging
import threading
from typing import BinaryIO

from .compare import COMPARE_CHUNK_SIZE, compare_files
from .errors import TableStateError
from .models import CompareResult, InsertResult, Representative

logger: logging.Logger = logging.getLogger(__name__)


class FingerprintTable:
    """
    Maps digest keys to buckets of representatives.

    A digest only selects a bucket; membership of a content class is decided
    by comparing bytes against each representative in the bucket. All
    lookups, comparisons and mutations run under one lock, so a handle is
    never read by two threads at once.

    Handle ownership: a handle passed to `insert_or_compare` belongs to the
    table only when the result is `INSERTED`. For `DUPLICATE` and `ERROR`
    the caller still owns it and must close it.

    Lifecycle is populate, then `drain()` exactly once.
    """

    def __init__(self, key_size: int, chunk_size: int = COMPARE_CHUNK_SIZE) -> None:
        if key_size <= 0:
            raise ValueError("key_size must be > 0")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")

        self.key_size: int = key_size
        self.chunk_size: int = chunk_size
        self._buckets: dict[bytes, list[Representative]] = {}
        self._lock: threading.Lock = threading.Lock()
        self._drained: bool = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    @property
    def open_handles(self) -> int:
        """Number of handles currently retained by representatives."""
        with self._lock:
            return sum(1 for bucket in self._buckets.values() for rep in bucket if not rep.handle.closed)

    def insert_or_compare(self, handle: BinaryIO, key: bytes, path: str | None = None) -> InsertResult:
        file_path: str = path if path is not None else str(handle.name)

        with self._lock:
            if self._drained:
                logger.error("Fingerprint table already drained, rejecting %s", file_path)
                return InsertResult.ERROR

            if len(key) != self.key_size:
                logger.error("Digest key for %s is %d bytes, expected %d", file_path, len(key), self.key_size)
                return InsertResult.ERROR

            bucket: list[Representative] | None = self._buckets.get(key)
            if not bucket:
                self._buckets[key] = [Representative(path=file_path, handle=handle)]
                return InsertResult.INSERTED

            for rep in bucket:
                result: CompareResult = self._compare(rep, handle)

                if result is CompareResult.SAME:
                    rep.duplicates.append(file_path)
                    rep.ref_count += 1
                    return InsertResult.DUPLICATE
                elif result is CompareResult.DIFFERENT:
                    logger.warning("Hash conflict: %s and %s share a digest but differ", rep.path, file_path)
                else:
                    logger.warning("Skipping comparison of %s against %s after I/O error", file_path, rep.path)

            # No representative matched: distinct content under the same key.
            bucket.append(Representative(path=file_path, handle=handle))
            return InsertResult.INSERTED

    def _compare(self, rep: Representative, handle: BinaryIO) -> CompareResult:
        try:
            rep.handle.seek(0)
            handle.seek(0)
        except OSError as e:
            logger.warning("Seek failed on %s or %s: %s", rep.path, handle.name, e)
            return CompareResult.IO_ERROR

        return compare_files(rep.handle, handle, self.chunk_size)

    def drain(self) -> list[list[Representative]]:
        """
        Remove and return every bucket, in insertion order.

        Ownership of the retained handles moves to the caller, which must
        close them. A drained table accepts no further inserts.
        """
        with self._lock:
            if self._drained:
                raise TableStateError("Fingerprint table drained twice")

            self._drained = True
            buckets: list[list[Representative]] = list(self._buckets.values())
            self._buckets.clear()

        return buckets
