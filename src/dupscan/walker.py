import logging
import os
import threading
from collections import Counter
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import fields
from pathlib import Path
from typing import BinaryIO

from .checksum import compute_digest
from .errors import DigestError
from .fptable import FingerprintTable
from .models import HashAlgorithm, InsertResult, WalkStats

logger: logging.Logger = logging.getLogger(__name__)

Work = Callable[[ThreadPoolExecutor, "WalkState", Path], None]

COUNTERS: frozenset[str] = frozenset(f.name for f in fields(WalkStats))


class WalkState:
    """Counters and the join count shared by every unit of work in one walk."""

    def __init__(self) -> None:
        self._lock: threading.Lock = threading.Lock()
        self._idle: threading.Condition = threading.Condition(self._lock)
        self._pending: int = 0
        self._counts: Counter[str] = Counter({name: 0 for name in COUNTERS})

    def add(self) -> None:
        with self._lock:
            self._pending += 1

    def done(self) -> None:
        with self._lock:
            self._pending -= 1
            if self._pending == 0:
                self._idle.notify_all()

    def wait(self) -> None:
        with self._lock:
            while self._pending > 0:
                self._idle.wait()

    def count(self, name: str) -> None:
        if name not in COUNTERS:
            raise KeyError(f"Unknown walk counter: {name!r}")
        with self._lock:
            self._counts[name] += 1

    def snapshot(self) -> WalkStats:
        with self._lock:
            return WalkStats(**self._counts)


class TreeWalker:
    """
    Walk a directory tree concurrently and feed every regular file into a
    `FingerprintTable`.

    Each directory and each file is its own unit of work on a thread pool.
    A directory unit lists its entries, submits a unit per entry and
    returns without waiting for them; the walk is complete when the join
    count in `WalkState` drops to zero. The number of files open in flight
    is capped by `max_inflight`. Handles that become representatives stay
    open until the table is drained.
    """

    def __init__(
        self,
        table: FingerprintTable,
        *,
        algorithm: HashAlgorithm,
        buffer_size: int,
        max_workers: int,
        max_inflight: int,
    ) -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        if max_inflight <= 0:
            raise ValueError("max_inflight must be > 0")

        self.table: FingerprintTable = table
        self.algorithm: HashAlgorithm = algorithm
        self.buffer_size: int = buffer_size
        self.max_workers: int = max_workers
        self._inflight: threading.BoundedSemaphore = threading.BoundedSemaphore(max_inflight)

    def walk(self, root: Path) -> WalkStats:
        state: WalkState = WalkState()

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="dupscan") as executor:
            self._spawn(executor, state, self._walk_dir, root)
            state.wait()

        stats: WalkStats = state.snapshot()
        logger.info(
            "Walk of %s finished: %d entries, %d hashed, %d skipped files, %d skipped dirs",
            root,
            stats.discovered,
            stats.files_hashed,
            stats.files_skipped,
            stats.dirs_skipped,
        )
        return stats

    def _spawn(self, executor: ThreadPoolExecutor, state: WalkState, work: Work, path: Path) -> None:
        state.add()
        try:
            _ = executor.submit(self._run, executor, state, work, path)
        except RuntimeError:
            # The unit never runs, so release its join count here.
            logger.exception("Cannot schedule %s", path)
            state.count("internal_errors")
            state.done()

    def _run(self, executor: ThreadPoolExecutor, state: WalkState, work: Work, path: Path) -> None:
        try:
            work(executor, state, path)
        except Exception:
            logger.exception("Internal error while processing %s", path)
            state.count("internal_errors")
        finally:
            state.done()

    def _walk_dir(self, executor: ThreadPoolExecutor, state: WalkState, path: Path) -> None:
        try:
            with os.scandir(path) as it:
                entries: list[os.DirEntry[str]] = list(it)
        except OSError as e:
            logger.warning("Cannot list %s, skipping subtree: %s", path, e)
            state.count("dirs_skipped")
            return

        for entry in entries:
            state.count("discovered")
            entry_path: Path = Path(entry.path)

            try:
                if entry.is_symlink():
                    logger.debug("Symlink: %s", entry_path)
                    continue

                if entry.is_dir(follow_symlinks=False):
                    self._spawn(executor, state, self._walk_dir, entry_path)
                elif entry.is_file(follow_symlinks=False):
                    self._spawn(executor, state, self._check_file, entry_path)
                else:
                    logger.debug("Not a regular file: %s", entry_path)
            except OSError as e:
                logger.warning("Cannot stat %s: %s", entry_path, e)
                state.count("files_skipped")

    def _check_file(self, executor: ThreadPoolExecutor, state: WalkState, path: Path) -> None:
        with self._inflight:
            try:
                fh: BinaryIO = path.open("rb")
            except OSError as e:
                logger.warning("Cannot open %s: %s", path, e)
                state.count("files_skipped")
                return

            try:
                digest: bytes = compute_digest(fh, self.algorithm, self.buffer_size)
            except DigestError as e:
                fh.close()
                logger.warning("Cannot hash %s: %s", path, e)
                state.count("files_skipped")
                return

            state.count("files_hashed")

            try:
                result: InsertResult = self.table.insert_or_compare(fh, digest, str(path))
            except Exception:
                fh.close()
                raise

            if result is InsertResult.INSERTED:
                # The table owns the handle now.
                state.count("inserted")
                return

            fh.close()
            if result is InsertResult.DUPLICATE:
                logger.debug("Duplicate: %s", path)
                state.count("duplicates")
            else:
                state.count("internal_errors")
