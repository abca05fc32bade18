import os
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
from conftest import write

from dupscan.checksum import digest_size
from dupscan.fptable import FingerprintTable
from dupscan.models import HashAlgorithm, Representative
from dupscan.walker import TreeWalker, WalkState


def make_walker(algorithm=HashAlgorithm.MD5, max_workers=4, max_inflight=8):
    table = FingerprintTable(key_size=digest_size(algorithm))
    walker = TreeWalker(
        table,
        algorithm=algorithm,
        buffer_size=8192,
        max_workers=max_workers,
        max_inflight=max_inflight,
    )
    return table, walker


def drain_groups(table: FingerprintTable) -> list[Representative]:
    reps = [rep for bucket in table.drain() for rep in bucket]
    for rep in reps:
        rep.handle.close()
    return reps


def test_hello_world_tree(tmp_path):
    write(tmp_path / "a.txt", "hello")
    write(tmp_path / "b" / "b.txt", "hello")
    write(tmp_path / "c.txt", "world")
    table, walker = make_walker()

    stats = walker.walk(tmp_path)

    assert stats.discovered == 4
    assert stats.files_hashed == 3
    assert stats.inserted == 2
    assert stats.duplicates == 1
    assert stats.files_skipped == stats.dirs_skipped == stats.internal_errors == 0

    reps = drain_groups(table)
    [group] = [rep for rep in reps if rep.duplicates]
    assert {group.path, *group.duplicates} == {str(tmp_path / "a.txt"), str(tmp_path / "b" / "b.txt")}
    assert str(tmp_path / "c.txt") not in group.duplicates + [group.path]


def test_empty_root(tmp_path):
    table, walker = make_walker()
    stats = walker.walk(tmp_path)

    assert stats.discovered == 0
    assert table.drain() == []


@pytest.mark.parametrize(("max_workers", "max_inflight"), [(1, 1), (2, 1), (8, 3), (16, 64)])
def test_grouping_independent_of_scheduling(tmp_path, max_workers, max_inflight):
    expected: dict[str, set[str]] = {}
    for i in range(30):
        content = f"content-{i % 5}"
        path = write(tmp_path / f"d{i % 3}" / f"sub{i % 4}" / f"file{i}.txt", content)
        expected.setdefault(content, set()).add(str(path))

    table, walker = make_walker(HashAlgorithm.SHA256, max_workers, max_inflight)
    stats = walker.walk(tmp_path)

    assert stats.files_hashed == 30
    assert stats.inserted == 5
    assert stats.duplicates == 25

    groups = {frozenset([rep.path, *rep.duplicates]) for rep in drain_groups(table)}
    assert groups == {frozenset(paths) for paths in expected.values()}


def test_every_handle_released(tmp_path):
    for i in range(10):
        write(tmp_path / f"f{i}.bin", bytes([i % 3]) * 100)
    table, walker = make_walker()

    _ = walker.walk(tmp_path)
    assert table.open_handles == 3

    reps = drain_groups(table)
    assert len(reps) == 3
    assert all(rep.handle.closed for rep in reps)


def test_unreadable_directory_is_skipped(tmp_path, monkeypatch, caplog):
    write(tmp_path / "locked" / "secret.txt", "hello")
    write(tmp_path / "open" / "a.txt", "hello")
    write(tmp_path / "open" / "b.txt", "hello")
    locked = str(tmp_path / "locked")
    real_scandir = os.scandir

    def scandir(path):
        if os.fspath(path) == locked:
            raise PermissionError(13, "Permission denied", locked)
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", scandir)
    table, walker = make_walker()

    stats = walker.walk(tmp_path)

    assert stats.dirs_skipped == 1
    assert stats.files_hashed == 2
    assert stats.duplicates == 1
    assert locked in caplog.text
    assert "Cannot list" in caplog.text

    [rep] = drain_groups(table)
    assert "secret" not in rep.path
    assert len(rep.duplicates) == 1


def test_unopenable_file_is_skipped(tmp_path, monkeypatch, caplog):
    bad = write(tmp_path / "bad.txt", "hello")
    write(tmp_path / "good.txt", "hello")
    real_open = Path.open

    def fake_open(self, *args, **kwargs):
        if self == bad:
            raise PermissionError(13, "Permission denied", str(self))
        return real_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fake_open)
    table, walker = make_walker()

    stats = walker.walk(tmp_path)

    assert stats.discovered == 2
    assert stats.files_skipped == 1
    assert stats.files_hashed == 1
    assert "Cannot open" in caplog.text
    assert [rep.duplicates for rep in drain_groups(table)] == [[]]


def test_symlinks_not_followed(tmp_path):
    target = write(tmp_path / "real.txt", "hello")
    os.symlink(target, tmp_path / "link.txt")
    os.symlink(tmp_path, tmp_path / "loop")
    table, walker = make_walker()

    stats = walker.walk(tmp_path)

    assert stats.discovered == 3
    assert stats.files_hashed == 1
    assert [rep.duplicates for rep in drain_groups(table)] == [[]]


def test_internal_error_does_not_stop_walk(tmp_path, monkeypatch, caplog):
    write(tmp_path / "a.txt", "hello")
    write(tmp_path / "b.txt", "world")
    table, walker = make_walker(max_workers=1)
    real_insert = table.insert_or_compare
    closed = []

    def insert(fh, key, path=None):
        if path is not None and path.endswith("a.txt"):
            closed.append(fh)
            raise RuntimeError("corrupted bucket")
        return real_insert(fh, key, path)

    monkeypatch.setattr(table, "insert_or_compare", insert)

    stats = walker.walk(tmp_path)

    assert stats.internal_errors == 1
    assert stats.inserted == 1
    assert "Internal error" in caplog.text
    assert all(fh.closed for fh in closed)
    assert len(drain_groups(table)) == 1


def test_insert_into_drained_table_counts_error(tmp_path):
    write(tmp_path / "a.txt", "hello")
    table, walker = make_walker()
    _ = table.drain()

    stats = walker.walk(tmp_path)

    assert stats.internal_errors == 1
    assert stats.inserted == 0


def test_invalid_limits():
    table = FingerprintTable(key_size=16)
    with pytest.raises(ValueError):
        TreeWalker(table, algorithm=HashAlgorithm.MD5, buffer_size=8192, max_workers=0, max_inflight=1)
    with pytest.raises(ValueError):
        TreeWalker(table, algorithm=HashAlgorithm.MD5, buffer_size=8192, max_workers=1, max_inflight=0)


def test_walk_state_join():
    state = WalkState()
    state.add()
    state.add()
    state.count("discovered")
    state.done()
    state.done()
    state.wait()

    assert state.snapshot().discovered == 1


def test_insert_result_reflected_in_stats(tmp_path):
    write(tmp_path / "x" / "1.txt", "dup")
    write(tmp_path / "y" / "2.txt", "dup")
    write(tmp_path / "z" / "3.txt", "dup")
    table, walker = make_walker()

    stats = walker.walk(tmp_path)

    assert (stats.inserted, stats.duplicates) == (1, 2)
    [rep] = drain_groups(table)
    assert rep.ref_count == 3


def test_scheduling_failure_does_not_hang(tmp_path, monkeypatch, caplog):
    for name in ("a.txt", "b.txt", "c.txt"):
        write(tmp_path / name, name)
    table, walker = make_walker(max_workers=1)
    real_submit = ThreadPoolExecutor.submit
    calls = []

    def submit(self, fn, /, *args, **kwargs):
        calls.append(fn)
        if len(calls) == 2:
            raise RuntimeError("can't start new thread")
        return real_submit(self, fn, *args, **kwargs)

    monkeypatch.setattr(ThreadPoolExecutor, "submit", submit)
    results = []
    runner = threading.Thread(target=lambda: results.append(walker.walk(tmp_path)), daemon=True)

    runner.start()
    runner.join(timeout=10)

    assert not runner.is_alive()
    [stats] = results
    assert stats.discovered == 3
    assert stats.internal_errors == 1
    assert stats.files_hashed == 2
    assert "Cannot schedule" in caplog.text
    _ = drain_groups(table)


def test_unknown_counter_rejected():
    state = WalkState()
    with pytest.raises(KeyError):
        state.count("discoverd")
    assert state.snapshot().discovered == 0
