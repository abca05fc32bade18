import logging
import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import TextIO

from .fptable import FingerprintTable
from .models import Representative, ReportSummary

logger: logging.Logger = logging.getLogger(__name__)


def printable_path(path: str) -> str:
    """Render undecodable file name bytes as backslash escapes."""
    return os.fsencode(path).decode("utf-8", "backslashreplace")


def write_group(rep: Representative, sink: TextIO, render: Callable[[str], str] = str) -> None:
    _ = sink.write(f"Base file: {render(rep.path)}\n")
    _ = sink.write("Same file:\n")
    for duplicate in rep.duplicates:
        _ = sink.write(f"---{render(duplicate)}\n")
    _ = sink.write("\n")


def open_sink(report_path: Path | None) -> tuple[TextIO, bool]:
    """
    Open the report file for writing, or fall back to stdout.

    The file is written with `surrogateescape`, so paths keep the exact
    bytes the filesystem returned. Returns the sink and whether the caller
    must close it.
    """
    if report_path is None:
        return sys.stdout, False

    try:
        return report_path.open("w", encoding="utf-8", errors="surrogateescape"), True
    except OSError as e:
        logger.warning("Cannot open report file %s, writing to console: %s", report_path, e)
        return sys.stdout, False


def emit_report(table: FingerprintTable, report_path: Path | None) -> ReportSummary:
    """
    Drain `table` into the report and close every retained handle.

    Only representatives with at least one duplicate are written. Every
    handle is closed, even when writing the report fails.
    """
    buckets: list[list[Representative]] = table.drain()
    representatives: list[Representative] = [rep for bucket in buckets for rep in bucket]

    groups: int = 0
    duplicate_files: int = 0
    handles_closed: int = 0
    sink_name: str = "<stdout>"

    try:
        sink, owned = open_sink(report_path)
        if owned:
            sink_name = str(report_path)

        try:
            for rep in representatives:
                if rep.duplicates:
                    write_group(rep, sink, str if owned else printable_path)
                    groups += 1
                    duplicate_files += len(rep.duplicates)
            sink.flush()
        finally:
            if owned:
                sink.close()
    finally:
        for rep in representatives:
            rep.handle.close()
            handles_closed += 1

    logger.info("Wrote %d duplicate groups (%d files) to %s", groups, duplicate_files, sink_name)

    return ReportSummary(
        groups=groups,
        duplicate_files=duplicate_files,
        handles_closed=handles_closed,
        sink=sink_name,
    )
