import logging
from pathlib import Path

import typer

from .checksum import digest_size
from .config import ScanConfig
from .errors import ConfigError
from .fptable import FingerprintTable
from .models import ReportSummary, WalkStats
from .report import emit_report
from .walker import TreeWalker

logger: logging.Logger = logging.getLogger(__name__)


def validate_root(path: Path) -> Path:
    """
    Resolve `path` and check that it is an existing directory.

    Raises
    ------
    ConfigError
        If the path does not exist or is not a directory.
    """
    try:
        resolved: Path = path.resolve()
    except OSError as e:
        raise ConfigError(f"{path} cannot be resolved: {e}")

    if not resolved.exists():
        raise ConfigError(f"{resolved} does not exist")
    if not resolved.is_dir():
        raise ConfigError(f"{resolved} is not a directory")

    return resolved


def run_scan(root: Path, cfg: ScanConfig) -> tuple[WalkStats, ReportSummary]:
    """Walk `root`, then drain the table into the report. The table lives for this call only."""
    resolved_root: Path = validate_root(root)
    cfg.validate()

    table: FingerprintTable = FingerprintTable(
        key_size=digest_size(cfg.algorithm),
        chunk_size=cfg.buffer_size,
    )
    walker: TreeWalker = TreeWalker(
        table,
        algorithm=cfg.algorithm,
        buffer_size=cfg.buffer_size,
        max_workers=cfg.workers,
        max_inflight=cfg.max_inflight,
    )

    logger.info("Scanning %s with %s using %d workers", resolved_root, cfg.algorithm.value, cfg.workers)

    try:
        stats: WalkStats = walker.walk(resolved_root)
    finally:
        # Retained handles are released here even if the walk itself blew up.
        summary: ReportSummary = emit_report(table, cfg.report_path)

    return stats, summary


def scan_command(root: Path, cfg: ScanConfig) -> None:
    stats, summary = run_scan(root, cfg)

    typer.echo(f"Processed entries: {stats.discovered}")
    typer.echo(
        f"Duplicate groups:  {summary.groups} ({summary.duplicate_files} duplicate files) -> {summary.sink}"
    )
    if stats.files_skipped or stats.dirs_skipped or stats.internal_errors:
        typer.echo(
            f"Skipped:           {stats.files_skipped} files, {stats.dirs_skipped} directories, "
            f"{stats.internal_errors} errors (see log)"
        )
