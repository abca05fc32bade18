import logging
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Annotated

import typer

from .config import CONFIG_FILENAME, ScanConfig, parse_size
from .errors import ConfigError
from .models import HashAlgorithm
from .scan import scan_command


def installed_version() -> str:
    try:
        return version(distribution_name="dupscan")
    except PackageNotFoundError:
        return "unknown (package not installed)"


app: typer.Typer = typer.Typer(
    help=f"dupscan — find files with identical content\n\nVersion: {installed_version()}",
)


def print_version(is_version: bool) -> None:
    """
    Callback for the global --version / -V option.

    Typer passes False when the flag is absent, in which case normal
    command execution continues. Otherwise the installed version is
    printed and the program exits.
    """
    if not is_version:
        return

    typer.echo(installed_version())
    raise typer.Exit()


def configure_logging(verbosity: int) -> None:
    level: int = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def size_option(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        size: int = parse_size(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))
    if size <= 0:
        raise typer.BadParameter("Size must be > 0")
    return size


def apply_overrides(
    cfg: ScanConfig,
    *,
    algorithm: HashAlgorithm | None,
    buffer_size: str | None,
    max_workers: int | None,
    max_inflight: int | None,
    report: Path | None,
) -> ScanConfig:
    if algorithm is not None:
        cfg.algorithm = algorithm
    normalized_buffer_size: int | None = size_option(buffer_size)
    if normalized_buffer_size is not None:
        cfg.buffer_size = normalized_buffer_size
    if max_workers is not None:
        cfg.max_workers = max_workers
    if max_inflight is not None:
        cfg.max_inflight = max_inflight
    if report is not None:
        cfg.report_path = report
    return cfg


AlgorithmOption = Annotated[HashAlgorithm | None, typer.Option(case_sensitive=False, help="Digest algorithm")]
BufferSizeOption = Annotated[
    str | None, typer.Option(help="Read buffer in bytes, or with suffix K/M/G (e.g. 8K, 1M)")
]
MaxWorkersOption = Annotated[int | None, typer.Option(help="Worker threads, 0 for cpu count x 4")]
MaxInflightOption = Annotated[int | None, typer.Option(help="Maximum files open while hashing")]
ReportOption = Annotated[Path | None, typer.Option(help="Report file for duplicate groups")]


@app.command()
def scan(
    path: Annotated[Path, typer.Option("--path", "-p", help="Root directory to scan")],
    algorithm: AlgorithmOption = None,
    buffer_size: BufferSizeOption = None,
    max_workers: MaxWorkersOption = None,
    max_inflight: MaxInflightOption = None,
    report: ReportOption = None,
    config: Annotated[Path, typer.Option(help="Config file")] = CONFIG_FILENAME,
    verbose: Annotated[int, typer.Option("--verbose", "-v", count=True, help="-v info, -vv debug")] = 0,
) -> None:
    """Scan a directory tree and report groups of identical files."""
    configure_logging(verbose)

    try:
        cfg: ScanConfig = apply_overrides(
            ScanConfig.load_or_default(config),
            algorithm=algorithm,
            buffer_size=buffer_size,
            max_workers=max_workers,
            max_inflight=max_inflight,
            report=report,
        )
        scan_command(path, cfg)
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)


@app.command()
def init(
    algorithm: AlgorithmOption = None,
    buffer_size: BufferSizeOption = None,
    max_workers: MaxWorkersOption = None,
    max_inflight: MaxInflightOption = None,
    report: ReportOption = None,
    config: Annotated[Path, typer.Option(help="Config file")] = CONFIG_FILENAME,
    force: Annotated[bool, typer.Option()] = False,
) -> None:
    """Write a config file with scan defaults."""
    if config.exists() and not force:
        typer.echo("Config file already exists. Use --force to overwrite.")
        raise typer.Exit(code=1)

    cfg: ScanConfig = apply_overrides(
        ScanConfig(),
        algorithm=algorithm,
        buffer_size=buffer_size,
        max_workers=max_workers,
        max_inflight=max_inflight,
        report=report,
    )

    try:
        cfg.validate()
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    cfg.save(config)
    typer.echo(f"Config written to {config}")


@app.command(name="version")
def version_cmd() -> None:
    """Print the installed version of dupscan."""
    print_version(True)


@app.callback()
def main(
    _version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=print_version,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """
    Global options for dupscan. All subcommands run after this callback unless
    --version is used.
    """
    return


if __name__ == "__main__":
    app()
