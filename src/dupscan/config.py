import os
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn, TypedDict, cast

import yaml

from .errors import ConfigError
from .models import HashAlgorithm


class RawScanConfig(TypedDict):
    algorithm: str
    buffer_size: int
    max_workers: int
    max_inflight: int
    report_path: str


class RawConfigFile(TypedDict):
    config: RawScanConfig


CONFIG_FILENAME: Path = Path("dupscan.yaml")
DEFAULT_REPORT_PATH: Path = Path("duplicates.txt")


def type_error(value: object) -> NoReturn:
    raise ConfigError(f"Unexpected value of wrong type: {value!r}")


def parse_size(value: str) -> int:
    # Normalize
    text: str = value.strip().upper()
    if not text:
        raise ValueError("Size must not be empty.")

    last_char: str = text[-1]
    # Match "[number][optional suffix]"
    if last_char in {"K", "M", "G"}:
        number: str = text[:-1]
        suffix: str | None = last_char
    else:
        number = text
        suffix = None

    try:
        base: int = int(number)
    except ValueError:
        raise ValueError("Specified size is not a number. Only K, M and G are allowed suffixes.")

    if suffix == "K":
        return base * 1024
    elif suffix == "M":
        return base * 1024 * 1024
    elif suffix == "G":
        return base * 1024 * 1024 * 1024
    else:
        return base


def default_max_workers() -> int:
    # Work is I/O bound, so oversubscribe the cores.
    return (os.cpu_count() or 1) * 4


@dataclass(slots=True)
class ScanConfig:
    algorithm: HashAlgorithm = HashAlgorithm.MD5
    buffer_size: int = 8192
    max_workers: int = 0
    max_inflight: int = 64
    report_path: Path = DEFAULT_REPORT_PATH

    def validate(self) -> None:
        if self.buffer_size <= 0:
            raise ConfigError(f"buffer_size must be > 0, got {self.buffer_size}")
        if self.max_workers < 0:
            raise ConfigError(f"max_workers must be >= 0, got {self.max_workers}")
        if self.max_inflight <= 0:
            raise ConfigError(f"max_inflight must be > 0, got {self.max_inflight}")

    @property
    def workers(self) -> int:
        return self.max_workers if self.max_workers != 0 else default_max_workers()

    @staticmethod
    def load(path: Path = CONFIG_FILENAME) -> "ScanConfig":
        if not path.exists():
            raise ConfigError(f"Missing config file {path}. Run dupscan init first.")

        with path.open("r", encoding="UTF-8") as f:
            try:
                raw_loaded_obj: object | None = cast(object, yaml.safe_load(f))
            except yaml.YAMLError as e:
                raise ConfigError(f"Config file {path} is not valid YAML: {e}")

        if not raw_loaded_obj:
            raise ConfigError("Config file is empty or invalid YAML.")

        if not isinstance(raw_loaded_obj, dict):
            type_error(raw_loaded_obj)

        raw_dict: dict[str, object] = cast(dict[str, object], raw_loaded_obj)

        cfg_raw: object | None = raw_dict.get("config")
        if not isinstance(cfg_raw, dict):
            type_error(cfg_raw)

        cfg: RawScanConfig = cast(RawScanConfig, cast(object, cfg_raw))
        defaults: ScanConfig = ScanConfig()

        try:
            scan_config: ScanConfig = ScanConfig(
                algorithm=HashAlgorithm(cfg.get("algorithm", defaults.algorithm.value)),
                buffer_size=int(cfg.get("buffer_size", defaults.buffer_size)),
                max_workers=int(cfg.get("max_workers", defaults.max_workers)),
                max_inflight=int(cfg.get("max_inflight", defaults.max_inflight)),
                report_path=Path(cfg.get("report_path", str(defaults.report_path))),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value in {path}: {e}")

        scan_config.validate()
        return scan_config

    @staticmethod
    def load_or_default(path: Path = CONFIG_FILENAME) -> "ScanConfig":
        if not path.exists():
            return ScanConfig()
        return ScanConfig.load(path)

    def save(self, path: Path = CONFIG_FILENAME) -> None:
        raw: RawConfigFile = {"config": self.to_raw()}
        with path.open("w", encoding="utf-8") as f:
            yaml.safe_dump(raw, f, sort_keys=False)

    def to_raw(self) -> RawScanConfig:
        return {
            "algorithm": self.algorithm.value,
            "buffer_size": self.buffer_size,
            "max_workers": self.max_workers,
            "max_inflight": self.max_inflight,
            "report_path": str(self.report_path),
        }
