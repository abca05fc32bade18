from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO


class HashAlgorithm(str, Enum):
    MD5 = "md5"
    SHA1 = "sha1"
    SHA256 = "sha256"


class CompareResult(Enum):
    SAME = "same"
    DIFFERENT = "different"
    IO_ERROR = "io_error"


class InsertResult(Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    ERROR = "error"


@dataclass(slots=True)
class Representative:
    """First-seen file of a content class. Owns `handle` until the table is drained."""

    path: str
    handle: BinaryIO
    ref_count: int = 1
    duplicates: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class WalkStats:
    discovered: int
    files_hashed: int
    files_skipped: int
    dirs_skipped: int
    internal_errors: int
    inserted: int
    duplicates: int


@dataclass(frozen=True, slots=True)
class ReportSummary:
    groups: int
    duplicate_files: int
    handles_closed: int
    sink: str
