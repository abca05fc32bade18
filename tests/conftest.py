import io
from collections.abc import Iterator
from pathlib import Path
from typing import BinaryIO

import pytest


class FailingHandle(io.BytesIO):
    """In-memory handle whose reads fail like a dying disk."""

    name = "broken.bin"

    def read(self, size: int | None = -1) -> bytes:
        raise OSError("simulated read failure")


def write(path: Path, content: bytes | str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, str):
        content = content.encode()
    path.write_bytes(content)
    return path


@pytest.fixture
def open_file() -> Iterator:
    """Open files for reading and close whatever the test leaves open."""
    handles: list[BinaryIO] = []

    def _open(path: Path) -> BinaryIO:
        fh: BinaryIO = path.open("rb")
        handles.append(fh)
        return fh

    yield _open

    for fh in handles:
        fh.close()
