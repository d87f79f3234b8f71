"""In-memory file content."""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import BinaryIO, ClassVar

from builder_contract.files.base import DEFAULT_MODE, FileBase


@dataclass(frozen=True)
class FileBlob(FileBase):
    """File backed by bytes held in memory.

    ``data`` may be given as ``str``; it is stored UTF-8 encoded.
    """

    type: ClassVar[str] = "FileBlob"

    data: bytes
    mode: int = DEFAULT_MODE
    content_type: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.data, str):
            object.__setattr__(self, "data", self.data.encode("utf-8"))
        elif not isinstance(self.data, bytes):
            object.__setattr__(self, "data", bytes(self.data))

    def _open(self) -> BinaryIO:
        return io.BytesIO(self.data)

    def __repr__(self) -> str:
        return f"<FileBlob(size={len(self.data)}, mode={oct(self.mode)})>"


__all__ = ["FileBlob"]
