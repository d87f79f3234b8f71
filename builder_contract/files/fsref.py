"""Filesystem-backed file references."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, ClassVar

from builder_contract.files.base import DEFAULT_MODE, FileBase


@dataclass(frozen=True)
class FileFsRef(FileBase):
    """File whose content lives at a path on the local filesystem.

    The content is read lazily; every ``to_stream()`` call opens the path
    again, so the handle can be streamed any number of times.
    """

    type: ClassVar[str] = "FileFsRef"

    fs_path: Path
    mode: int = DEFAULT_MODE
    content_type: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.fs_path, Path):
            object.__setattr__(self, "fs_path", Path(self.fs_path))

    @classmethod
    def from_fs_path(
        cls,
        fs_path: str | os.PathLike[str],
        mode: int | None = None,
        content_type: str | None = None,
    ) -> FileFsRef:
        """Create a reference, taking the mode from the file when not given.

        Args:
            fs_path: Path to an existing file.
            mode: Explicit mode bits; defaults to the file's ``st_mode``.
            content_type: Optional MIME type.

        Returns:
            FileFsRef for the path.

        Raises:
            FileNotFoundError: If the path does not exist.
        """
        path = Path(fs_path)
        if mode is None:
            mode = path.stat().st_mode
        return cls(fs_path=path, mode=mode, content_type=content_type)

    def _open(self) -> BinaryIO:
        return self.fs_path.open("rb")

    def __repr__(self) -> str:
        return f"<FileFsRef(fs_path='{self.fs_path}', mode={oct(self.mode)})>"


__all__ = ["FileFsRef"]
