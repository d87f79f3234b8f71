"""Base class for file content handles.

A File is an immutable handle on content that is about to be built or
deployed. Every variant exposes a ``type`` tag, POSIX mode bits, an optional
content type, and an explicit ``access`` capability that tells callers which
stream accessor is legal:

- ``FileAccess.SYNC``: ``to_stream()`` and ``to_stream_async()`` both work and
  return a fresh stream on every call.
- ``FileAccess.ASYNC``: content needs I/O to materialize; only
  ``to_stream_async()`` is legal and ``to_stream()`` raises
  ``UnsupportedAccessError``.
"""

from __future__ import annotations

import hashlib
import stat
from abc import ABC, abstractmethod
from typing import BinaryIO, ClassVar

from builder_contract.errors import UnsupportedAccessError
from builder_contract.types import FileAccess, OutputKind

# Regular file, rw-r--r--
DEFAULT_MODE = 0o100644
# Regular file, rwxr-xr-x
EXECUTABLE_MODE = 0o100755

HASH_CHUNK_SIZE = 64 * 1024  # 64KB


def is_executable(mode: int) -> bool:
    """Return True if any executable bit is set in ``mode``."""
    return bool(mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH))


class FileBase(ABC):
    """Common interface of all File variants."""

    type: ClassVar[str]
    access: ClassVar[FileAccess] = FileAccess.SYNC
    kind: ClassVar[OutputKind] = OutputKind.FILE

    mode: int
    content_type: str | None

    @property
    def is_executable(self) -> bool:
        """Whether the mode bits mark this file executable."""
        return is_executable(self.mode)

    @abstractmethod
    def _open(self) -> BinaryIO:
        """Open a new stream over the content."""

    def to_stream(self) -> BinaryIO:
        """Return a fresh readable binary stream over the content.

        Raises:
            UnsupportedAccessError: If the variant requires asynchronous
                materialization.
        """
        if self.access is FileAccess.ASYNC:
            raise UnsupportedAccessError(
                f"{self.type} content must be read with to_stream_async()"
            )
        return self._open()

    async def to_stream_async(self) -> BinaryIO:
        """Return a fresh readable binary stream, materializing if needed."""
        return self._open()

    def read_bytes(self) -> bytes:
        """Read the full content synchronously."""
        with self.to_stream() as stream:
            return stream.read()

    async def read_bytes_async(self) -> bytes:
        """Read the full content through the asynchronous accessor."""
        stream = await self.to_stream_async()
        with stream:
            return stream.read()


def _hash_stream(stream: BinaryIO) -> str:
    sha256 = hashlib.sha256()
    with stream:
        while chunk := stream.read(HASH_CHUNK_SIZE):
            sha256.update(chunk)
    return sha256.hexdigest()


def compute_digest(file: FileBase) -> str:
    """Compute the SHA-256 hex digest of a synchronously readable file."""
    return _hash_stream(file.to_stream())


async def compute_digest_async(file: FileBase) -> str:
    """Compute the SHA-256 hex digest of any file."""
    return _hash_stream(await file.to_stream_async())


__all__ = [
    "DEFAULT_MODE",
    "EXECUTABLE_MODE",
    "HASH_CHUNK_SIZE",
    "FileBase",
    "compute_digest",
    "compute_digest_async",
    "is_executable",
]
