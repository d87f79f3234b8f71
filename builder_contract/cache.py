"""Build cache handoff.

This module handles:
- Cache key computation per builder and entrypoint
- Saving the files a builder's ``prepare_cache`` returned
- Restoring them into the work directory before the next build
- Locking so concurrent saves/restores of one key do not interleave

The cache is advisory. Any failure raises ``CacheError``, which callers
treat as a cold build rather than a build failure.
"""

from __future__ import annotations

import asyncio
import fcntl
import hashlib
import json
import logging
import os
import shutil
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from builder_contract.errors import BuilderContractError, CacheError, UnsafePathError
from builder_contract.files import FileFsRef, Files, download_files, safe_target

logger = logging.getLogger(__name__)

# Schema version for cache key format; bump when cache key format changes
CACHE_KEY_SCHEMA_VERSION = "1"

MANIFEST_NAME = "manifest.json"
FILES_DIR_NAME = "files"


@dataclass
class CacheInputs:
    """Inputs identifying one cache slot.

    Attributes:
        schema_version: Version of cache key schema.
        use: Builder identifier.
        entrypoint: Entrypoint the cache belongs to.
        scope: Optional extra scope (e.g. project or repository root).
    """

    schema_version: str = CACHE_KEY_SCHEMA_VERSION
    use: str = ""
    entrypoint: str = ""
    scope: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


def compute_cache_key(use: str, entrypoint: str, scope: str | None = None) -> str:
    """Compute the cache key for a builder and entrypoint.

    The key is a SHA-256 hash of the canonical JSON of ``CacheInputs``.

    Args:
        use: Builder identifier.
        entrypoint: Entrypoint path.
        scope: Optional extra scope.

    Returns:
        Cache key as ``sha256:<hex>``.
    """
    inputs = CacheInputs(use=use, entrypoint=entrypoint, scope=scope)
    canonical_json = json.dumps(inputs.to_dict(), sort_keys=True, separators=(",", ":"))
    return "sha256:" + hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()


def _safe_key(cache_key: str) -> str:
    return cache_key.replace(":", "_").replace("/", "_")[:80]


@asynccontextmanager
async def cache_lock(
    lock_dir: Path,
    cache_key: str,
    timeout: float | None = None,
) -> AsyncIterator[None]:
    """Acquire a file lock for a cache key without blocking the event loop.

    Args:
        lock_dir: Directory for lock files.
        cache_key: Cache key to lock on.
        timeout: Lock acquisition timeout in seconds (None = wait forever).

    Yields:
        None when lock is acquired.

    Raises:
        TimeoutError: If lock cannot be acquired within timeout.
    """
    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_file = lock_dir / f"cache_{_safe_key(cache_key)}.lock"

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    lock_acquired = False
    try:
        start = time.monotonic()
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                lock_acquired = True
                break
            except BlockingIOError:
                if timeout is not None and time.monotonic() - start >= timeout:
                    raise TimeoutError(
                        f"Timeout waiting for cache lock on {cache_key[:32]}"
                    ) from None
                await asyncio.sleep(0.05)

        logger.debug("Cache lock acquired for key: %s", cache_key[:32])
        yield
    finally:
        if lock_acquired:
            fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)


class CacheStore:
    """Directory-backed cache slots, one per cache key.

    Layout::

        <root>/<key>/manifest.json
        <root>/<key>/files/<path>
    """

    def __init__(self, root: Path, lock_timeout: float | None = 300) -> None:
        self.root = Path(root)
        self.lock_timeout = lock_timeout

    def path_for(self, cache_key: str) -> Path:
        """Directory holding the slot for ``cache_key``."""
        return self.root / _safe_key(cache_key)

    def exists(self, cache_key: str) -> bool:
        """Whether a complete slot exists for ``cache_key``."""
        return (self.path_for(cache_key) / MANIFEST_NAME).is_file()

    async def save(self, cache_key: str, files: Files) -> int:
        """Replace the slot for ``cache_key`` with ``files``.

        The slot is written to a temporary directory and swapped in, so a
        failed save never leaves a partial slot behind.

        Returns:
            Number of files saved.

        Raises:
            CacheError: If the files cannot be written.
        """
        slot = self.path_for(cache_key)
        staging = self.root / f".tmp-{uuid.uuid4().hex[:12]}"
        try:
            async with cache_lock(self.root / ".locks", cache_key, self.lock_timeout):
                written = await download_files(files, staging / FILES_DIR_NAME)
                manifest = {
                    "schema_version": CACHE_KEY_SCHEMA_VERSION,
                    "cache_key": cache_key,
                    "created_at": datetime.now(timezone.utc).isoformat(),
                    "files": {path: {"mode": f.mode} for path, f in written.items()},
                }
                (staging / MANIFEST_NAME).write_text(
                    json.dumps(manifest, indent=2, sort_keys=True), encoding="utf-8"
                )
                if slot.exists():
                    shutil.rmtree(slot)
                staging.rename(slot)
        except (OSError, BuilderContractError, TimeoutError) as e:
            raise CacheError(
                f"Failed to save cache {cache_key[:32]}: {e}",
                details={"cache_key": cache_key},
            ) from e
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

        logger.info("Saved %d files to cache %s", len(written), cache_key[:32])
        return len(written)

    def load(self, cache_key: str) -> dict[str, FileFsRef] | None:
        """Return the cached files for ``cache_key``, or None if absent.

        Raises:
            CacheError: If the slot exists but its manifest is unreadable or
                malformed.
        """
        slot = self.path_for(cache_key)
        manifest_path = slot / MANIFEST_NAME
        if not manifest_path.is_file():
            return None

        files_dir = slot / FILES_DIR_NAME
        try:
            manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
            entries = manifest["files"]
            if not isinstance(entries, dict):
                raise TypeError("'files' must be an object")
            files: dict[str, FileFsRef] = {}
            for path, entry in entries.items():
                mode = entry["mode"]
                if isinstance(mode, bool) or not isinstance(mode, int):
                    raise TypeError(f"mode of '{path}' must be an integer")
                files[path] = FileFsRef(fs_path=safe_target(files_dir, path), mode=mode)
        except (OSError, ValueError, KeyError, TypeError, UnsafePathError) as e:
            raise CacheError(
                f"Unreadable cache manifest {manifest_path}: {e}",
                details={"cache_key": cache_key},
            ) from e
        return files

    async def restore(self, cache_key: str, work_path: Path) -> int | None:
        """Restore the slot for ``cache_key`` into ``work_path``.

        Returns:
            Number of files restored, or None if there is no slot.

        Raises:
            CacheError: If the slot cannot be read or written out.
        """
        try:
            async with cache_lock(self.root / ".locks", cache_key, self.lock_timeout):
                files = self.load(cache_key)
                if files is None:
                    logger.debug("No cache for %s", cache_key[:32])
                    return None
                await download_files(files, work_path)
        except CacheError:
            raise
        except (OSError, BuilderContractError, TimeoutError) as e:
            raise CacheError(
                f"Failed to restore cache {cache_key[:32]}: {e}",
                details={"cache_key": cache_key},
            ) from e

        logger.info("Restored %d cached files into %s", len(files), work_path)
        return len(files)

    def clear(self, cache_key: str) -> bool:
        """Delete the slot for ``cache_key``.

        Returns:
            True if a slot was deleted.
        """
        slot = self.path_for(cache_key)
        if not slot.exists():
            return False
        shutil.rmtree(slot)
        logger.info("Cleared cache %s", cache_key[:32])
        return True


__all__ = [
    "CACHE_KEY_SCHEMA_VERSION",
    "CacheInputs",
    "CacheStore",
    "cache_lock",
    "compute_cache_key",
]
