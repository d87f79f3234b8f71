"""Helpers for collecting and materializing file sets.

This module handles:
- Glob pattern matching over deploy-relative paths
- Collecting a directory into a Files mapping
- Writing a Files mapping onto disk (work directory, cache restore)
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from collections.abc import Iterable, Mapping
from functools import lru_cache
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, BinaryIO

from pathspec import PathSpec

from builder_contract.errors import UnsafePathError
from builder_contract.files.base import FileBase
from builder_contract.files.fsref import FileFsRef

if TYPE_CHECKING:
    from builder_contract.options import Meta

logger = logging.getLogger(__name__)

# Directories never collected into a file set
DEFAULT_IGNORE = ("node_modules/**", ".git/**", ".vercel/**", "__pycache__/**")


@lru_cache(maxsize=256)
def compile_glob(pattern: str) -> PathSpec:
    """Compile a deploy-relative glob into a gitwildmatch PathSpec.

    Patterns are anchored at the root: ``*.js`` matches ``index.js`` but not
    ``api/index.js``. Use ``**/*.js`` to match at any depth.

    Args:
        pattern: Glob pattern using ``/`` separators.

    Returns:
        Compiled PathSpec.
    """
    return PathSpec.from_lines("gitwildmatch", ["/" + pattern.lstrip("/")])


def match_glob(pattern: str, path: str) -> bool:
    """Return True if deploy-relative ``path`` matches glob ``pattern``."""
    return compile_glob(pattern).match_file(path)


def glob_files(
    pattern: str,
    base_dir: str | os.PathLike[str],
    ignore: Iterable[str] = DEFAULT_IGNORE,
) -> dict[str, FileFsRef]:
    """Collect files under ``base_dir`` matching ``pattern``.

    Args:
        pattern: Glob pattern relative to ``base_dir``.
        base_dir: Directory to scan.
        ignore: Glob patterns of paths to skip.

    Returns:
        Mapping of POSIX relative path to FileFsRef.

    Raises:
        FileNotFoundError: If ``base_dir`` does not exist.
    """
    root = Path(base_dir)
    if not root.is_dir():
        raise FileNotFoundError(f"Directory not found: {root}")

    ignore = tuple(ignore)
    files: dict[str, FileFsRef] = {}
    for path in sorted(root.rglob("*")):
        if path.is_symlink() or not path.is_file():
            continue
        relative = path.relative_to(root).as_posix()
        if any(match_glob(p, relative) for p in ignore):
            continue
        if not match_glob(pattern, relative):
            continue
        files[relative] = FileFsRef.from_fs_path(path)

    logger.debug("Collected %d files matching %s in %s", len(files), pattern, root)
    return files


def safe_target(dest: Path, name: str) -> Path:
    """Resolve a deploy-relative ``name`` under ``dest``.

    Raises:
        UnsafePathError: If ``name`` is absolute or resolves outside ``dest``.
    """
    if not name or PurePosixPath(name).is_absolute():
        raise UnsafePathError(name)
    root = dest.resolve()
    target = (root / name).resolve()
    if target == root or root not in target.parents:
        raise UnsafePathError(name)
    return dest / name


def _write_stream(stream: BinaryIO, target: Path, mode: int) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with stream, target.open("wb") as out:
        shutil.copyfileobj(stream, out)
    os.chmod(target, mode & 0o7777)


async def download_files(
    files: Mapping[str, FileBase],
    dest_dir: str | os.PathLike[str],
    meta: Meta | None = None,
) -> dict[str, FileFsRef]:
    """Write a Files mapping into ``dest_dir``.

    Mode bits are applied to every written file. In dev mode, when ``meta``
    lists changed files only those are rewritten, and removed files are
    deleted from ``dest_dir``.

    Args:
        files: Files to materialize.
        dest_dir: Destination directory.
        meta: Optional invocation metadata.

    Returns:
        Mapping of path to FileFsRef pointing at the written copy.

    Raises:
        UnsafePathError: If a key is absolute or escapes ``dest_dir``.
    """
    dest = Path(dest_dir)
    dest.mkdir(parents=True, exist_ok=True)

    changed: set[str] | None = None
    if meta is not None and meta.is_dev:
        if meta.files_changed is not None:
            changed = set(meta.files_changed)
        for removed in meta.files_removed or []:
            target = safe_target(dest, removed)
            if target.is_file():
                target.unlink()
                logger.debug("Removed %s", target)

    downloaded: dict[str, FileFsRef] = {}
    for name, file in files.items():
        target = safe_target(dest, name)
        skip = changed is not None and name not in changed and target.exists()
        same = isinstance(file, FileFsRef) and file.fs_path.resolve() == target.resolve()
        if not skip and not same:
            stream = await file.to_stream_async()
            await asyncio.to_thread(_write_stream, stream, target, file.mode)
        downloaded[name] = FileFsRef(
            fs_path=target, mode=file.mode, content_type=file.content_type
        )

    logger.debug("Wrote %d files to %s", len(downloaded), dest)
    return downloaded


__all__ = [
    "DEFAULT_IGNORE",
    "compile_glob",
    "download_files",
    "glob_files",
    "match_glob",
    "safe_target",
]
