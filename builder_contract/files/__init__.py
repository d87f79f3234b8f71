"""File abstraction.

This module handles:
- In-memory, filesystem and remote file handles with uniform streaming
- Mode bit helpers
- Collecting directories into file sets and writing file sets to disk
"""

from collections.abc import Mapping
from typing import Union

from builder_contract.files.base import (
    DEFAULT_MODE,
    EXECUTABLE_MODE,
    FileBase,
    compute_digest,
    compute_digest_async,
    is_executable,
)
from builder_contract.files.blob import FileBlob
from builder_contract.files.fsref import FileFsRef
from builder_contract.files.ref import FileRef
from builder_contract.files.utils import (
    compile_glob,
    download_files,
    glob_files,
    match_glob,
    safe_target,
)

File = Union[FileBlob, FileFsRef, FileRef]
Files = Mapping[str, File]

__all__ = [
    "DEFAULT_MODE",
    "EXECUTABLE_MODE",
    "File",
    "FileBase",
    "FileBlob",
    "FileFsRef",
    "FileRef",
    "Files",
    "compile_glob",
    "compute_digest",
    "compute_digest_async",
    "download_files",
    "glob_files",
    "is_executable",
    "match_glob",
    "safe_target",
]
