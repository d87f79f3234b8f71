"""Shared fixtures for builder_contract tests."""

import asyncio
import os
import time
from pathlib import Path

import pytest

from builder_contract.config import Settings
from builder_contract.files import FileBlob


def process_gone(pid: int) -> bool:
    """True once ``pid`` no longer runs; a zombie awaiting its reaper counts."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    try:
        stat = Path(f"/proc/{pid}/stat").read_text()
    except FileNotFoundError:
        return Path("/proc/self").exists()
    return stat.rsplit(")", 1)[1].split()[0] == "Z"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a temporary directory with short timeouts."""
    return Settings(
        cache_dir=tmp_path / "cache",
        work_root=tmp_path / "work",
        build_timeout=5,
        prepare_cache_timeout=5,
        dev_server_timeout=5,
        max_concurrent_builds=4,
    )


@pytest.fixture
def index_files() -> dict[str, FileBlob]:
    """A one-file project."""
    return {"index.js": FileBlob(data=b"module.exports = () => 'hi';\n")}


@pytest.fixture
def wait_for_pid():
    """Wait until a shell command has written a pid file, and return the pid."""

    async def wait(path: Path, timeout: float = 5.0) -> int:
        deadline = time.monotonic() + timeout
        while True:
            if path.is_file():
                content = path.read_text()
                if content.endswith("\n"):
                    return int(content)
            if time.monotonic() >= deadline:
                raise AssertionError(f"no pid written to {path}")
            await asyncio.sleep(0.05)

    return wait


@pytest.fixture
def wait_until_gone():
    """Wait until a pid has exited; returns False if it is still running."""

    async def wait(pid: int, timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        while not process_gone(pid):
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(0.05)
        return True

    return wait
