"""Shared type definitions for builder_contract.

This module contains enums shared across subpackages to avoid circular imports.
"""

from enum import Enum


class BuildStatus(str, Enum):
    """Status of a single entrypoint build."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class DevServerState(str, Enum):
    """Lifecycle state of a dev server for one entrypoint."""

    NOT_STARTED = "not_started"
    DECLINED = "declined"
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"


class OutputKind(str, Enum):
    """Discriminator for build output artifacts."""

    FILE = "File"
    LAMBDA = "Lambda"
    EDGE_FUNCTION = "EdgeFunction"
    PRERENDER = "Prerender"


class FileAccess(str, Enum):
    """Which stream accessor is legal for a File variant."""

    SYNC = "sync"
    ASYNC = "async"


class ImageFormat(str, Enum):
    """Output formats accepted by image optimization."""

    AVIF = "image/avif"
    WEBP = "image/webp"


__all__ = [
    "BuildStatus",
    "DevServerState",
    "FileAccess",
    "ImageFormat",
    "OutputKind",
]
