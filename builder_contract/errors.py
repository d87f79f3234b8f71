"""Error definitions for the builder contract.

Every error carries a stable ``code`` string so callers (the CLI, an
orchestrator, tooling that reports contract non-compliance) can handle
failures programmatically without matching on messages.
"""

from __future__ import annotations

from typing import Any

# Error code constants
CONTRACT_ERROR = "contract_error"
MISSING_ENTRYPOINT = "missing_entrypoint"
INVALID_CONFIG = "invalid_config"
BUILDER_THREW = "builder_threw"
CONTRACT_VIOLATION = "contract_violation"
UNSUPPORTED_ACCESS = "unsupported_access"
DEV_SERVER_SPAWN_FAILED = "dev_server_spawn_failed"
DEV_SERVER_PORT_CONFLICT = "dev_server_port_conflict"
CACHE_ERROR = "cache_error"
BUILDER_NOT_FOUND = "builder_not_found"
FILE_FETCH_ERROR = "file_fetch_error"
UNSAFE_PATH = "unsafe_path"


class BuilderContractError(Exception):
    """Base error for builder contract operations."""

    code = CONTRACT_ERROR

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.details = details or {}


class MissingEntrypointError(BuilderContractError):
    """Raised when the entrypoint is not a key of the files mapping."""

    code = MISSING_ENTRYPOINT

    def __init__(self, entrypoint: str) -> None:
        super().__init__(
            f"Entrypoint not found in files: {entrypoint}",
            details={"entrypoint": entrypoint},
        )
        self.entrypoint = entrypoint


class InvalidConfigError(BuilderContractError):
    """Raised when a well-known config field has the wrong shape or value."""

    code = INVALID_CONFIG

    def __init__(
        self, message: str, errors: list[dict[str, Any]] | None = None
    ) -> None:
        super().__init__(message, details={"errors": errors or []})
        self.errors = errors or []


class BuilderThrewError(BuilderContractError):
    """Raised when a builder call rejected.

    The original exception is kept as ``__cause__``.
    """

    code = BUILDER_THREW

    def __init__(self, entrypoint: str, operation: str, message: str) -> None:
        super().__init__(
            f"Builder {operation} failed for {entrypoint}: {message}",
            details={"entrypoint": entrypoint, "operation": operation},
        )
        self.entrypoint = entrypoint
        self.operation = operation


class ContractViolationError(BuilderContractError):
    """Raised when a builder resolved with a result the contract forbids."""

    code = CONTRACT_VIOLATION


class UnsupportedAccessError(BuilderContractError):
    """Raised on synchronous stream access to an async-only File."""

    code = UNSUPPORTED_ACCESS


class DevServerSpawnFailedError(BuilderContractError):
    """Raised when a dev server process could not be started."""

    code = DEV_SERVER_SPAWN_FAILED


class DevServerPortConflictError(BuilderContractError):
    """Raised when the port requested for a dev server is already bound."""

    code = DEV_SERVER_PORT_CONFLICT

    def __init__(self, port: int) -> None:
        super().__init__(f"Port {port} is already in use", details={"port": port})
        self.port = port


class CacheError(BuilderContractError):
    """Raised when a build cache cannot be read or written.

    Cache errors are recoverable: the orchestrator falls back to a cold build.
    """

    code = CACHE_ERROR


class BuilderNotFoundError(BuilderContractError):
    """Raised when a builder identifier cannot be resolved."""

    code = BUILDER_NOT_FOUND

    def __init__(self, use: str, reason: str | None = None) -> None:
        message = f"Builder not found: {use}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, details={"use": use})
        self.use = use


class FileFetchError(BuilderContractError):
    """Raised when remote file content cannot be downloaded."""

    code = FILE_FETCH_ERROR


class UnsafePathError(BuilderContractError):
    """Raised when a Files key is absolute or escapes its destination."""

    code = UNSAFE_PATH

    def __init__(self, path: str) -> None:
        super().__init__(
            f"File path '{path}' must be relative and stay inside its directory",
            details={"path": path},
        )
        self.path = path


def error_to_dict(exc: BaseException) -> dict[str, Any]:
    """Convert an exception to a dictionary for JSON serialization.

    Args:
        exc: Exception to render.

    Returns:
        Dictionary with ``code``, ``message`` and, when present, ``details``.
    """
    code = getattr(exc, "code", None) or "internal_error"
    result: dict[str, Any] = {"code": code, "message": str(exc)}
    details = getattr(exc, "details", None)
    if details:
        result["details"] = details
    return result


__all__ = [
    "BUILDER_NOT_FOUND",
    "BUILDER_THREW",
    "CACHE_ERROR",
    "CONTRACT_ERROR",
    "CONTRACT_VIOLATION",
    "DEV_SERVER_PORT_CONFLICT",
    "DEV_SERVER_SPAWN_FAILED",
    "FILE_FETCH_ERROR",
    "INVALID_CONFIG",
    "MISSING_ENTRYPOINT",
    "UNSAFE_PATH",
    "UNSUPPORTED_ACCESS",
    "BuilderContractError",
    "BuilderNotFoundError",
    "BuilderThrewError",
    "CacheError",
    "ContractViolationError",
    "DevServerPortConflictError",
    "DevServerSpawnFailedError",
    "FileFetchError",
    "InvalidConfigError",
    "MissingEntrypointError",
    "UnsafePathError",
    "UnsupportedAccessError",
    "error_to_dict",
]
