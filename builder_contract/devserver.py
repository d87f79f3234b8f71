"""Dev server spawn protocol.

This module handles:
- Spawning a long-lived local server process for a builder
- Waiting until the reported port accepts connections
- Tracking at most one running server per entrypoint
- Terminating servers by pid

A builder opts out by returning ``None`` from ``start_dev_server``; the
orchestrator then falls back to executing the packaged function.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import socket
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from builder_contract.config import Settings, get_settings
from builder_contract.errors import (
    BuilderContractError,
    BuilderThrewError,
    ContractViolationError,
    DevServerPortConflictError,
    DevServerSpawnFailedError,
)
from builder_contract.types import DevServerState

if TYPE_CHECKING:
    from builder_contract.builders.base import Builder
    from builder_contract.options import StartDevServerOptions

logger = logging.getLogger(__name__)

# Interval between connection attempts while waiting for a listener
POLL_INTERVAL = 0.1

# Seconds a terminated server gets before SIGKILL
STOP_GRACE_PERIOD = 5.0

# Processes spawned here, so stop() can reap them
_PROCESSES: dict[int, asyncio.subprocess.Process] = {}


@dataclass(frozen=True)
class DevServerHandle:
    """A running dev server: where to proxy and what to kill."""

    port: int
    pid: int

    def __post_init__(self) -> None:
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise ValueError(f"port must be an integer, got {self.port!r}")
        if not 0 < self.port < 65536:
            raise ValueError(f"port out of range: {self.port}")
        if isinstance(self.pid, bool) or not isinstance(self.pid, int) or self.pid <= 0:
            raise ValueError(f"pid must be a positive integer, got {self.pid!r}")

    def to_dict(self) -> dict[str, int]:
        """Return the handshake shape ``{port, pid}``."""
        return {"port": self.port, "pid": self.pid}


def find_free_port(host: str = "127.0.0.1") -> int:
    """Ask the OS for a port that is currently free on ``host``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        port: int = sock.getsockname()[1]
        return port


def is_port_in_use(port: int, host: str = "127.0.0.1") -> bool:
    """Return True if ``port`` cannot be bound on ``host``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return True
    return False


async def probe_port(port: int, host: str = "127.0.0.1", timeout: float = 1.0) -> bool:
    """Make one connection attempt; True if something is listening."""
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=timeout
        )
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()
    return True


async def wait_for_port(
    port: int,
    host: str = "127.0.0.1",
    timeout: float = 60.0,
    process: asyncio.subprocess.Process | None = None,
) -> bool:
    """Poll until ``port`` accepts connections.

    Args:
        port: Port to connect to.
        host: Host to connect to.
        timeout: Seconds to keep trying.
        process: If given, stop waiting as soon as it exits.

    Returns:
        True once a connection succeeds, False on timeout or process exit.
    """
    deadline = time.monotonic() + timeout
    while True:
        if await probe_port(port, host, timeout=POLL_INTERVAL * 5):
            return True
        if process is not None and process.returncode is not None:
            return False
        if time.monotonic() >= deadline:
            return False
        await asyncio.sleep(POLL_INTERVAL)


async def spawn_dev_server(
    command: Sequence[str],
    cwd: str | os.PathLike[str],
    port: int,
    env: Mapping[str, str] | None = None,
    host: str = "127.0.0.1",
    timeout: float | None = None,
) -> DevServerHandle:
    """Start a dev server process and block until it listens on ``port``.

    The process gets its own session so that stopping it also stops any
    children started through a shell.

    Args:
        command: Command and arguments.
        cwd: Working directory for the process.
        port: Port the process is expected to listen on.
        env: Full environment for the process (inherits when None).
        host: Host the process listens on.
        timeout: Seconds to wait for the listener; defaults to
            ``Settings.dev_server_timeout``.

    Returns:
        Handle with the port and pid.

    Raises:
        DevServerPortConflictError: If ``port`` is already bound.
        DevServerSpawnFailedError: If the process cannot start, exits, or
            never listens.
    """
    if timeout is None:
        timeout = get_settings().dev_server_timeout

    if is_port_in_use(port, host):
        raise DevServerPortConflictError(port)

    logger.info("Spawning dev server on %s:%d: %s", host, port, " ".join(command))
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(cwd),
            env=dict(env) if env is not None else None,
            stdin=asyncio.subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        raise DevServerSpawnFailedError(
            f"Failed to start dev server: {e}",
            details={"command": list(command)},
        ) from e

    _PROCESSES[process.pid] = process

    try:
        listening = await wait_for_port(port, host, timeout=timeout, process=process)
    except BaseException:
        await kill_process(process)
        raise

    if not listening:
        exit_code = process.returncode
        await terminate_process(process.pid)
        if exit_code is not None:
            message = f"Dev server exited with code {exit_code} before listening"
        else:
            message = f"Dev server did not listen on port {port} within {timeout}s"
        raise DevServerSpawnFailedError(
            message,
            details={"command": list(command), "port": port, "exit_code": exit_code},
        )

    logger.info("Dev server ready on %s:%d (pid=%d)", host, port, process.pid)
    return DevServerHandle(port=port, pid=process.pid)


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _send_signal(pid: int, sig: signal.Signals) -> None:
    try:
        pgid = os.getpgid(pid)
    except ProcessLookupError:
        return
    try:
        if pgid == pid and pgid != os.getpgid(0):
            os.killpg(pgid, sig)
        else:
            os.kill(pid, sig)
    except ProcessLookupError:
        pass


async def kill_process(process: asyncio.subprocess.Process) -> None:
    """SIGKILL the process group led by ``process``, then reap it.

    ``process`` must have been started with ``start_new_session=True``; the
    group is signalled even when the leader already exited, so children
    started through a shell do not outlive it.
    """
    _PROCESSES.pop(process.pid, None)
    with contextlib.suppress(ProcessLookupError):
        os.killpg(process.pid, signal.SIGKILL)
    await process.wait()


async def terminate_process(pid: int, grace_period: float = STOP_GRACE_PERIOD) -> None:
    """Send SIGTERM to ``pid``, then SIGKILL if it outlives ``grace_period``."""
    process = _PROCESSES.pop(pid, None)
    _send_signal(pid, signal.SIGTERM)

    if process is not None:
        try:
            await asyncio.wait_for(process.wait(), timeout=grace_period)
            return
        except asyncio.TimeoutError:
            logger.warning("Dev server %d ignored SIGTERM; killing", pid)
            _send_signal(pid, signal.SIGKILL)
            await process.wait()
            return

    deadline = time.monotonic() + grace_period
    while _pid_alive(pid):
        if time.monotonic() >= deadline:
            logger.warning("Dev server %d ignored SIGTERM; killing", pid)
            _send_signal(pid, signal.SIGKILL)
            return
        await asyncio.sleep(POLL_INTERVAL)


def _coerce_handle(entrypoint: str, value: Any) -> DevServerHandle:
    if isinstance(value, DevServerHandle):
        return value
    if isinstance(value, Mapping) and "port" in value and "pid" in value:
        try:
            return DevServerHandle(port=value["port"], pid=value["pid"])
        except ValueError as e:
            raise ContractViolationError(
                f"start_dev_server for {entrypoint} returned an invalid handle: {e}",
                details={"entrypoint": entrypoint},
            ) from e
    raise ContractViolationError(
        f"start_dev_server for {entrypoint} must return {{port, pid}} or None, "
        f"got {type(value).__name__}",
        details={"entrypoint": entrypoint},
    )


class DevServerManager:
    """Tracks dev servers, at most one per entrypoint.

    Starting a second server for an entrypoint before stopping the first is
    a caller error.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._servers: dict[str, DevServerHandle] = {}
        self._states: dict[str, DevServerState] = {}

    async def __aenter__(self) -> DevServerManager:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop_all()

    def state(self, entrypoint: str) -> DevServerState:
        """Return the lifecycle state for ``entrypoint``."""
        return self._states.get(entrypoint, DevServerState.NOT_STARTED)

    def get(self, entrypoint: str) -> DevServerHandle | None:
        """Return the running server for ``entrypoint``, if any."""
        return self._servers.get(entrypoint)

    @property
    def running(self) -> dict[str, DevServerHandle]:
        """Snapshot of running servers by entrypoint."""
        return dict(self._servers)

    async def start(
        self, builder: Builder, options: StartDevServerOptions
    ) -> DevServerHandle | None:
        """Ask ``builder`` to start a dev server for ``options.entrypoint``.

        Args:
            builder: Builder to ask.
            options: Same options ``build`` receives.

        Returns:
            Handle of the running server, or None when the builder declines.

        Raises:
            BuilderContractError: If a server is already running for the
                entrypoint.
            BuilderThrewError: If the builder's call rejected or outlived
                ``Settings.build_timeout``.
            ContractViolationError: If the result is malformed or nothing
                listens on the reported port.
        """
        entrypoint = options.entrypoint
        if entrypoint in self._servers:
            raise BuilderContractError(
                f"Dev server already running for {entrypoint}",
                code="dev_server_running",
                details={"entrypoint": entrypoint, **self._servers[entrypoint].to_dict()},
            )

        if not getattr(builder, "supports_dev_server", False):
            self._states[entrypoint] = DevServerState.DECLINED
            logger.info("Builder has no dev server for %s", entrypoint)
            return None

        self._states[entrypoint] = DevServerState.STARTING
        timeout = self.settings.build_timeout
        try:
            result = await asyncio.wait_for(
                builder.start_dev_server(options),  # type: ignore[union-attr]
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            self._states[entrypoint] = DevServerState.NOT_STARTED
            raise BuilderThrewError(
                entrypoint, "start_dev_server", f"timed out after {timeout} seconds"
            ) from e
        except (
            DevServerSpawnFailedError,
            DevServerPortConflictError,
            ContractViolationError,
            BuilderThrewError,
        ):
            self._states[entrypoint] = DevServerState.NOT_STARTED
            raise
        except Exception as e:
            self._states[entrypoint] = DevServerState.NOT_STARTED
            raise BuilderThrewError(entrypoint, "start_dev_server", str(e)) from e

        if result is None:
            self._states[entrypoint] = DevServerState.DECLINED
            logger.info("Builder declined to start a dev server for %s", entrypoint)
            return None

        try:
            handle = _coerce_handle(entrypoint, result)
        except ContractViolationError:
            self._states[entrypoint] = DevServerState.NOT_STARTED
            raise

        host = self.settings.dev_server_host
        if not await probe_port(handle.port, host):
            self._states[entrypoint] = DevServerState.NOT_STARTED
            await terminate_process(handle.pid)
            raise ContractViolationError(
                f"Dev server for {entrypoint} reported port {handle.port} "
                f"but nothing is listening",
                details={"entrypoint": entrypoint, **handle.to_dict()},
            )

        self._servers[entrypoint] = handle
        self._states[entrypoint] = DevServerState.RUNNING
        logger.info(
            "Dev server for %s running on port %d (pid=%d)",
            entrypoint,
            handle.port,
            handle.pid,
        )
        return handle

    async def stop(self, entrypoint: str) -> bool:
        """Stop the server for ``entrypoint``.

        Returns:
            True if a server was running and has been stopped.
        """
        handle = self._servers.pop(entrypoint, None)
        if handle is None:
            return False
        await terminate_process(handle.pid)
        self._states[entrypoint] = DevServerState.STOPPED
        logger.info("Stopped dev server for %s (pid=%d)", entrypoint, handle.pid)
        return True

    async def stop_all(self) -> None:
        """Stop every tracked server."""
        for entrypoint in list(self._servers):
            await self.stop(entrypoint)


__all__ = [
    "DevServerHandle",
    "DevServerManager",
    "find_free_port",
    "is_port_in_use",
    "kill_process",
    "probe_port",
    "spawn_dev_server",
    "terminate_process",
    "wait_for_port",
]
