"""Command-driven builder.

This module handles:
- Running the configured install and build commands in the work directory
- Capturing stdout/stderr to a log file and enforcing timeouts
- Packaging the result as a single Lambda
- Handing dependency directories to the build cache
- Running the configured dev command as a local dev server
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from builder_contract.builders.base import BuilderV3
from builder_contract.config import Settings, get_settings
from builder_contract.devserver import (
    DevServerHandle,
    find_free_port,
    kill_process,
    spawn_dev_server,
)
from builder_contract.files import FileBlob, FileFsRef, Files, download_files, glob_files
from builder_contract.options import BuildOptions, PrepareCacheOptions
from builder_contract.outputs import BuildResultV3, Lambda

logger = logging.getLogger(__name__)

SHELL = "/bin/sh"

# Directories handed to the build cache unless the config names others
DEFAULT_CACHE_DIRECTORIES = ("node_modules", ".cache")

# Dependency directories are never packaged into the function
PACKAGE_IGNORE = tuple(f"{d}/**" for d in DEFAULT_CACHE_DIRECTORIES)

LOG_DIR_NAME = ".builder-logs"


class CommandExecutionError(Exception):
    """Raised when a build command fails."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "command_error",
        log_path: Path | None = None,
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code
        self.log_path = log_path


@dataclass
class CommandResult:
    """Result of a command execution.

    Attributes:
        exit_code: Process exit code.
        log_path: Path to the log file.
        started_at: Start time.
        finished_at: Finish time.
        command: The command that was executed.
    """

    exit_code: int
    log_path: Path
    started_at: datetime
    finished_at: datetime
    command: str

    @property
    def success(self) -> bool:
        """Whether the command exited with status 0."""
        return self.exit_code == 0


def compose_shell_command(command: str) -> list[str]:
    """Wrap a command string for execution through the shell."""
    return [SHELL, "-c", command]


def compose_env(
    overlay: dict[str, str | None] | None = None,
    base: dict[str, str] | None = None,
) -> dict[str, str]:
    """Overlay variables on the environment; ``None`` values unset."""
    env = dict(os.environ if base is None else base)
    for key, value in (overlay or {}).items():
        if value is None:
            env.pop(key, None)
        else:
            env[key] = value
    return env


async def run_command(
    command: str,
    cwd: Path,
    log_path: Path,
    timeout: float | None = None,
    env: dict[str, str] | None = None,
) -> CommandResult:
    """Execute a shell command, appending its output to ``log_path``.

    Args:
        command: Shell command line.
        cwd: Working directory.
        log_path: Log file (created if missing).
        timeout: Timeout in seconds (None = no timeout).
        env: Full process environment (inherits when None).

    Returns:
        CommandResult with execution details.

    Raises:
        CommandExecutionError: If the command cannot start or times out.
    """
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Executing: %s", command)
    logger.info("Working directory: %s", cwd)

    started_at = datetime.now(timezone.utc)

    with log_path.open("a") as log_file:
        log_file.write(f"# Command: {command}\n")
        log_file.write(f"# Started: {started_at.isoformat()}\n")
        log_file.write(f"# CWD: {cwd}\n")
        log_file.write("# " + "=" * 70 + "\n\n")
        log_file.flush()

        try:
            process = await asyncio.create_subprocess_exec(
                *compose_shell_command(command),
                cwd=str(cwd),
                stdout=log_file,
                stderr=asyncio.subprocess.STDOUT,
                stdin=asyncio.subprocess.DEVNULL,
                env=env,
                start_new_session=True,
            )
        except OSError as e:
            message = f"Failed to execute command: {e}"
            logger.error(message)
            raise CommandExecutionError(
                message, code="execution_error", log_path=log_path
            ) from e

        try:
            exit_code = await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError as e:
            await kill_process(process)
            message = f"Command timed out after {timeout} seconds"
            logger.error("%s. See log: %s", message, log_path)
            log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
            raise CommandExecutionError(
                message, exit_code=-1, code="command_timeout", log_path=log_path
            ) from e
        except BaseException:
            await kill_process(process)
            logger.warning("Command interrupted, killed: %s", command)
            log_file.write("\n# INTERRUPTED\n")
            raise

        finished_at = datetime.now(timezone.utc)
        duration = (finished_at - started_at).total_seconds()
        log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
        log_file.write(f"# Exit code: {exit_code}\n")
        log_file.write(f"# Duration: {duration:.1f}s\n\n")

    if exit_code != 0:
        logger.error("Command failed with exit code %d. See log: %s", exit_code, log_path)

    return CommandResult(
        exit_code=exit_code,
        log_path=log_path,
        started_at=started_at,
        finished_at=finished_at,
        command=command,
    )


def files_size(files: Files) -> int:
    """Total size in bytes of locally readable files."""
    total = 0
    for file in files.values():
        if isinstance(file, FileFsRef):
            total += file.fs_path.stat().st_size
        elif isinstance(file, FileBlob):
            total += len(file.data)
    return total


class CommandBuilder(BuilderV3):
    """Runs ``installCommand`` and ``buildCommand``, packages one Lambda.

    The Lambda contains the files under ``outputDirectory`` when set, or the
    whole work directory otherwise. Its handler is the entrypoint and its
    runtime comes from the matching ``functions`` override, falling back to
    ``Settings.default_runtime``.
    """

    name = "@builder/command"

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    def _log_path(self, options: BuildOptions) -> Path:
        return options.work_path / LOG_DIR_NAME / "build.log"

    async def _prepare_work_path(self, options: BuildOptions) -> None:
        if options.meta is not None and options.meta.skip_download:
            return
        await download_files(options.files, options.work_path, meta=options.meta)

    async def _run_step(self, command: str, options: BuildOptions) -> None:
        overlay = options.meta.build_env if options.meta else None
        result = await run_command(
            command,
            cwd=options.work_path,
            log_path=self._log_path(options),
            timeout=self.settings.build_timeout,
            env=compose_env(overlay),
        )
        if not result.success:
            raise CommandExecutionError(
                f"'{command}' failed with exit code {result.exit_code}",
                exit_code=result.exit_code,
                code="build_failed",
                log_path=result.log_path,
            )

    async def build(self, options: BuildOptions) -> BuildResultV3:
        config = options.config
        await self._prepare_work_path(options)

        for command in (config.install_command, config.build_command):
            if command:
                await self._run_step(command, options)

        output_dir = options.work_path
        if config.output_directory:
            output_dir = options.work_path / config.output_directory
        ignore = (f"{LOG_DIR_NAME}/**", *PACKAGE_IGNORE)
        files = glob_files("**", output_dir, ignore=ignore)

        limit = config.max_lambda_size_bytes
        if limit is not None:
            size = files_size(files)
            if size > limit:
                raise CommandExecutionError(
                    f"Function size {size} bytes exceeds maxLambdaSize "
                    f"{config.max_lambda_size}",
                    code="lambda_too_large",
                )

        overrides = config.function_config(options.entrypoint)
        runtime = (overrides.runtime if overrides else None) or self.settings.default_runtime
        env_overlay = (options.meta.env if options.meta else None) or {}
        environment = {k: v for k, v in env_overlay.items() if v is not None}
        lambda_ = Lambda(
            files=files,
            handler=options.entrypoint,
            runtime=runtime,
            memory=overrides.memory if overrides else None,
            max_duration=overrides.max_duration if overrides else None,
            environment=environment,
        )
        logger.info(
            "Packaged %s as %s function with %d files",
            options.entrypoint,
            runtime,
            len(files),
        )
        return BuildResultV3(output=lambda_)

    async def prepare_cache(self, options: PrepareCacheOptions) -> Files:
        directories = options.config.extensions.get(
            "cacheDirectories", DEFAULT_CACHE_DIRECTORIES
        )
        cached: dict[str, FileFsRef] = {}
        for directory in directories:
            root = options.work_path / directory
            if not root.is_dir():
                continue
            for path, file in glob_files("**", root, ignore=()).items():
                cached[f"{directory}/{path}"] = file
        logger.info("Prepared %d cache files for %s", len(cached), options.entrypoint)
        return cached

    async def start_dev_server(self, options: BuildOptions) -> DevServerHandle | None:
        dev_command = options.config.dev_command
        if not dev_command:
            return None

        await self._prepare_work_path(options)
        host = self.settings.dev_server_host
        port = find_free_port(host)
        overlay = options.meta.env if options.meta else None
        return await spawn_dev_server(
            compose_shell_command(dev_command),
            cwd=options.work_path,
            port=port,
            env={**compose_env(overlay), "PORT": str(port)},
            host=host,
            timeout=self.settings.dev_server_timeout,
        )


__all__ = [
    "DEFAULT_CACHE_DIRECTORIES",
    "CommandBuilder",
    "CommandExecutionError",
    "CommandResult",
    "compose_env",
    "compose_shell_command",
    "files_size",
    "run_command",
]
