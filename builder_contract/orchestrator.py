"""Build orchestration.

This module provides the high-level build API:
- plan_builds(): expand builder records into one job per entrypoint
- run_build(): version dispatch, timeout and failure wrapping for ``build``
- run_prepare_cache(): the same for ``prepare_cache``
- build_entrypoint(): cache restore, build, cache save for one job
- build_entrypoints(): many jobs, concurrent across entrypoints

Builder failures are isolated per entrypoint: every job yields an
``EntrypointOutcome`` and a failed job never affects its siblings.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from builder_contract.builders import Builder, BuilderRecord, BuilderV3, get_builder
from builder_contract.cache import CacheStore, compute_cache_key
from builder_contract.config import Settings, get_settings
from builder_contract.errors import (
    BuilderContractError,
    BuilderThrewError,
    CacheError,
    ContractViolationError,
    error_to_dict,
)
from builder_contract.files import Files, match_glob
from builder_contract.options import BuildOptions, Meta, PrepareCacheOptions
from builder_contract.outputs import (
    BuildResult,
    BuildResultV2,
    BuildResultV3,
    Lambda,
    WildcardDomain,
    generate_manifest,
    missing_prerender_fallbacks,
    output_kind,
)
from builder_contract.types import BuildStatus

if TYPE_CHECKING:
    from builder_contract.project import ProjectSchema

logger = logging.getLogger(__name__)


@dataclass
class BuildJob:
    """One builder invocation for one entrypoint.

    Attributes:
        builder: Resolved builder.
        options: Options handed to ``build``.
        use: Identifier the builder was resolved from.
    """

    builder: Builder
    options: BuildOptions
    use: str = ""

    @property
    def entrypoint(self) -> str:
        return self.options.entrypoint

    @property
    def cache_key(self) -> str:
        return compute_cache_key(self.use or self.builder.name, self.entrypoint)


@dataclass
class EntrypointOutcome:
    """Outcome of building one entrypoint.

    On failure ``result`` is always None: partial output is discarded.
    """

    entrypoint: str
    use: str
    status: BuildStatus = BuildStatus.PENDING
    result: BuildResult | None = None
    error: BuilderContractError | None = None
    cache_restored: bool = False
    cache_saved: bool = False
    cache_error: str | None = None
    warnings: list[str] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == BuildStatus.SUCCEEDED

    @property
    def duration(self) -> float | None:
        """Seconds between start and finish, if both are known."""
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: dict[str, Any] = {
            "entrypoint": self.entrypoint,
            "use": self.use,
            "status": self.status.value,
            "cache_restored": self.cache_restored,
            "cache_saved": self.cache_saved,
            "duration": self.duration,
        }
        if self.result is not None:
            data["manifest"] = generate_manifest(self.result, self.entrypoint)
        if self.error is not None:
            data["error"] = error_to_dict(self.error)
        if self.cache_error:
            data["cache_error"] = self.cache_error
        if self.warnings:
            data["warnings"] = list(self.warnings)
        return data


def _artifacts_of(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, BuildResultV2):
        return list(value.output.values())
    if isinstance(value, Mapping):
        if "output" in value:
            return _artifacts_of(value["output"])
        return list(value.values())
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def coerce_v3_result(entrypoint: str, value: Any) -> BuildResultV3:
    """Validate what a version 3 ``build`` resolved with.

    Accepts a ``BuildResultV3``, a bare ``Lambda``, or any container holding
    exactly one artifact that is a Lambda.

    Raises:
        ContractViolationError: If the value does not hold exactly one Lambda.
    """
    if isinstance(value, BuildResultV3):
        return value
    if isinstance(value, Lambda):
        return BuildResultV3(output=value)

    artifacts = _artifacts_of(value)
    if len(artifacts) == 1 and isinstance(artifacts[0], Lambda):
        return BuildResultV3(output=artifacts[0])
    raise ContractViolationError(
        f"Version 3 build for {entrypoint} must output exactly one Lambda, "
        f"got {len(artifacts)} artifact(s)",
        details={"entrypoint": entrypoint, "artifacts": len(artifacts)},
    )


def coerce_v2_result(entrypoint: str, value: Any) -> BuildResultV2:
    """Validate what a version 2 ``build`` resolved with.

    Accepts a ``BuildResultV2`` or a mapping of its fields.

    Raises:
        ContractViolationError: If the value has the wrong shape or an output
            value is not an artifact.
        InvalidConfigError: If the image settings are invalid.
    """
    if isinstance(value, BuildResultV2):
        result = value
    elif isinstance(value, Mapping) and isinstance(value.get("output"), Mapping):
        wildcard = value.get("wildcard")
        if wildcard is not None:
            try:
                wildcard = [
                    w if isinstance(w, WildcardDomain) else WildcardDomain(**w)
                    for w in wildcard
                ]
            except TypeError as e:
                raise ContractViolationError(
                    f"Invalid wildcard mapping from {entrypoint}: {e}",
                    details={"entrypoint": entrypoint},
                ) from e
        result = BuildResultV2(
            output=value["output"],
            routes=value.get("routes"),
            images=value.get("images"),
            wildcard=wildcard,
        )
    else:
        raise ContractViolationError(
            f"Version 2 build for {entrypoint} must resolve with an output "
            f"mapping, got {type(value).__name__}",
            details={"entrypoint": entrypoint},
        )

    for path, artifact in result.output.items():
        try:
            output_kind(artifact)
        except ContractViolationError as e:
            raise ContractViolationError(
                f"Output '{path}' of {entrypoint} is not an artifact: {e}",
                details={"entrypoint": entrypoint, "path": path},
            ) from e
    return result


async def _invoke(
    operation: str,
    entrypoint: str,
    call: Any,
    timeout: float | None,
) -> Any:
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except (BuilderThrewError, ContractViolationError):
        raise
    except asyncio.TimeoutError as e:
        raise BuilderThrewError(
            entrypoint, operation, f"timed out after {timeout} seconds"
        ) from e
    except Exception as e:
        raise BuilderThrewError(entrypoint, operation, str(e) or type(e).__name__) from e


async def run_build(
    builder: Builder,
    options: BuildOptions,
    settings: Settings | None = None,
) -> BuildResult:
    """Run ``builder.build`` and validate the result against its version.

    Args:
        builder: Builder to invoke.
        options: Build options.
        settings: Optional settings; uses default if not provided.

    Returns:
        ``BuildResultV3`` for version 3 builders, ``BuildResultV2`` otherwise.

    Raises:
        BuilderThrewError: If ``build`` raised or timed out.
        ContractViolationError: If the result does not match the version.
        InvalidConfigError: If the result carries invalid image settings.
    """
    if settings is None:
        settings = get_settings()
    entrypoint = options.entrypoint

    logger.info("Building %s with %r", entrypoint, builder)
    value = await _invoke(
        "build", entrypoint, builder.build(options), settings.build_timeout
    )

    if isinstance(builder, BuilderV3):
        return coerce_v3_result(entrypoint, value)

    return coerce_v2_result(entrypoint, value)


async def run_prepare_cache(
    builder: Builder,
    options: PrepareCacheOptions,
    settings: Settings | None = None,
) -> Files | None:
    """Run ``builder.prepare_cache`` for a succeeded build.

    Returns:
        Files to cache, or None if the builder does not prepare caches.

    Raises:
        BuilderThrewError: If ``prepare_cache`` raised or timed out.
        ContractViolationError: If it resolved with something other than Files.
    """
    if not builder.supports_prepare_cache:
        return None
    if settings is None:
        settings = get_settings()

    files = await _invoke(
        "prepare_cache",
        options.entrypoint,
        builder.prepare_cache(options),
        settings.prepare_cache_timeout,
    )
    if files is None:
        return None
    if not isinstance(files, Mapping):
        raise ContractViolationError(
            f"prepare_cache for {options.entrypoint} must return Files, "
            f"got {type(files).__name__}",
            details={"entrypoint": options.entrypoint},
        )
    return files


async def build_entrypoint(
    job: BuildJob,
    settings: Settings | None = None,
    cache_store: CacheStore | None = None,
) -> EntrypointOutcome:
    """Build one entrypoint, restoring and saving its cache around the build.

    Never raises for builder or cache failures; they are recorded on the
    returned outcome.
    """
    if settings is None:
        settings = get_settings()
    options = job.options
    outcome = EntrypointOutcome(
        entrypoint=job.entrypoint,
        use=job.use or job.builder.name,
        status=BuildStatus.RUNNING,
        started_at=datetime.now(timezone.utc),
    )

    try:
        options.work_path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        outcome.status = BuildStatus.FAILED
        outcome.error = BuilderContractError(
            f"Cannot create work directory {options.work_path}: {e}",
            code="work_path_error",
        )
        outcome.finished_at = datetime.now(timezone.utc)
        return outcome

    if cache_store is not None:
        try:
            restored = await cache_store.restore(job.cache_key, options.work_path)
            outcome.cache_restored = restored is not None
        except CacheError as e:
            logger.warning("Cache restore failed for %s, building cold: %s", job.entrypoint, e)
            outcome.cache_error = str(e)

    try:
        result = await run_build(job.builder, options, settings)
    except BuilderContractError as e:
        logger.error("Build failed for %s: %s", job.entrypoint, e)
        outcome.status = BuildStatus.FAILED
        outcome.error = e
        outcome.finished_at = datetime.now(timezone.utc)
        return outcome

    outcome.status = BuildStatus.SUCCEEDED
    outcome.result = result
    if isinstance(result, BuildResultV2):
        for path in missing_prerender_fallbacks(result):
            logger.warning(
                "Prerender %s of %s declares a fallback missing from the output",
                path,
                job.entrypoint,
            )
            outcome.warnings.append(f"Prerender {path} fallback missing from output")

    if cache_store is not None and job.builder.supports_prepare_cache:
        try:
            files = await run_prepare_cache(job.builder, options.cache_options(), settings)
            if files is not None:
                await cache_store.save(job.cache_key, files)
                outcome.cache_saved = True
        except (BuilderThrewError, ContractViolationError, CacheError) as e:
            logger.warning("Cache not saved for %s: %s", job.entrypoint, e)
            outcome.cache_error = str(e)

    outcome.finished_at = datetime.now(timezone.utc)
    logger.info(
        "Built %s in %.2fs", job.entrypoint, outcome.duration or 0.0
    )
    return outcome


async def build_entrypoints(
    jobs: Sequence[BuildJob],
    settings: Settings | None = None,
    cache_store: CacheStore | None = None,
) -> list[EntrypointOutcome]:
    """Build many entrypoints.

    Jobs for distinct entrypoints run concurrently, at most
    ``settings.max_concurrent_builds`` at a time. Jobs for the same
    entrypoint run one at a time in the given order.

    Returns:
        One outcome per job, in job order.
    """
    if settings is None:
        settings = get_settings()
    semaphore = asyncio.Semaphore(settings.max_concurrent_builds)
    locks: dict[str, asyncio.Lock] = {}
    for job in jobs:
        locks.setdefault(job.entrypoint, asyncio.Lock())

    async def _run(job: BuildJob) -> EntrypointOutcome:
        async with locks[job.entrypoint]:
            async with semaphore:
                return await build_entrypoint(job, settings, cache_store)

    outcomes = await asyncio.gather(*(_run(job) for job in jobs))
    failed = sum(1 for o in outcomes if not o.succeeded)
    logger.info("Built %d entrypoint(s), %d failed", len(outcomes), failed)
    return list(outcomes)


def _work_dir_name(use: str, entrypoint: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", f"{use}--{entrypoint}").strip("_")


def plan_builds(
    records: Iterable[BuilderRecord],
    files: Files,
    work_root: Path,
    repo_root: Path | None = None,
    meta: Meta | None = None,
    resolve: Callable[[str], Builder] = get_builder,
    project: ProjectSchema | None = None,
) -> list[BuildJob]:
    """Expand builder records into one job per matching entrypoint.

    Args:
        records: Builder records in project order.
        files: Project file snapshot shared by every job.
        work_root: Parent of the per-job work directories.
        repo_root: Optional repository root for monorepos.
        meta: Optional per-invocation metadata.
        resolve: Builder lookup (defaults to the registry).
        project: Project whose ``functions`` and ``projectSettings`` are
            carried into every record config.

    Returns:
        Build jobs in record order, entrypoints sorted within a record.

    Raises:
        BuilderNotFoundError: If a record names an unknown builder.
        ContractViolationError: If a builder export has an invalid shape.
    """
    jobs: list[BuildJob] = []
    for record in records:
        matches = sorted(path for path in files if match_glob(record.src, path))
        if not matches:
            logger.warning("No files match %s for %s", record.src, record.use)
            continue
        builder = resolve(record.use)
        config = record.config
        if project is not None:
            config = project.builder_config(config)
        for entrypoint in matches:
            options = BuildOptions(
                files=files,
                entrypoint=entrypoint,
                work_path=Path(work_root) / _work_dir_name(record.use, entrypoint),
                repo_root_path=repo_root,
                config=config,
                meta=meta,
            )
            jobs.append(BuildJob(builder=builder, options=options, use=record.use))
    logger.debug("Planned %d build job(s)", len(jobs))
    return jobs


__all__ = [
    "BuildJob",
    "EntrypointOutcome",
    "build_entrypoint",
    "build_entrypoints",
    "coerce_v2_result",
    "coerce_v3_result",
    "plan_builds",
    "run_build",
    "run_prepare_cache",
]
