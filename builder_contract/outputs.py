"""Build output artifact models.

This module defines what a builder may produce:
- ``File`` handles, passed through as static assets
- ``Lambda``: a packaged serverless function
- ``EdgeFunction``: code for an edge runtime
- ``Prerender``: a precomputed page, the Lambda regenerating it and its
  freshness policy

plus the version 2 and version 3 build results, image optimization
settings and wildcard domain mappings. Every artifact carries an explicit
``kind`` tag (``OutputKind``); ``output_kind()`` dispatches on it.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from builder_contract.errors import ContractViolationError, InvalidConfigError
from builder_contract.files import File, FileBase, Files
from builder_contract.options import validation_errors
from builder_contract.types import ImageFormat, OutputKind

logger = logging.getLogger(__name__)

MANIFEST_VERSION = "1.0"

# Prerender bypass tokens must be long enough not to be guessable
MIN_BYPASS_TOKEN_LENGTH = 32


def _freeze_files(files: Files) -> Mapping[str, File]:
    if isinstance(files, MappingProxyType):
        return files
    return MappingProxyType(dict(files))


@dataclass(frozen=True)
class Lambda:
    """A packaged serverless function.

    Attributes:
        files: Files packaged with the function.
        handler: Entry module/function name the runtime invokes.
        runtime: Runtime identifier (e.g. ``nodejs18.x``, ``python3.12``).
        memory: Memory limit in MB.
        max_duration: Maximum execution time in seconds.
        environment: Environment variables baked into the function.
        regions: Regions the function is deployed to.
        allow_query: Query parameters that vary the cached response.
    """

    kind: ClassVar[OutputKind] = OutputKind.LAMBDA

    files: Files
    handler: str
    runtime: str
    memory: int | None = None
    max_duration: int | None = None
    environment: Mapping[str, str] = field(default_factory=dict)
    regions: tuple[str, ...] | None = None
    allow_query: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "files", _freeze_files(self.files))
        if not self.handler:
            raise ValueError("Lambda handler must be a non-empty string")
        if not self.runtime:
            raise ValueError("Lambda runtime must be a non-empty string")
        if self.memory is not None and self.memory < 128:
            raise ValueError(f"Lambda memory must be >= 128 MB, got {self.memory}")
        if self.max_duration is not None and self.max_duration < 1:
            raise ValueError(
                f"Lambda max_duration must be >= 1 second, got {self.max_duration}"
            )


@dataclass(frozen=True)
class EdgeFunction:
    """Code targeted at an edge runtime.

    Attributes:
        name: Function name.
        entrypoint: Path within ``files`` the runtime starts from.
        files: Files bundled with the function.
        deployment_target: Edge runtime the code targets.
        env_vars_in_use: Environment variable names the code reads.
        regions: Regions the function is deployed to.
    """

    kind: ClassVar[OutputKind] = OutputKind.EDGE_FUNCTION

    name: str
    entrypoint: str
    files: Files
    deployment_target: Literal["v8-worker"] = "v8-worker"
    env_vars_in_use: tuple[str, ...] = ()
    regions: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "files", _freeze_files(self.files))
        if not self.name:
            raise ValueError("EdgeFunction name must be a non-empty string")
        if self.entrypoint not in self.files:
            raise ValueError(
                f"EdgeFunction entrypoint '{self.entrypoint}' is not in its files"
            )


@dataclass(frozen=True)
class Prerender:
    """A prerendered page with its regenerating function.

    Attributes:
        expiration: Seconds before regeneration, or ``False`` to never expire.
        lambda_: Function that regenerates the page.
        fallback: Precomputed body served while regenerating.
        group: Pages in the same group are invalidated together.
        bypass_token: Secret that skips the prerendered copy.
        allow_query: Query parameters that vary the cached page.
    """

    kind: ClassVar[OutputKind] = OutputKind.PRERENDER

    expiration: int | Literal[False]
    lambda_: Lambda
    fallback: File | None = None
    group: int | None = None
    bypass_token: str | None = None
    allow_query: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        if self.expiration is not False and (
            isinstance(self.expiration, bool)
            or not isinstance(self.expiration, int)
            or self.expiration <= 0
        ):
            raise ValueError(
                f"Prerender expiration must be a positive integer or False, "
                f"got {self.expiration!r}"
            )
        if not isinstance(self.lambda_, Lambda):
            raise ValueError("Prerender lambda_ must be a Lambda")
        if self.group is not None and (
            isinstance(self.group, bool) or self.group <= 0
        ):
            raise ValueError(f"Prerender group must be > 0, got {self.group!r}")
        if self.bypass_token is not None and (
            len(self.bypass_token) < MIN_BYPASS_TOKEN_LENGTH
        ):
            raise ValueError(
                f"Prerender bypass_token must be at least "
                f"{MIN_BYPASS_TOKEN_LENGTH} characters"
            )


Output = Union[File, Lambda, EdgeFunction, Prerender]


def output_kind(artifact: object) -> OutputKind:
    """Return the kind tag of an output artifact.

    Raises:
        ContractViolationError: If the value is not an output artifact.
    """
    if isinstance(artifact, (FileBase, Lambda, EdgeFunction, Prerender)):
        return artifact.kind
    raise ContractViolationError(
        f"Not a build output artifact: {type(artifact).__name__}",
        details={"type": type(artifact).__name__},
    )


class Images(BaseModel):
    """Image optimization settings.

    Attributes:
        domains: Remote domains images may be loaded from.
        sizes: Widths images are resized to.
        minimum_cache_ttl: Minimum seconds optimized images are cached.
        formats: Output formats, restricted to ``ImageFormat``.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    domains: list[str]
    sizes: list[int]
    minimum_cache_ttl: int | None = Field(
        default=None, ge=0, alias="minimumCacheTTL"
    )
    formats: list[ImageFormat] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the raw camelCase mapping."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


def parse_images(data: Mapping[str, Any]) -> Images:
    """Validate raw image optimization settings.

    Args:
        data: Raw mapping.

    Returns:
        Validated Images instance.

    Raises:
        InvalidConfigError: If a field has the wrong shape or a format is
            outside the supported set.
    """
    try:
        return Images.model_validate(data)
    except ValidationError as e:
        errors = validation_errors(e)
        fields = ", ".join(err["loc"] for err in errors)
        raise InvalidConfigError(
            f"Invalid image settings: {fields}", errors=errors
        ) from e


@dataclass(frozen=True)
class WildcardDomain:
    """Maps a wildcard domain to a value rewritten into requests."""

    domain: str
    value: str


@dataclass(frozen=True)
class BuildResultV2:
    """Result of a version 2 build.

    Attributes:
        output: Mapping of deploy path to artifact.
        routes: Routing rules, passed through untouched.
        images: Image optimization settings.
        wildcard: Wildcard domain mappings.
    """

    output: Mapping[str, Output]
    routes: list[Any] | None = None
    images: Images | None = None
    wildcard: list[WildcardDomain] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "output", MappingProxyType(dict(self.output)))
        if isinstance(self.images, Mapping):
            object.__setattr__(self, "images", parse_images(self.images))


@dataclass(frozen=True)
class BuildResultV3:
    """Result of a version 3 build: exactly one Lambda."""

    output: Lambda

    def __post_init__(self) -> None:
        if not isinstance(self.output, Lambda):
            raise ContractViolationError(
                f"Version 3 build must output exactly one Lambda, "
                f"got {type(self.output).__name__}"
            )


BuildResult = Union[BuildResultV2, BuildResultV3]


def iter_artifacts(result: BuildResult) -> Iterator[tuple[str | None, Output]]:
    """Yield ``(path, artifact)`` pairs; a V3 Lambda has no path."""
    if isinstance(result, BuildResultV3):
        yield None, result.output
        return
    yield from result.output.items()


def iter_lambdas(result: BuildResult) -> Iterator[Lambda]:
    """Yield every Lambda in a result, including those behind Prerenders."""
    for _, artifact in iter_artifacts(result):
        if isinstance(artifact, Lambda):
            yield artifact
        elif isinstance(artifact, Prerender):
            yield artifact.lambda_


def missing_prerender_fallbacks(result: BuildResultV2) -> list[str]:
    """Return paths of Prerenders whose fallback is absent from the output.

    A fallback counts as present when the same File handle, or one with
    identical bytes, is an output value.
    """
    files_in_output = [a for a in result.output.values() if isinstance(a, FileBase)]
    missing: list[str] = []
    for path, artifact in result.output.items():
        if not isinstance(artifact, Prerender) or artifact.fallback is None:
            continue
        fallback = artifact.fallback
        if any(f is fallback or f == fallback for f in files_in_output):
            continue
        missing.append(path)
    return missing


def _describe(path: str | None, artifact: Output) -> dict[str, Any]:
    kind = output_kind(artifact)
    entry: dict[str, Any] = {"path": path, "kind": kind.value}
    if isinstance(artifact, FileBase):
        entry["type"] = artifact.type
        entry["mode"] = oct(artifact.mode)
        if artifact.content_type:
            entry["content_type"] = artifact.content_type
    elif isinstance(artifact, Lambda):
        entry["handler"] = artifact.handler
        entry["runtime"] = artifact.runtime
        entry["files"] = len(artifact.files)
        if artifact.memory is not None:
            entry["memory"] = artifact.memory
        if artifact.max_duration is not None:
            entry["max_duration"] = artifact.max_duration
    elif isinstance(artifact, EdgeFunction):
        entry["name"] = artifact.name
        entry["entrypoint"] = artifact.entrypoint
        entry["deployment_target"] = artifact.deployment_target
        entry["files"] = len(artifact.files)
    elif isinstance(artifact, Prerender):
        entry["expiration"] = artifact.expiration
        entry["group"] = artifact.group
        entry["has_fallback"] = artifact.fallback is not None
        entry["runtime"] = artifact.lambda_.runtime
    return entry


def generate_manifest(
    result: BuildResult,
    entrypoint: str | None = None,
    extra_metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate a JSON-serializable summary of a build result.

    The manifest contains:
    - One entry per artifact with kind-specific metadata
    - Routes, image settings and wildcard mappings for V2 results
    - Summary counts per kind

    Args:
        result: Build result to describe.
        entrypoint: Optional entrypoint the result belongs to.
        extra_metadata: Optional additional metadata.

    Returns:
        Manifest dictionary.
    """
    artifacts = [_describe(path, artifact) for path, artifact in iter_artifacts(result)]
    manifest: dict[str, Any] = {
        "version": MANIFEST_VERSION,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "builder_version": 3 if isinstance(result, BuildResultV3) else 2,
        "artifacts": artifacts,
    }
    if entrypoint:
        manifest["entrypoint"] = entrypoint
    if isinstance(result, BuildResultV2):
        if result.routes is not None:
            manifest["routes"] = result.routes
        if result.images is not None:
            manifest["images"] = result.images.to_dict()
        if result.wildcard is not None:
            manifest["wildcard"] = [
                {"domain": w.domain, "value": w.value} for w in result.wildcard
            ]
    if extra_metadata:
        manifest["metadata"] = extra_metadata

    kinds = Counter(a["kind"] for a in artifacts)
    manifest["summary"] = {
        "total_artifacts": len(artifacts),
        "kinds": dict(sorted(kinds.items())),
    }
    return manifest


__all__ = [
    "MANIFEST_VERSION",
    "BuildResult",
    "BuildResultV2",
    "BuildResultV3",
    "EdgeFunction",
    "Images",
    "Lambda",
    "Output",
    "Prerender",
    "WildcardDomain",
    "generate_manifest",
    "iter_artifacts",
    "iter_lambdas",
    "missing_prerender_fallbacks",
    "output_kind",
    "parse_images",
]
