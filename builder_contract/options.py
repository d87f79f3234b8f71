"""Build option models.

This module defines the inputs handed to a builder:
- ``Config``: well-known knobs plus an explicit map of builder-specific keys
- ``Meta``: per-invocation flags (dev mode, changed files, env overlays)
- ``BuildOptions`` / ``PrepareCacheOptions`` / ``ShouldServeOptions``

Config and Meta are parsed from the camelCase shape found in project
configuration files. Keys that are not well-known are kept verbatim in
``extensions`` and written back unchanged by ``to_dict()``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from builder_contract.errors import InvalidConfigError, MissingEntrypointError
from builder_contract.files import Files

# e.g. 50mb, 250 MB, 1.5gb
SIZE_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)\s*(b|kb|mb|gb)$", re.IGNORECASE)

_SIZE_UNITS = {"b": 1, "kb": 1024, "mb": 1024**2, "gb": 1024**3}

ModelT = TypeVar("ModelT", bound="ExtensibleModel")


def validation_errors(exc: ValidationError) -> list[dict[str, Any]]:
    """Reduce pydantic errors to JSON-friendly dictionaries."""
    return [
        {
            "loc": ".".join(str(part) for part in err["loc"]),
            "msg": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]


def parse_size(value: str) -> int:
    """Parse a human size such as ``50mb`` into bytes.

    Raises:
        ValueError: If the value is not a recognised size.
    """
    match = SIZE_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"invalid size '{value}'")
    return int(float(match.group(1)) * _SIZE_UNITS[match.group(2).lower()])


class FunctionConfig(BaseModel):
    """Per-function resource overrides, keyed by a glob in ``functions``."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    memory: int | None = Field(default=None, ge=128, le=10240)
    max_duration: int | None = Field(default=None, ge=1, alias="maxDuration")
    runtime: str | None = Field(default=None, min_length=1)
    include_files: str | None = Field(default=None, alias="includeFiles")
    exclude_files: str | None = Field(default=None, alias="excludeFiles")


class ProjectSettings(BaseModel):
    """Project-level settings forwarded to builders."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    framework: str | None = None
    dev_command: str | None = Field(default=None, alias="devCommand")
    install_command: str | None = Field(default=None, alias="installCommand")
    build_command: str | None = Field(default=None, alias="buildCommand")
    output_directory: str | None = Field(default=None, alias="outputDirectory")
    root_directory: str | None = Field(default=None, alias="rootDirectory")
    created_at: int | None = Field(default=None, alias="createdAt")
    auto_expose_system_envs: bool | None = Field(
        default=None, alias="autoExposeSystemEnvs"
    )
    source_files_outside_root_directory: bool | None = Field(
        default=None, alias="sourceFilesOutsideRootDirectory"
    )
    directory_listing: bool | None = Field(default=None, alias="directoryListing")
    git_fork_protection: bool | None = Field(default=None, alias="gitForkProtection")


class ExtensibleModel(BaseModel):
    """Fixed set of known fields plus an opaque ``extensions`` map.

    Use ``from_dict()`` to parse the raw camelCase shape and ``to_dict()``
    to write it back.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    extensions: dict[str, Any] = Field(
        default_factory=dict, description="Keys that are not well-known"
    )

    @classmethod
    def known_keys(cls) -> frozenset[str]:
        """Raw keys that map onto typed fields."""
        return frozenset(
            info.alias or name
            for name, info in cls.model_fields.items()
            if name != "extensions"
        )

    @classmethod
    def from_dict(cls: type[ModelT], data: Mapping[str, Any] | None) -> ModelT:
        """Parse a raw mapping, preserving unknown keys.

        Args:
            data: Raw mapping (``None`` is treated as empty).

        Returns:
            Validated model instance.

        Raises:
            InvalidConfigError: If a well-known field has the wrong shape.
        """
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise InvalidConfigError(
                f"{cls.__name__} must be a mapping, got {type(data).__name__}"
            )
        known_keys = cls.known_keys()
        known = {k: v for k, v in data.items() if k in known_keys}
        extensions = {k: v for k, v in data.items() if k not in known_keys}
        try:
            return cls.model_validate({**known, "extensions": extensions})
        except ValidationError as e:
            errors = validation_errors(e)
            fields = ", ".join(err["loc"] for err in errors)
            raise InvalidConfigError(
                f"Invalid {cls.__name__} field(s): {fields}", errors=errors
            ) from e

    def to_dict(self) -> dict[str, Any]:
        """Return the raw mapping, including unknown keys."""
        data = self.model_dump(
            by_alias=True, exclude_unset=True, exclude={"extensions"}
        )
        data.update(self.extensions)
        return data

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a raw key, well-known or not."""
        return self.to_dict().get(key, default)


class Config(ExtensibleModel):
    """Builder configuration from a builder record.

    Attributes:
        max_lambda_size: Size limit for packaged functions (e.g. ``50mb``).
        include_files: Glob(s) of extra files to package.
        exclude_files: Glob(s) of files to leave out.
        functions: Per-function overrides keyed by glob.
        project_settings: Project-level settings.
        output_directory: Directory holding static output.
        install_command: Command installing dependencies.
        build_command: Command producing build output.
        dev_command: Command starting a local dev server.
        framework: Detected or configured framework slug.
        node_version: Requested runtime version.
    """

    max_lambda_size: str | None = Field(default=None, alias="maxLambdaSize")
    include_files: str | list[str] | None = Field(default=None, alias="includeFiles")
    exclude_files: str | list[str] | None = Field(default=None, alias="excludeFiles")
    bundle: bool | None = None
    ldsflags: str | None = None
    helpers: bool | None = None
    rust: str | None = None
    debug: bool | None = None
    zero_config: bool | None = Field(default=None, alias="zeroConfig")
    import_map: dict[str, str] | None = Field(default=None, alias="import")
    functions: dict[str, FunctionConfig] | None = None
    project_settings: ProjectSettings | None = Field(
        default=None, alias="projectSettings"
    )
    output_directory: str | None = Field(default=None, alias="outputDirectory")
    install_command: str | None = Field(default=None, alias="installCommand")
    build_command: str | None = Field(default=None, alias="buildCommand")
    dev_command: str | None = Field(default=None, alias="devCommand")
    framework: str | None = None
    node_version: str | None = Field(default=None, alias="nodeVersion")

    @field_validator("max_lambda_size")
    @classmethod
    def validate_max_lambda_size(cls, v: str | None) -> str | None:
        """Validate the size has a number and a unit."""
        if v is None:
            return v
        if not SIZE_PATTERN.match(v.strip()):
            raise ValueError(f"maxLambdaSize must look like '50mb', got '{v}'")
        return v

    @property
    def max_lambda_size_bytes(self) -> int | None:
        """``max_lambda_size`` in bytes, if set."""
        if self.max_lambda_size is None:
            return None
        return parse_size(self.max_lambda_size)

    def function_config(self, path: str) -> FunctionConfig | None:
        """Return the first ``functions`` override whose glob matches ``path``."""
        from builder_contract.files import match_glob

        for pattern, overrides in (self.functions or {}).items():
            if match_glob(pattern, path):
                return overrides
        return None


class Meta(ExtensibleModel):
    """Per-invocation metadata, used by local development.

    Attributes:
        is_dev: Whether the build runs for a local dev session.
        dev_cache_dir: Directory builders may keep dev caches in.
        skip_download: Files are already present in the work directory.
        request_path: Path of the request that triggered the build.
        files_changed: Paths changed since the last dev build.
        files_removed: Paths removed since the last dev build.
        env: Runtime environment overlay.
        build_env: Build-time environment overlay.
    """

    is_dev: bool | None = Field(default=None, alias="isDev")
    dev_cache_dir: str | None = Field(default=None, alias="devCacheDir")
    skip_download: bool | None = Field(default=None, alias="skipDownload")
    request_path: str | None = Field(default=None, alias="requestPath")
    files_changed: list[str] | None = Field(default=None, alias="filesChanged")
    files_removed: list[str] | None = Field(default=None, alias="filesRemoved")
    env: dict[str, str | None] | None = None
    build_env: dict[str, str | None] | None = Field(default=None, alias="buildEnv")
    avoid_top_level_install: bool | None = Field(
        default=None, alias="avoidTopLevelInstall"
    )


def _coerce_config(value: Config | Mapping[str, Any] | None) -> Config:
    if isinstance(value, Config):
        return value
    return Config.from_dict(value)


@dataclass(frozen=True)
class PrepareCacheOptions:
    """Options for ``prepare_cache``: a completed build, without Meta.

    Attributes:
        files: Read-only snapshot of all project files.
        entrypoint: The single file the build was for.
        work_path: Writable scratch directory of the build.
        repo_root_path: Repository root for monorepos.
        config: Builder configuration.
    """

    files: Files
    entrypoint: str
    work_path: Path
    repo_root_path: Path | None = None
    config: Config = field(default_factory=Config)

    def __post_init__(self) -> None:
        if not isinstance(self.files, MappingProxyType):
            object.__setattr__(self, "files", MappingProxyType(dict(self.files)))
        if self.entrypoint not in self.files:
            raise MissingEntrypointError(self.entrypoint)
        object.__setattr__(self, "work_path", Path(self.work_path))
        if self.repo_root_path is not None:
            object.__setattr__(self, "repo_root_path", Path(self.repo_root_path))
        object.__setattr__(self, "config", _coerce_config(self.config))

    @property
    def entrypoint_file(self):
        """The File the entrypoint names."""
        return self.files[self.entrypoint]


@dataclass(frozen=True)
class BuildOptions(PrepareCacheOptions):
    """Options for ``build`` and ``start_dev_server``.

    The entrypoint is always a key of ``files`` and always a single path,
    never a glob.
    """

    meta: Meta | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.meta is not None and not isinstance(self.meta, Meta):
            object.__setattr__(self, "meta", Meta.from_dict(self.meta))

    @property
    def is_dev(self) -> bool:
        """Whether this invocation is part of a local dev session."""
        return bool(self.meta and self.meta.is_dev)

    def cache_options(self) -> PrepareCacheOptions:
        """Derive the reduced options handed to ``prepare_cache``."""
        return PrepareCacheOptions(
            files=self.files,
            entrypoint=self.entrypoint,
            work_path=self.work_path,
            repo_root_path=self.repo_root_path,
            config=self.config,
        )


StartDevServerOptions = BuildOptions


@dataclass(frozen=True)
class ShouldServeOptions:
    """Options for deciding whether an entrypoint serves a request path."""

    request_path: str
    entrypoint: str
    files: Files
    work_path: Path
    config: Config = field(default_factory=Config)


def should_serve(options: ShouldServeOptions) -> bool:
    """Default request matching for dev sessions.

    An entrypoint serves a request when the request path names it exactly,
    names it without its extension, or names the directory of an ``index.*``
    entrypoint.

    Args:
        options: Request and entrypoint to match.

    Returns:
        True if the entrypoint should handle the request.
    """
    request_path = options.request_path.strip("/")
    entrypoint = options.entrypoint.replace("\\", "/")
    if entrypoint not in options.files:
        return False
    if request_path == entrypoint:
        return True

    entry = PurePosixPath(entrypoint)
    without_ext = entry.with_suffix("").as_posix()
    if request_path == without_ext:
        return True

    parent = "" if entry.parent.as_posix() == "." else entry.parent.as_posix()
    return entry.stem == "index" and request_path == parent


__all__ = [
    "BuildOptions",
    "Config",
    "ExtensibleModel",
    "FunctionConfig",
    "Meta",
    "PrepareCacheOptions",
    "ProjectSettings",
    "ShouldServeOptions",
    "StartDevServerOptions",
    "parse_size",
    "should_serve",
    "validation_errors",
]
