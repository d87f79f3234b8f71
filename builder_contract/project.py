"""Project configuration loading.

This module provides:
- ``ProjectSchema``: builder records, image settings, project settings and
  per-function overrides, with unknown top-level keys preserved
- YAML/JSON import and export of project files
- ``PackageJson``: the read-only package manifest consulted for detection
- ``detect_builders()``: builder records for projects without any
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from builder_contract.builders import BuilderRecord
from builder_contract.builders.command import CommandBuilder
from builder_contract.builders.static import StaticBuilder
from builder_contract.errors import InvalidConfigError
from builder_contract.files import Files
from builder_contract.options import (
    Config,
    ExtensibleModel,
    FunctionConfig,
    ProjectSettings,
    validation_errors,
)
from builder_contract.outputs import Images

logger = logging.getLogger(__name__)

PACKAGE_JSON = "package.json"

# Checked in order; the first dependency present wins
FRAMEWORK_DEPENDENCIES: tuple[tuple[str, str], ...] = (
    ("next", "nextjs"),
    ("nuxt", "nuxtjs"),
    ("@sveltejs/kit", "sveltekit"),
    ("@remix-run/dev", "remix"),
    ("gatsby", "gatsby"),
    ("astro", "astro"),
    ("react-scripts", "create-react-app"),
    ("vite", "vite"),
)


class ProjectSchema(ExtensibleModel):
    """Schema for a project configuration file.

    Attributes:
        builds: Builder records, in resolution order.
        images: Image optimization settings.
        project_settings: Project-level settings.
        functions: Per-function overrides keyed by glob.
    """

    builds: list[BuilderRecord] | None = None
    images: Images | None = None
    project_settings: ProjectSettings | None = Field(
        default=None, alias="projectSettings"
    )
    functions: dict[str, FunctionConfig] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the raw project mapping, including unknown keys."""
        data: dict[str, Any] = {}
        if self.builds is not None:
            data["builds"] = [record.to_dict() for record in self.builds]
        if self.images is not None:
            data["images"] = self.images.to_dict()
        if self.project_settings is not None:
            data["projectSettings"] = self.project_settings.model_dump(
                by_alias=True, exclude_none=True
            )
        if self.functions is not None:
            data["functions"] = {
                pattern: f.model_dump(by_alias=True, exclude_none=True)
                for pattern, f in self.functions.items()
            }
        data.update(self.extensions)
        return data

    def builder_config(self, config: Config) -> Config:
        """Carry project-level ``functions`` and ``projectSettings`` into ``config``.

        Keys set on the builder record win. Record ``functions`` patterns are
        matched before project patterns and replace a project pattern of the
        same name; a record ``projectSettings`` replaces the project one.
        """
        if self.functions is None and self.project_settings is None:
            return config
        data = config.to_dict()
        if self.functions is not None:
            functions = dict(data.get("functions") or {})
            for pattern, f in self.functions.items():
                functions.setdefault(
                    pattern, f.model_dump(by_alias=True, exclude_none=True)
                )
            data["functions"] = functions
        if self.project_settings is not None and "projectSettings" not in data:
            data["projectSettings"] = self.project_settings.model_dump(
                by_alias=True, exclude_none=True
            )
        return Config.from_dict(data)


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the content is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        ValueError: If the content is not an object.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def parse_project_data(data: Mapping[str, Any]) -> ProjectSchema:
    """Validate raw project data.

    Raises:
        InvalidConfigError: If a well-known field has the wrong shape.
    """
    return ProjectSchema.from_dict(data)


def load_project(path: Path) -> ProjectSchema:
    """Load and validate a project file (YAML or JSON).

    File format is determined by extension (.yaml, .yml for YAML,
    .json for JSON).

    Raises:
        ValueError: If file extension is not supported.
        FileNotFoundError: If the file does not exist.
        InvalidConfigError: If the data does not match the schema.
    """
    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        data = load_yaml(path)
    elif suffix == ".json":
        data = load_json(path)
    else:
        raise ValueError(
            f"Unsupported file extension '{suffix}'. Use .yaml, .yml, or .json"
        )
    project = parse_project_data(data)
    logger.debug("Loaded project %s with %d build(s)", path, len(project.builds or []))
    return project


def export_project(project: ProjectSchema, path: Path) -> None:
    """Export a project to a file (YAML or JSON).

    Raises:
        ValueError: If file extension is not supported.
    """
    data = project.to_dict()
    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                data, f, default_flow_style=False, allow_unicode=True, sort_keys=False
            )
    elif suffix == ".json":
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
    else:
        raise ValueError(
            f"Unsupported file extension '{suffix}'. Use .yaml, .yml, or .json"
        )


class PackageJson(BaseModel):
    """Package manifest fields consulted for builder detection.

    Unknown keys are kept; the manifest is never written back.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    name: str | None = None
    version: str | None = None
    scripts: dict[str, str] = Field(default_factory=dict)
    dependencies: dict[str, str] = Field(default_factory=dict)
    dev_dependencies: dict[str, str] = Field(
        default_factory=dict, alias="devDependencies"
    )
    engines: dict[str, str] = Field(default_factory=dict)

    @field_validator("scripts", "dependencies", "dev_dependencies", "engines", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        """Treat explicit nulls as empty mappings."""
        return {} if v is None else v

    def has_dependency(self, name: str) -> bool:
        """Whether ``name`` is a runtime or development dependency."""
        return name in self.dependencies or name in self.dev_dependencies


def parse_package_json(data: bytes | str | Mapping[str, Any]) -> PackageJson:
    """Parse a package manifest from raw bytes, text or a mapping.

    Raises:
        InvalidConfigError: If the manifest is not valid JSON or has the
            wrong shape.
    """
    if isinstance(data, (bytes, str)):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise InvalidConfigError(f"Invalid {PACKAGE_JSON}: {e}") from e
    if not isinstance(data, Mapping):
        raise InvalidConfigError(
            f"{PACKAGE_JSON} must be an object, got {type(data).__name__}"
        )
    try:
        return PackageJson.model_validate(data)
    except ValidationError as e:
        errors = validation_errors(e)
        raise InvalidConfigError(f"Invalid {PACKAGE_JSON}", errors=errors) from e


def load_package_json(path: Path) -> PackageJson:
    """Load a package manifest from disk.

    Raises:
        FileNotFoundError: If the file does not exist.
        InvalidConfigError: If the manifest is invalid.
    """
    return parse_package_json(path.read_bytes())


def detect_framework(package_json: PackageJson) -> str | None:
    """Return the framework slug implied by the package dependencies."""
    for dependency, slug in FRAMEWORK_DEPENDENCIES:
        if package_json.has_dependency(dependency):
            return slug
    return None


def detect_builders(
    files: Files,
    package_json: PackageJson | None = None,
) -> list[BuilderRecord]:
    """Choose builder records for a project that declares none.

    A package manifest with a ``build`` script selects the command builder
    on ``package.json``; anything else is served as static files.

    Args:
        files: Project file snapshot.
        package_json: Parsed manifest; read from ``files`` when omitted.

    Returns:
        Builder records, in resolution order.
    """
    if package_json is None and PACKAGE_JSON in files:
        package_json = parse_package_json(files[PACKAGE_JSON].read_bytes())

    if package_json is not None and "build" in package_json.scripts:
        config: dict[str, Any] = {
            "zeroConfig": True,
            "installCommand": "npm install",
            "buildCommand": "npm run build",
        }
        if "dev" in package_json.scripts:
            config["devCommand"] = "npm run dev"
        framework = detect_framework(package_json)
        if framework:
            config["framework"] = framework
        node_version = package_json.engines.get("node")
        if node_version:
            config["nodeVersion"] = node_version
        logger.info(
            "Detected %s project, using %s",
            framework or "package",
            CommandBuilder.name,
        )
        return [BuilderRecord(use=CommandBuilder.name, src=PACKAGE_JSON, config=config)]

    logger.info("No build script found, using %s", StaticBuilder.name)
    return [BuilderRecord(use=StaticBuilder.name, src="**")]


__all__ = [
    "PACKAGE_JSON",
    "PackageJson",
    "ProjectSchema",
    "detect_builders",
    "detect_framework",
    "export_project",
    "load_json",
    "load_package_json",
    "load_project",
    "load_yaml",
    "parse_package_json",
    "parse_project_data",
]
