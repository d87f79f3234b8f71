"""Builder contract base classes.

Builders come in two incompatible lifecycle shapes, selected by the
``version`` tag:

- ``BuilderV2``: ``build`` returns a ``BuildResultV2`` (any number of
  artifacts plus routes, images and wildcard mappings).
- ``BuilderV3``: ``build`` returns a ``BuildResultV3`` (exactly one Lambda),
  and the builder may also start a local dev server.

Both may implement ``prepare_cache``. Optional operations are advertised
through explicit capability flags (``supports_prepare_cache``,
``supports_dev_server``), which are switched on automatically when a
subclass overrides the operation.
"""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, ClassVar, Literal, Union

from builder_contract.devserver import DevServerHandle
from builder_contract.errors import ContractViolationError
from builder_contract.files import Files
from builder_contract.options import (
    BuildOptions,
    PrepareCacheOptions,
    StartDevServerOptions,
)
from builder_contract.outputs import BuildResultV2, BuildResultV3

logger = logging.getLogger(__name__)

SUPPORTED_VERSIONS = (2, 3)


class _BuilderBase(ABC):
    version: ClassVar[int]
    name: ClassVar[str] = ""

    supports_prepare_cache: bool = False

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if "prepare_cache" in cls.__dict__ and "supports_prepare_cache" not in cls.__dict__:
            cls.supports_prepare_cache = True

    async def prepare_cache(self, options: PrepareCacheOptions) -> Files:
        """Return the files to restore before the next build of the entrypoint."""
        raise NotImplementedError(f"{type(self).__name__} does not prepare caches")

    def __repr__(self) -> str:
        label = self.name or type(self).__name__
        return f"<{type(self).__name__}(name='{label}', version={self.version})>"


class BuilderV2(_BuilderBase):
    """Version 2 builder: any number of artifacts per build."""

    version: ClassVar[Literal[2]] = 2

    @abstractmethod
    async def build(self, options: BuildOptions) -> BuildResultV2:
        """Build ``options.entrypoint``."""


class BuilderV3(_BuilderBase):
    """Version 3 builder: exactly one Lambda per build, optional dev server."""

    version: ClassVar[Literal[3]] = 3

    supports_dev_server: bool = False

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if (
            "start_dev_server" in cls.__dict__
            and "supports_dev_server" not in cls.__dict__
        ):
            cls.supports_dev_server = True

    @abstractmethod
    async def build(self, options: BuildOptions) -> BuildResultV3:
        """Build ``options.entrypoint`` into a single Lambda."""

    async def start_dev_server(
        self, options: StartDevServerOptions
    ) -> DevServerHandle | None:
        """Start a dev server, or return None to opt out."""
        raise NotImplementedError(f"{type(self).__name__} has no dev server")


Builder = Union[BuilderV2, BuilderV3]


async def _call(func: Callable[..., Any], *args: Any) -> Any:
    result = func(*args)
    if inspect.isawaitable(result):
        return await result
    return result


class ModuleBuilderV2(BuilderV2):
    """Version 2 builder backed by a module exporting the manifest shape."""

    def __init__(self, source: Any, name: str = "") -> None:
        self.source = source
        self.label = name
        self._build: Callable[..., Any] = source.build
        self._prepare_cache: Callable[..., Awaitable[Any]] | None = getattr(
            source, "prepare_cache", None
        )
        self.supports_prepare_cache = callable(self._prepare_cache)

    async def build(self, options: BuildOptions) -> Any:  # type: ignore[override]
        return await _call(self._build, options)

    async def prepare_cache(self, options: PrepareCacheOptions) -> Files:
        if self._prepare_cache is None:
            return await super().prepare_cache(options)
        files: Files = await _call(self._prepare_cache, options)
        return files

    def __repr__(self) -> str:
        return f"<ModuleBuilderV2(name='{self.label}')>"


class ModuleBuilderV3(BuilderV3):
    """Version 3 builder backed by a module exporting the manifest shape."""

    def __init__(self, source: Any, name: str = "") -> None:
        self.source = source
        self.label = name
        self._build: Callable[..., Any] = source.build
        self._prepare_cache: Callable[..., Any] | None = getattr(
            source, "prepare_cache", None
        )
        self._start_dev_server: Callable[..., Any] | None = getattr(
            source, "start_dev_server", None
        )
        self.supports_prepare_cache = callable(self._prepare_cache)
        self.supports_dev_server = callable(self._start_dev_server)

    async def build(self, options: BuildOptions) -> Any:  # type: ignore[override]
        return await _call(self._build, options)

    async def prepare_cache(self, options: PrepareCacheOptions) -> Files:
        if self._prepare_cache is None:
            return await super().prepare_cache(options)
        files: Files = await _call(self._prepare_cache, options)
        return files

    async def start_dev_server(
        self, options: StartDevServerOptions
    ) -> DevServerHandle | None:
        if self._start_dev_server is None:
            return await super().start_dev_server(options)
        result: DevServerHandle | None = await _call(self._start_dev_server, options)
        return result

    def __repr__(self) -> str:
        return f"<ModuleBuilderV3(name='{self.label}')>"


def adapt_builder(source: Any, name: str = "") -> Builder:
    """Turn a loaded builder export into a Builder.

    Accepts a builder instance, a builder class (instantiated with no
    arguments), or any object exporting ``version`` and ``build`` (plus
    optional ``prepare_cache`` and, for version 3, ``start_dev_server``).

    Args:
        source: Loaded export.
        name: Identifier the builder was loaded under.

    Returns:
        Builder instance.

    Raises:
        ContractViolationError: If the export does not have a valid shape.
    """
    if isinstance(source, (BuilderV2, BuilderV3)):
        return source
    if isinstance(source, type) and issubclass(source, (BuilderV2, BuilderV3)):
        return source()

    version = getattr(source, "version", None)
    if version not in SUPPORTED_VERSIONS:
        raise ContractViolationError(
            f"Builder '{name}' declares unsupported version {version!r}; "
            f"expected one of {SUPPORTED_VERSIONS}",
            details={"use": name, "version": version},
        )
    if not callable(getattr(source, "build", None)):
        raise ContractViolationError(
            f"Builder '{name}' does not export a callable build",
            details={"use": name},
        )
    if version == 2:
        if getattr(source, "start_dev_server", None) is not None:
            raise ContractViolationError(
                f"Builder '{name}' exports start_dev_server but declares version 2",
                details={"use": name, "version": version},
            )
        return ModuleBuilderV2(source, name=name)
    return ModuleBuilderV3(source, name=name)


__all__ = [
    "SUPPORTED_VERSIONS",
    "Builder",
    "BuilderV2",
    "BuilderV3",
    "ModuleBuilderV2",
    "ModuleBuilderV3",
    "adapt_builder",
]
