"""Builder registry.

Resolves the ``use`` identifier of a builder record to a Builder:
built-in builders first, then the ``builder_contract.builders`` entry point
group, then ``module:attribute`` (or bare module) import paths.
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Callable
from functools import lru_cache
from importlib import metadata
from typing import Any

from builder_contract.builders.base import Builder, adapt_builder
from builder_contract.builders.command import CommandBuilder
from builder_contract.builders.static import StaticBuilder
from builder_contract.errors import BuilderNotFoundError

logger = logging.getLogger(__name__)

BUILDER_ENTRYPOINT_GROUP = "builder_contract.builders"

BuilderFactory = Callable[[], Any]

_BUILTIN_BUILDERS: dict[str, BuilderFactory] = {
    StaticBuilder.name: StaticBuilder,
    CommandBuilder.name: CommandBuilder,
}


def parse_use(use: str) -> tuple[str, str | None]:
    """Split ``name@version`` into its parts.

    A leading ``@`` belongs to a scoped name, not to the version.

    Examples:
        ``@builder/static@1.2.0`` -> (``@builder/static``, ``1.2.0``)
        ``mybuilder`` -> (``mybuilder``, None)
    """
    name, sep, version = use.rpartition("@")
    if not sep or not name:
        return use, None
    return name, version or None


def _load_builder_entrypoints() -> dict[str, BuilderFactory]:
    """Load builder exports from package entrypoints."""
    factories: dict[str, BuilderFactory] = {}
    for entry_point in metadata.entry_points(group=BUILDER_ENTRYPOINT_GROUP):
        factories[entry_point.name] = entry_point.load
    return factories


@lru_cache(maxsize=1)
def _builder_factories() -> dict[str, BuilderFactory]:
    """Return merged builder factories from built-ins and entrypoints."""
    factories = dict(_BUILTIN_BUILDERS)
    for name, factory in _load_builder_entrypoints().items():
        if name in factories:
            logger.warning("Builder '%s' already registered; skipping entrypoint.", name)
            continue
        factories[name] = factory
    return factories


def refresh_builders() -> None:
    """Clear cached builder factories and reload on demand."""
    _builder_factories.cache_clear()


def _import_builder(name: str) -> Any:
    module_name, _, attribute = name.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise BuilderNotFoundError(name, str(e)) from e
    if not attribute:
        return module
    try:
        return getattr(module, attribute)
    except AttributeError as e:
        raise BuilderNotFoundError(name, f"no attribute '{attribute}'") from e


def get_builder(use: str) -> Builder:
    """Return a builder for a ``use`` identifier.

    Args:
        use: Builder identifier, optionally suffixed with ``@version``.

    Returns:
        Builder instance.

    Raises:
        BuilderNotFoundError: If nothing is registered or importable under
            the name.
        ContractViolationError: If the export has an invalid shape.
    """
    name, version = parse_use(use)
    factories = _builder_factories()
    if name in factories:
        source = factories[name]()
    elif not name.startswith("@"):
        source = _import_builder(name)
    else:
        raise BuilderNotFoundError(use)

    builder = adapt_builder(source, name=name)
    logger.debug("Resolved builder %s (version=%s) to %r", name, version, builder)
    return builder


def list_builders() -> dict[str, Builder]:
    """Return a mapping of registered builder names to instances."""
    builders: dict[str, Builder] = {}
    for name in _builder_factories():
        builders[name] = get_builder(name)
    return builders


__all__ = [
    "BUILDER_ENTRYPOINT_GROUP",
    "get_builder",
    "list_builders",
    "parse_use",
    "refresh_builders",
]
