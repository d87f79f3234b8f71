"""Builder contract and built-in builders.

This module handles:
- Version 2 / version 3 builder base classes and module adapters
- Builder records binding source globs to builders
- Resolving builder identifiers to implementations
- The static passthrough and command-driven builders
"""

from builder_contract.builders.base import (
    Builder,
    BuilderV2,
    BuilderV3,
    adapt_builder,
)
from builder_contract.builders.record import BuilderRecord
from builder_contract.builders.registry import get_builder, list_builders

__all__ = [
    "Builder",
    "BuilderRecord",
    "BuilderV2",
    "BuilderV3",
    "adapt_builder",
    "get_builder",
    "list_builders",
]
