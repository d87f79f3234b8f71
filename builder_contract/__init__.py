"""Builder Contract - versioned build output protocol for pluggable builders.

This package defines the contract between an orchestrator and independent
builders that turn project source files into deployable artifacts (static
files, serverless functions, edge functions and prerendered pages), along
with the cache handoff and local dev server spawn protocols.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
