"""Prerequisite graph maintenance and closure propagation."""

from __future__ import annotations

from wark.dependencies.graph import CycleError, DependencyGraph
from wark.dependencies.resolver import (
    DependencyResolver,
    ParentUpdateResult,
    ResolutionResult,
    ResolveAllResult,
    UnblockResult,
)

__all__ = [
    "CycleError",
    "DependencyGraph",
    "DependencyResolver",
    "ParentUpdateResult",
    "ResolutionResult",
    "ResolveAllResult",
    "UnblockResult",
]
