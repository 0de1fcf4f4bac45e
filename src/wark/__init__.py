"""
wark — ticket lifecycle and work-distribution engine

File: src/wark/__init__.py
Last updated: 2026-10-18

Purpose
- Package root. Coordinates tickets among concurrent workers through a validated state
  machine, lease-based claims, and a dependency resolver.

What should be included in this file
- Version export and minimal public API surface (keep small).
- Import boundary rules: avoid importing heavy submodules at import time.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
