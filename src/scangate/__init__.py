"""
scangate — security-scan pipeline orchestrator

File: src/scangate/__init__.py

Purpose
- Package root. Sequences scanner stages over a dependency graph, gates on
  finding severity, validates artifact names, and aggregates a run verdict.

Import boundary rules
- Must not have side effects at import time (no config loading, no logging init).
- Heavy submodules (CLI, executors) are imported lazily by callers.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
