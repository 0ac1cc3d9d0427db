"""Stable constants shared across scangate planes."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
PIPELINE_DEFINITION_SCHEMA_VERSION: Final[int] = 1
SUMMARY_SCHEMA_VERSION: Final[int] = 1

# Severity scale (CVSS-style).
SEVERITY_MIN: Final[float] = 0.0
SEVERITY_MAX: Final[float] = 10.0

# Severity band lower bounds, highest first. Anything below the last bound is "low".
SEVERITY_BANDS: Final[tuple[tuple[str, float], ...]] = (
    ("critical", 9.0),
    ("high", 7.0),
    ("medium", 4.0),
)
LOW_BAND: Final[str] = "low"
BAND_NAMES: Final[tuple[str, ...]] = ("critical", "high", "medium", LOW_BAND)

# Scheduler defaults.
DEFAULT_MAX_PARALLEL_STAGES: Final[int] = 4
DEFAULT_STAGE_TIMEOUT_SECONDS: Final[float] = 900.0

# Trigger kinds recognised on the CLI and in summaries.
TRIGGER_KINDS: Final[tuple[str, ...]] = ("push", "pull_request", "schedule", "manual")

DEFAULT_LOG_DIR: Final[str] = "logs"

__all__ = [
    "BAND_NAMES",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_LOG_DIR",
    "DEFAULT_MAX_PARALLEL_STAGES",
    "DEFAULT_STAGE_TIMEOUT_SECONDS",
    "LOW_BAND",
    "PIPELINE_DEFINITION_SCHEMA_VERSION",
    "SEVERITY_BANDS",
    "SEVERITY_MAX",
    "SEVERITY_MIN",
    "SUMMARY_SCHEMA_VERSION",
    "TRIGGER_KINDS",
]
