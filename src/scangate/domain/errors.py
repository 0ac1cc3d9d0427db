"""Error taxonomy for pipeline construction and stage execution.

Only ``ConfigurationError`` aborts a run. Every other error is localized to the
stage that raised it and surfaces as that stage's ``StageFailure``.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scangate.policy.artifacts import ArtifactNameReason
    from scangate.policy.severity_gate import GateResult


class ScangateError(Exception):
    """Base class for all scangate errors."""


class ConfigurationError(ScangateError, ValueError):
    """Malformed pipeline definition or stage graph. Fatal before any stage runs."""


class DependencyError(ConfigurationError):
    """Stage graph violates referential integrity or acyclicity."""

    stage_id: str

    def __init__(self, stage_id: str, message: str) -> None:
        self.stage_id = stage_id
        super().__init__(message)


class DuplicateStageError(DependencyError):
    def __init__(self, stage_id: str) -> None:
        super().__init__(stage_id, f"duplicate stage id: {stage_id!r}")


class MissingDependencyError(DependencyError):
    missing_id: str

    def __init__(self, stage_id: str, missing_id: str) -> None:
        self.missing_id = missing_id
        super().__init__(stage_id, f"stage {stage_id!r} depends on unknown stage {missing_id!r}")


class DependencyCycleError(DependencyError):
    """Raised when the dependency relation contains a cycle (self-loops included)."""

    cycles: tuple[tuple[str, ...], ...]

    def __init__(self, cycles: Iterable[Sequence[str]]) -> None:
        normalized: tuple[tuple[str, ...], ...] = tuple(tuple(path) for path in cycles)
        self.cycles = normalized
        stage_id = normalized[0][0] if normalized and normalized[0] else ""
        if not normalized:
            message = "stage graph contains at least one cycle"
        else:
            preview = ", ".join(" -> ".join(path) for path in normalized[:3])
            suffix = "..." if len(normalized) > 3 else ""
            message = f"stage graph contains cycle(s): {preview}{suffix}"
        super().__init__(stage_id, message)


class GraphConsumedError(RuntimeError):
    """Raised when ``topological_layers`` is requested twice on the same graph."""


class ValidationError(ScangateError, ValueError):
    """A stage declared output that violates run-level invariants."""


class ArtifactValidationError(ValidationError):
    """Artifact name failed validation; ``reason`` is the machine-readable code."""

    name: str
    reason: ArtifactNameReason

    def __init__(self, name: str, reason: ArtifactNameReason, message: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(message)


class ExecutionError(ScangateError):
    """External tool invocation failed, timed out, or returned unusable output.

    ``kind`` is one of ``error``, ``timeout``, ``malformed_output`` or
    ``reported_failure``.
    """

    kind: str

    def __init__(self, message: str, *, kind: str = "error") -> None:
        self.kind = kind
        super().__init__(message)


class ThresholdBreach(ScangateError):
    """An enforcing severity gate failed."""

    result: GateResult

    def __init__(self, result: GateResult) -> None:
        self.result = result
        worst = result.max_severity if result.max_severity is not None else 0.0
        super().__init__(
            f"{len(result.breaching)} finding(s) at or above severity "
            f"{result.threshold:.1f} (max {worst:.1f})"
        )


__all__ = [
    "ArtifactValidationError",
    "ConfigurationError",
    "DependencyCycleError",
    "DependencyError",
    "DuplicateStageError",
    "ExecutionError",
    "GraphConsumedError",
    "MissingDependencyError",
    "ScangateError",
    "ThresholdBreach",
    "ValidationError",
]
