"""
scangate — domain layer

File: src/scangate/domain/__init__.py

Purpose
- Domain types shared across planes: StageDefinition, Finding, Artifact,
  PipelineTrigger, stage statuses, verdicts, and the error taxonomy.

Non-functional requirements
- Domain layer stays free of IO side effects and third-party dependencies.
"""

from scangate.domain.errors import (
    ArtifactValidationError,
    ConfigurationError,
    DependencyCycleError,
    DependencyError,
    DuplicateStageError,
    ExecutionError,
    GraphConsumedError,
    MissingDependencyError,
    ScangateError,
    ThresholdBreach,
    ValidationError,
)
from scangate.domain.models import (
    Artifact,
    ExecutionLogEntry,
    ExecutorRef,
    Finding,
    GateMode,
    GatePolicy,
    PipelineTrigger,
    StageDefinition,
    StageFailure,
    StageFailureKind,
    StageStatus,
    Verdict,
)

__all__ = [
    "Artifact",
    "ArtifactValidationError",
    "ConfigurationError",
    "DependencyCycleError",
    "DependencyError",
    "DuplicateStageError",
    "ExecutionError",
    "ExecutionLogEntry",
    "ExecutorRef",
    "Finding",
    "GateMode",
    "GatePolicy",
    "GraphConsumedError",
    "MissingDependencyError",
    "PipelineTrigger",
    "ScangateError",
    "StageDefinition",
    "StageFailure",
    "StageFailureKind",
    "StageStatus",
    "ThresholdBreach",
    "ValidationError",
    "Verdict",
]
