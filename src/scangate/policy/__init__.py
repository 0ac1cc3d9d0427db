"""Policy hooks consulted by the scheduler: artifact naming and severity gating."""

from scangate.policy.artifacts import (
    ArtifactNameCheck,
    ArtifactNameReason,
    ArtifactRegistry,
    validate_artifact_name,
)
from scangate.policy.severity_gate import GateResult, GateVerdict, SeverityGate

__all__ = [
    "ArtifactNameCheck",
    "ArtifactNameReason",
    "ArtifactRegistry",
    "GateResult",
    "GateVerdict",
    "SeverityGate",
    "validate_artifact_name",
]
