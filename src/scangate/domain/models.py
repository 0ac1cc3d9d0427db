"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, TypeAlias

from scangate.constants import SEVERITY_MAX, SEVERITY_MIN, TRIGGER_KINDS

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

# A stage executor is either a callable or the name of a registered executor kind.
ExecutorRef: TypeAlias = Callable[..., Any] | str


class StageStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({StageStatus.SUCCEEDED, StageStatus.FAILED, StageStatus.SKIPPED})


class Verdict(StrEnum):
    PASSED = "passed"
    FAILED = "failed"
    PARTIALLY_SKIPPED = "partially_skipped"


class GateMode(StrEnum):
    """``fail`` enforces the threshold; ``report`` records findings and always passes."""

    FAIL = "fail"
    REPORT = "report"


class StageFailureKind(StrEnum):
    EXECUTION_ERROR = "execution_error"
    TIMEOUT = "timeout"
    VALIDATION_ERROR = "validation_error"
    THRESHOLD_BREACH = "threshold_breach"


@dataclass(frozen=True, slots=True)
class Finding:
    """A single reported security issue. Immutable once recorded."""

    tool: str
    severity: float
    location: str = ""
    description: str = ""
    stage_id: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.tool, str) or not self.tool.strip():
            raise ValueError("Finding.tool must be a non-empty string")
        object.__setattr__(self, "tool", self.tool.strip())
        object.__setattr__(self, "severity", coerce_severity(self.severity, "Finding.severity"))
        if not isinstance(self.location, str):
            raise TypeError("Finding.location must be a string")
        if not isinstance(self.description, str):
            raise TypeError("Finding.description must be a string")

    @classmethod
    def from_dict(cls, payload: Mapping[str, object], *, stage_id: str | None = None) -> Finding:
        tool = payload.get("tool")
        if not isinstance(tool, str):
            raise TypeError("finding 'tool' must be a string")
        location = payload.get("location", "")
        description = payload.get("description", "")
        return cls(
            tool=tool,
            severity=coerce_severity(payload.get("severity"), "finding 'severity'"),
            location=location if isinstance(location, str) else str(location),
            description=description if isinstance(description, str) else str(description),
            stage_id=stage_id,
        )

    def with_stage(self, stage_id: str) -> Finding:
        if self.stage_id == stage_id:
            return self
        return Finding(
            tool=self.tool,
            severity=self.severity,
            location=self.location,
            description=self.description,
            stage_id=stage_id,
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "tool": self.tool,
            "severity": self.severity,
            "location": self.location,
            "description": self.description,
            "stage_id": self.stage_id,
        }


@dataclass(frozen=True, slots=True)
class Artifact:
    """Named stage output. Name rules are enforced at registration, not here."""

    name: str
    location: str
    stage_id: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str):
            raise TypeError("Artifact.name must be a string")
        if not isinstance(self.location, str):
            raise TypeError("Artifact.location must be a string")

    @classmethod
    def from_dict(cls, payload: Mapping[str, object], *, stage_id: str | None = None) -> Artifact:
        name = payload.get("name")
        location = payload.get("location", payload.get("path", ""))
        if not isinstance(name, str):
            raise TypeError("artifact 'name' must be a string")
        if not isinstance(location, str):
            raise TypeError("artifact 'location' must be a string")
        return cls(name=name, location=location, stage_id=stage_id)

    def with_stage(self, stage_id: str) -> Artifact:
        if self.stage_id == stage_id:
            return self
        return Artifact(name=self.name, location=self.location, stage_id=stage_id)

    def to_dict(self) -> dict[str, JSONValue]:
        return {"name": self.name, "location": self.location, "stage_id": self.stage_id}


@dataclass(frozen=True, slots=True)
class GatePolicy:
    """Per-stage severity gate settings; ``None`` fields defer to the ``[gate]`` config."""

    threshold: float | None = None
    mode: GateMode | None = None

    def __post_init__(self) -> None:
        if self.threshold is not None:
            object.__setattr__(
                self, "threshold", coerce_severity(self.threshold, "GatePolicy.threshold")
            )
        if self.mode is not None:
            object.__setattr__(self, "mode", GateMode(self.mode))


@dataclass(frozen=True, slots=True)
class StageDefinition:
    """Declarative stage: id, dependencies, ``always`` flag, executor and its opaque config."""

    stage_id: str
    executor: ExecutorRef
    depends_on: tuple[str, ...] = ()
    always: bool = False
    label: str = ""
    config: Mapping[str, Any] = field(default_factory=dict)
    timeout_seconds: float | None = None
    gate: GatePolicy | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.stage_id, str) or not self.stage_id.strip():
            raise ValueError("StageDefinition.stage_id must be non-empty")
        object.__setattr__(self, "stage_id", self.stage_id.strip())
        if not (callable(self.executor) or isinstance(self.executor, str)):
            raise TypeError("StageDefinition.executor must be callable or an executor kind name")
        object.__setattr__(self, "depends_on", _normalize_ids(self.depends_on))
        object.__setattr__(self, "always", bool(self.always))
        if not self.label:
            object.__setattr__(self, "label", self.stage_id)
        if self.timeout_seconds is not None:
            timeout = float(self.timeout_seconds)
            if not math.isfinite(timeout) or timeout <= 0:
                raise ValueError("StageDefinition.timeout_seconds must be > 0 when provided")
            object.__setattr__(self, "timeout_seconds", timeout)


@dataclass(frozen=True, slots=True)
class PipelineTrigger:
    """The external event that started a run. The core only records it."""

    kind: str = "manual"
    identifier: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        if self.kind not in TRIGGER_KINDS:
            expected = ", ".join(TRIGGER_KINDS)
            raise ValueError(f"invalid trigger kind {self.kind!r}; expected one of: {expected}")
        if self.timestamp.tzinfo is None:
            object.__setattr__(self, "timestamp", self.timestamp.replace(tzinfo=UTC))

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "kind": self.kind,
            "identifier": self.identifier,
            "timestamp": _iso8601z(self.timestamp),
        }


@dataclass(frozen=True, slots=True)
class StageFailure:
    kind: StageFailureKind
    message: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {"kind": self.kind.value, "message": self.message}


@dataclass(frozen=True, slots=True)
class ExecutionLogEntry:
    """One stage status transition in run order."""

    sequence: int
    stage_id: str
    from_status: StageStatus
    to_status: StageStatus
    reason: str | None
    timestamp: datetime

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "sequence": self.sequence,
            "stage_id": self.stage_id,
            "from": self.from_status.value,
            "to": self.to_status.value,
            "reason": self.reason,
            "timestamp": _iso8601z(self.timestamp),
        }


def coerce_severity(value: object, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{path} must be a number, got {type(value).__name__}")
    parsed = float(value)
    if not math.isfinite(parsed) or not SEVERITY_MIN <= parsed <= SEVERITY_MAX:
        raise ValueError(f"{path} must be within {SEVERITY_MIN}..{SEVERITY_MAX}, got {value!r}")
    return parsed


def _normalize_ids(values: Sequence[str]) -> tuple[str, ...]:
    if isinstance(values, str):
        raise TypeError("depends_on must be a sequence of stage ids, not a string")
    seen: set[str] = set()
    normalized: list[str] = []
    for value in values:
        if not isinstance(value, str):
            raise TypeError(f"stage ids must be strings, got {type(value).__name__}")
        candidate = value.strip()
        if not candidate:
            raise ValueError("stage ids must be non-empty")
        if candidate in seen:
            continue
        seen.add(candidate)
        normalized.append(candidate)
    return tuple(normalized)


def _iso8601z(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


__all__ = [
    "Artifact",
    "ExecutionLogEntry",
    "ExecutorRef",
    "Finding",
    "GateMode",
    "GatePolicy",
    "JSONScalar",
    "JSONValue",
    "PipelineTrigger",
    "StageDefinition",
    "StageFailure",
    "StageFailureKind",
    "StageStatus",
    "Verdict",
    "coerce_severity",
]
