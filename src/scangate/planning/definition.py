"""
scangate — declarative pipeline definition loader

File: src/scangate/planning/definition.py

Purpose
- Parse a YAML (or already-decoded mapping) pipeline document into
  ``StageDefinition`` objects.

Document shape
- ``name``: optional pipeline name.
- ``schema_version``: optional, must equal the supported version when present.
- ``stages``: non-empty list of stage objects with keys ``id``, ``label``,
  ``depends_on``, ``always``, ``executor``, ``config``, ``timeout_seconds``,
  ``gate`` (``threshold``, ``mode``).

Functional requirements
- ``config`` blobs are passed through unmodified.
- All structural problems are collected and reported together as a single
  ``ConfigurationError`` with dotted field paths.
- Graph-level checks (cycles, missing references) belong to ``StageGraph``.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, cast

import yaml

from scangate.constants import PIPELINE_DEFINITION_SCHEMA_VERSION, SEVERITY_MAX, SEVERITY_MIN
from scangate.domain.errors import ConfigurationError
from scangate.domain.models import GateMode, GatePolicy, StageDefinition

_ROOT_KEYS: Final[frozenset[str]] = frozenset({"name", "schema_version", "stages"})
_STAGE_KEYS: Final[frozenset[str]] = frozenset(
    {"id", "label", "depends_on", "always", "executor", "config", "timeout_seconds", "gate"}
)
_GATE_KEYS: Final[frozenset[str]] = frozenset({"threshold", "mode"})


@dataclass(frozen=True, slots=True)
class PipelineDefinition:
    name: str
    stages: tuple[StageDefinition, ...]
    source_path: Path | None = None

    @property
    def stage_ids(self) -> tuple[str, ...]:
        return tuple(stage.stage_id for stage in self.stages)


class PipelineDefinitionError(ConfigurationError):
    """Pipeline document is structurally invalid."""

    def __init__(self, issues: list[str], *, source: str | None = None) -> None:
        self.issues = tuple(issues)
        where = f" in {source}" if source else ""
        rendered = "\n".join(f"- {issue}" for issue in self.issues) or "- unknown problem"
        super().__init__(f"invalid pipeline definition{where}:\n{rendered}")


def load_pipeline_definition(path: str | Path) -> PipelineDefinition:
    """Read and parse a YAML pipeline file."""

    resolved = Path(path).expanduser().resolve()
    try:
        text = resolved.read_text(encoding="utf-8")
    except OSError as exc:
        raise PipelineDefinitionError(
            [f"unable to read pipeline file: {exc}"], source=str(resolved)
        ) from exc

    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise PipelineDefinitionError([f"invalid YAML: {exc}"], source=str(resolved)) from exc

    definition = parse_pipeline_definition(payload, source=str(resolved))
    return PipelineDefinition(
        name=definition.name, stages=definition.stages, source_path=resolved
    )


def parse_pipeline_definition(
    payload: object, *, source: str | None = None
) -> PipelineDefinition:
    """Parse an already-decoded pipeline document."""

    issues: list[str] = []
    if not isinstance(payload, Mapping):
        raise PipelineDefinitionError(
            [f"<root>: expected object, got {type(payload).__name__}"], source=source
        )

    for key in sorted(str(item) for item in payload if item not in _ROOT_KEYS):
        issues.append(f"{key}: unknown field")

    name_raw = payload.get("name", "pipeline")
    name = name_raw.strip() if isinstance(name_raw, str) and name_raw.strip() else "pipeline"

    version = payload.get("schema_version")
    if version is not None and version != PIPELINE_DEFINITION_SCHEMA_VERSION:
        issues.append(
            f"schema_version: unsupported version {version!r}; "
            f"expected {PIPELINE_DEFINITION_SCHEMA_VERSION}"
        )

    stages_raw = payload.get("stages")
    stages: list[StageDefinition] = []
    if not isinstance(stages_raw, list) or not stages_raw:
        issues.append("stages: must be a non-empty list")
    else:
        for index, raw_stage in enumerate(stages_raw):
            stage = _parse_stage(raw_stage, f"stages[{index}]", issues)
            if stage is not None:
                stages.append(stage)

    if issues:
        raise PipelineDefinitionError(issues, source=source)
    return PipelineDefinition(name=name, stages=tuple(stages))


def _parse_stage(raw: object, path: str, issues: list[str]) -> StageDefinition | None:
    if not isinstance(raw, Mapping):
        issues.append(f"{path}: expected object, got {type(raw).__name__}")
        return None

    before = len(issues)
    for key in sorted(str(item) for item in raw if item not in _STAGE_KEYS):
        issues.append(f"{path}.{key}: unknown field")

    stage_id = raw.get("id")
    if not isinstance(stage_id, str) or not stage_id.strip():
        issues.append(f"{path}.id: must be a non-empty string")

    executor = raw.get("executor")
    if not isinstance(executor, str) or not executor.strip():
        issues.append(f"{path}.executor: must be a non-empty executor kind name")

    label = raw.get("label", "")
    if not isinstance(label, str):
        issues.append(f"{path}.label: expected string, got {type(label).__name__}")

    depends_on = _parse_depends_on(raw.get("depends_on", []), f"{path}.depends_on", issues)

    always = raw.get("always", False)
    if not isinstance(always, bool):
        issues.append(f"{path}.always: expected boolean, got {type(always).__name__}")

    config = raw.get("config", {})
    if config is None:
        config = {}
    if not isinstance(config, Mapping):
        issues.append(f"{path}.config: expected object, got {type(config).__name__}")

    timeout = _parse_timeout(raw.get("timeout_seconds"), f"{path}.timeout_seconds", issues)
    gate = _parse_gate(raw.get("gate"), f"{path}.gate", issues)

    if len(issues) != before:
        return None

    return StageDefinition(
        stage_id=cast("str", stage_id),
        executor=cast("str", executor).strip(),
        depends_on=depends_on,
        always=bool(always),
        label=label if isinstance(label, str) else "",
        config=dict(config) if isinstance(config, Mapping) else {},
        timeout_seconds=timeout,
        gate=gate,
    )


def _parse_depends_on(raw: object, path: str, issues: list[str]) -> tuple[str, ...]:
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        issues.append(f"{path}: expected list of stage ids, got {type(raw).__name__}")
        return ()
    parsed: list[str] = []
    for index, item in enumerate(raw):
        if not isinstance(item, str) or not item.strip():
            issues.append(f"{path}[{index}]: must be a non-empty string")
            continue
        parsed.append(item.strip())
    return tuple(parsed)


def _parse_timeout(raw: object, path: str, issues: list[str]) -> float | None:
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        issues.append(f"{path}: expected number, got {type(raw).__name__}")
        return None
    value = float(raw)
    if not math.isfinite(value) or value <= 0:
        issues.append(f"{path}: must be > 0")
        return None
    return value


def _parse_gate(raw: object, path: str, issues: list[str]) -> GatePolicy | None:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        issues.append(f"{path}: expected object, got {type(raw).__name__}")
        return None

    for key in sorted(str(item) for item in raw if item not in _GATE_KEYS):
        issues.append(f"{path}.{key}: unknown field")

    threshold: Any = raw.get("threshold")
    if threshold is not None:
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
            issues.append(f"{path}.threshold: expected number, got {type(threshold).__name__}")
            threshold = None
        elif not SEVERITY_MIN <= float(threshold) <= SEVERITY_MAX:
            issues.append(f"{path}.threshold: must be within {SEVERITY_MIN}..{SEVERITY_MAX}")
            threshold = None

    mode_raw = raw.get("mode")
    try:
        mode = GateMode(mode_raw) if mode_raw is not None else None
    except ValueError:
        expected = ", ".join(item.value for item in GateMode)
        issues.append(f"{path}.mode: invalid value {mode_raw!r}; expected one of: {expected}")
        return None

    return GatePolicy(threshold=threshold, mode=mode)


__all__ = [
    "PipelineDefinition",
    "PipelineDefinitionError",
    "load_pipeline_definition",
    "parse_pipeline_definition",
]
