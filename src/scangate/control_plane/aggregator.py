"""Result aggregation: turns a finalized ``PipelineRun`` into a serializable summary."""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from scangate.constants import BAND_NAMES, LOW_BAND, SEVERITY_BANDS, SUMMARY_SCHEMA_VERSION
from scangate.control_plane.run import PipelineRun
from scangate.domain.models import Finding, JSONValue, StageStatus, Verdict


def severity_band(severity: float) -> str:
    """Map a 0-10 score to ``critical`` (>=9), ``high`` (>=7), ``medium`` (>=4) or ``low``."""
    for name, lower_bound in SEVERITY_BANDS:
        if severity >= lower_bound:
            return name
    return LOW_BAND


def band_counts(findings: Iterable[Finding]) -> dict[str, int]:
    counts = dict.fromkeys(BAND_NAMES, 0)
    for finding in findings:
        counts[severity_band(finding.severity)] += 1
    return counts


@dataclass(frozen=True, slots=True)
class StageSummary:
    stage_id: str
    label: str
    status: StageStatus
    always: bool
    failure_kind: str | None = None
    reason: str | None = None
    finding_count: int = 0

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "stage_id": self.stage_id,
            "label": self.label,
            "status": self.status.value,
            "always": self.always,
            "failure_kind": self.failure_kind,
            "reason": self.reason,
            "finding_count": self.finding_count,
        }


@dataclass(frozen=True, slots=True)
class PipelineSummary:
    """Final report of one run; deterministic for identical stage outcomes."""

    run_id: str
    trigger: Mapping[str, JSONValue]
    verdict: Verdict
    stages: tuple[StageSummary, ...]
    band_counts: Mapping[str, int]
    tool_counts: Mapping[str, int]
    artifact_names: tuple[str, ...]
    skipped_stage_ids: tuple[str, ...]
    findings: tuple[Finding, ...] = ()

    @property
    def total_findings(self) -> int:
        return sum(self.band_counts.values())

    @property
    def failed_stage_ids(self) -> tuple[str, ...]:
        return tuple(item.stage_id for item in self.stages if item.status is StageStatus.FAILED)

    def stage(self, stage_id: str) -> StageSummary:
        for item in self.stages:
            if item.stage_id == stage_id:
                return item
        raise KeyError(f"Unknown stage: {stage_id}")

    def exit_code(self, *, fail_on_partial_skip: bool = False) -> int:
        """Process status for CI: 1 when the run failed (or partially skipped, if configured)."""
        if self.verdict is Verdict.FAILED:
            return 1
        if self.verdict is Verdict.PARTIALLY_SKIPPED and fail_on_partial_skip:
            return 1
        return 0

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "schema_version": SUMMARY_SCHEMA_VERSION,
            "run_id": self.run_id,
            "trigger": dict(self.trigger),
            "verdict": self.verdict.value,
            "stages": [item.to_dict() for item in self.stages],
            "band_counts": dict(self.band_counts),
            "tool_counts": dict(self.tool_counts),
            "total_findings": self.total_findings,
            "artifacts": list(self.artifact_names),
            "skipped": list(self.skipped_stage_ids),
            "findings": [item.to_dict() for item in self.findings],
        }

    def to_json(self, *, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True, ensure_ascii=False)


class ResultAggregator:
    """Reads a finalized run; never mutates it."""

    def summarize(self, run: PipelineRun) -> PipelineSummary:
        if not run.is_complete or run.verdict is None:
            raise RuntimeError(f"run {run.run_id} is not complete; finalize it before summarizing")

        findings = run.findings
        per_stage = Counter(item.stage_id for item in findings)
        stages: list[StageSummary] = []
        for stage_id in run.graph.stage_ids:
            definition = run.graph.stage(stage_id)
            status = run.status(stage_id)
            failure = run.failure(stage_id)
            if failure is not None:
                reason: str | None = failure.message
            elif status is StageStatus.SKIPPED:
                reason = run.skip_reason(stage_id)
            else:
                reason = run.message(stage_id)
            stages.append(
                StageSummary(
                    stage_id=stage_id,
                    label=definition.label,
                    status=status,
                    always=definition.always,
                    failure_kind=failure.kind.value if failure is not None else None,
                    reason=reason,
                    finding_count=per_stage.get(stage_id, 0),
                )
            )

        ordered_findings = tuple(
            sorted(
                findings,
                key=lambda item: (-item.severity, item.stage_id or "", item.tool, item.location),
            )
        )
        return PipelineSummary(
            run_id=run.run_id,
            trigger=run.trigger.to_dict(),
            verdict=run.verdict,
            stages=tuple(stages),
            band_counts=band_counts(findings),
            tool_counts=dict(sorted(Counter(item.tool for item in findings).items())),
            artifact_names=run.artifacts.names,
            skipped_stage_ids=run.stage_ids_with(StageStatus.SKIPPED),
            findings=ordered_findings,
        )


__all__ = [
    "PipelineSummary",
    "ResultAggregator",
    "StageSummary",
    "band_counts",
    "severity_band",
]
