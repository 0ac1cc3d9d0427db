"""PipelineRun aggregate: per-stage state, transition log, findings, artifacts and verdict."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from types import MappingProxyType
from typing import TYPE_CHECKING

from scangate.domain.ids import generate_run_id
from scangate.domain.models import (
    ExecutionLogEntry,
    Finding,
    PipelineTrigger,
    StageFailure,
    StageStatus,
    Verdict,
)
from scangate.policy.artifacts import ArtifactRegistry

if TYPE_CHECKING:
    from scangate.planning.stage_graph import StageGraph
    from scangate.policy.severity_gate import GateResult

_LEGAL_TRANSITIONS: Mapping[StageStatus, frozenset[StageStatus]] = MappingProxyType(
    {
        StageStatus.PENDING: frozenset({StageStatus.RUNNING, StageStatus.SKIPPED}),
        StageStatus.RUNNING: frozenset({StageStatus.SUCCEEDED, StageStatus.FAILED}),
        StageStatus.SUCCEEDED: frozenset(),
        StageStatus.FAILED: frozenset(),
        StageStatus.SKIPPED: frozenset(),
    }
)


class PipelineRun:
    """Mutable state of one pipeline execution.

    Only the scheduler writes to a run. Every status change goes through
    :meth:`transition`, which enforces the stage state machine and appends to
    the execution log; :meth:`finalize` fixes the verdict once all stages are
    terminal, after which the run is read-only.
    """

    def __init__(
        self,
        graph: StageGraph,
        *,
        run_id: str | None = None,
        trigger: PipelineTrigger | None = None,
    ) -> None:
        self.run_id = run_id or generate_run_id()
        self.trigger = trigger or PipelineTrigger()
        self.graph = graph
        self.artifacts = ArtifactRegistry()
        self.started_at = datetime.now(UTC)
        self.completed_at: datetime | None = None

        self._statuses: dict[str, StageStatus] = dict.fromkeys(graph.stage_ids, StageStatus.PENDING)
        self._failures: dict[str, StageFailure] = {}
        self._skip_reasons: dict[str, str] = {}
        self._gate_results: dict[str, GateResult] = {}
        self._messages: dict[str, str] = {}
        self._findings: list[Finding] = []
        self._log: list[ExecutionLogEntry] = []
        self._verdict: Verdict | None = None

    # -- state machine --------------------------------------------------------------

    def transition(
        self,
        stage_id: str,
        to_status: StageStatus,
        *,
        reason: str | None = None,
        failure: StageFailure | None = None,
    ) -> ExecutionLogEntry:
        if self._verdict is not None:
            raise RuntimeError(f"run {self.run_id} is finalized; cannot transition {stage_id!r}")
        current = self.status(stage_id)
        if to_status not in _LEGAL_TRANSITIONS[current]:
            raise RuntimeError(
                f"illegal transition for stage {stage_id!r}: {current.value} -> {to_status.value}"
            )
        if to_status is StageStatus.FAILED and failure is None:
            raise RuntimeError(f"stage {stage_id!r} cannot fail without a StageFailure")

        self._statuses[stage_id] = to_status
        if failure is not None:
            self._failures[stage_id] = failure
            reason = reason or failure.message
        if to_status is StageStatus.SKIPPED:
            self._skip_reasons[stage_id] = reason or "skipped"

        entry = ExecutionLogEntry(
            sequence=len(self._log) + 1,
            stage_id=stage_id,
            from_status=current,
            to_status=to_status,
            reason=reason,
            timestamp=datetime.now(UTC),
        )
        self._log.append(entry)
        return entry

    def record_findings(self, stage_id: str, findings: Iterable[Finding]) -> tuple[Finding, ...]:
        self.status(stage_id)
        recorded = tuple(item.with_stage(stage_id) for item in findings)
        self._findings.extend(recorded)
        return recorded

    def record_gate_result(self, stage_id: str, result: GateResult) -> None:
        self._gate_results[stage_id] = result

    def record_message(self, stage_id: str, message: str) -> None:
        self._messages[stage_id] = message

    def finalize(self) -> Verdict:
        """Compute and freeze the verdict; every stage must be terminal."""

        if self._verdict is not None:
            return self._verdict
        open_stages = sorted(sid for sid, status in self._statuses.items() if not status.is_terminal)
        if open_stages:
            raise RuntimeError(
                f"run {self.run_id} cannot be finalized; non-terminal stages: {', '.join(open_stages)}"
            )
        self._verdict = compute_verdict(
            self._statuses,
            always_stage_ids={sid for sid in self._statuses if self.graph.stage(sid).always},
        )
        self.completed_at = datetime.now(UTC)
        return self._verdict

    # -- read API -------------------------------------------------------------------

    @property
    def is_complete(self) -> bool:
        return self._verdict is not None

    @property
    def verdict(self) -> Verdict | None:
        return self._verdict

    def status(self, stage_id: str) -> StageStatus:
        try:
            return self._statuses[stage_id]
        except KeyError:
            raise KeyError(f"Unknown stage: {stage_id}") from None

    @property
    def statuses(self) -> Mapping[str, StageStatus]:
        return MappingProxyType(self._statuses)

    def failure(self, stage_id: str) -> StageFailure | None:
        return self._failures.get(stage_id)

    def skip_reason(self, stage_id: str) -> str | None:
        return self._skip_reasons.get(stage_id)

    def gate_result(self, stage_id: str) -> GateResult | None:
        return self._gate_results.get(stage_id)

    def message(self, stage_id: str) -> str | None:
        return self._messages.get(stage_id)

    @property
    def findings(self) -> tuple[Finding, ...]:
        return tuple(self._findings)

    @property
    def execution_log(self) -> tuple[ExecutionLogEntry, ...]:
        return tuple(self._log)

    def stage_ids_with(self, status: StageStatus) -> tuple[str, ...]:
        return tuple(sorted(sid for sid, current in self._statuses.items() if current is status))


def compute_verdict(
    statuses: Mapping[str, StageStatus],
    *,
    always_stage_ids: Iterable[str] = (),
) -> Verdict:
    """FAILED if a required stage failed, else PARTIALLY_SKIPPED if any skipped, else PASSED.

    A failing ``always`` stage (cleanup, upload) does not fail the run on its own.
    """

    always = frozenset(always_stage_ids)
    if any(
        status is StageStatus.FAILED and stage_id not in always
        for stage_id, status in statuses.items()
    ):
        return Verdict.FAILED
    if any(status is StageStatus.SKIPPED for status in statuses.values()):
        return Verdict.PARTIALLY_SKIPPED
    return Verdict.PASSED


__all__ = ["PipelineRun", "compute_verdict"]
