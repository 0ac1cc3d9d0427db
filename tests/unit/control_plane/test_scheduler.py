"""
scangate — unit tests for the pipeline scheduler

File: tests/unit/control_plane/test_scheduler.py

Purpose
- Layer ordering, skip propagation and ``always`` stages.
- Concurrency within a layer and the parallelism bound.
- Failure classification: errors, timeouts, malformed output, gate breaches,
  artifact validation and cancellation.
- Configuration errors surface before any executor runs.

Non-functional requirements
- Offline and deterministic; concurrency is proven with events, not sleeps.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Callable
from typing import Any

import pytest

from scangate.control_plane import scheduler as scheduler_module
from scangate.control_plane.aggregator import ResultAggregator
from scangate.control_plane.scheduler import (
    CANCELLED_REASON,
    PipelineScheduler,
    SchedulerSettings,
    run_pipeline,
    stage_failure_for,
)
from scangate.domain.errors import ConfigurationError, ExecutionError, ValidationError
from scangate.domain.models import (
    GateMode,
    GatePolicy,
    PipelineTrigger,
    StageDefinition,
    StageFailure,
    StageFailureKind,
    StageStatus,
    Verdict,
)
from scangate.executors.base import ExecutorContext, ExecutorResult
from scangate.planning.stage_graph import StageGraph
from scangate.utils.concurrency import CancellationToken


def _ok(context: ExecutorContext) -> None:
    return None


def _boom(context: ExecutorContext) -> None:
    raise RuntimeError("tool crashed")


def _findings(*severities: float) -> Callable[[ExecutorContext], dict[str, Any]]:
    def executor(context: ExecutorContext) -> dict[str, Any]:
        return {"findings": [{"tool": "fake", "severity": value} for value in severities]}

    return executor


def _artifacts(*names: str) -> Callable[[ExecutorContext], dict[str, Any]]:
    def executor(context: ExecutorContext) -> dict[str, Any]:
        return {"artifacts": [{"name": name, "location": f"{name}.json"} for name in names]}

    return executor


async def test_failed_stage_skips_dependents_but_not_always_stages() -> None:
    stages = [
        StageDefinition("a", _boom),
        StageDefinition("b", _ok, depends_on=("a",)),
        StageDefinition("c", _ok, depends_on=("b",), always=True),
    ]

    run = await PipelineScheduler().run(stages)

    assert run.status("a") is StageStatus.FAILED
    assert run.status("b") is StageStatus.SKIPPED
    assert run.skip_reason("b") == "dependency 'a' failed"
    assert run.status("c") is StageStatus.SUCCEEDED
    assert run.verdict is Verdict.FAILED
    failure = run.failure("a")
    assert failure is not None
    assert failure.kind is StageFailureKind.EXECUTION_ERROR
    assert "tool crashed" in failure.message

    assert [(entry.stage_id, entry.to_status) for entry in run.execution_log] == [
        ("a", StageStatus.RUNNING),
        ("a", StageStatus.FAILED),
        ("b", StageStatus.SKIPPED),
        ("c", StageStatus.RUNNING),
        ("c", StageStatus.SUCCEEDED),
    ]


async def test_always_stage_runs_beside_the_skipped_sibling() -> None:
    stages = [
        StageDefinition("a", _boom),
        StageDefinition("b", _ok, depends_on=("a",)),
        StageDefinition("c", _ok, depends_on=("a",), always=True),
    ]

    run = await PipelineScheduler().run(stages)
    summary = ResultAggregator().summarize(run)

    assert run.graph.layers_preview() == (("a",), ("b", "c"))
    assert run.status("b") is StageStatus.SKIPPED
    assert run.status("c") is StageStatus.SUCCEEDED
    assert run.verdict is Verdict.FAILED
    assert summary.skipped_stage_ids == ("b",)
    assert summary.stage("c").status is StageStatus.SUCCEEDED


async def test_skips_propagate_transitively() -> None:
    stages = [
        StageDefinition("a", _boom),
        StageDefinition("b", _ok, depends_on=("a",)),
        StageDefinition("c", _ok, depends_on=("b",)),
    ]

    run = await PipelineScheduler().run(stages)

    assert run.skip_reason("c") == "dependency 'b' skipped"
    assert run.stage_ids_with(StageStatus.SKIPPED) == ("b", "c")


async def test_failing_always_stage_alone_does_not_fail_the_run() -> None:
    stages = [StageDefinition("scan", _ok), StageDefinition("upload", _boom, always=True)]

    run = await PipelineScheduler().run(stages)

    assert run.status("upload") is StageStatus.FAILED
    assert run.verdict is Verdict.PASSED


async def test_stages_in_one_layer_run_concurrently() -> None:
    x_started = asyncio.Event()
    y_started = asyncio.Event()

    async def x(context: ExecutorContext) -> None:
        x_started.set()
        await asyncio.wait_for(y_started.wait(), timeout=2.0)

    async def y(context: ExecutorContext) -> None:
        y_started.set()
        await asyncio.wait_for(x_started.wait(), timeout=2.0)

    scheduler = PipelineScheduler()
    run = await scheduler.run([StageDefinition("x", x), StageDefinition("y", y)])

    assert run.verdict is Verdict.PASSED
    assert scheduler.peak_concurrency == 2


async def test_max_parallel_stages_bounds_concurrency() -> None:
    async def slow(context: ExecutorContext) -> None:
        await asyncio.sleep(0.01)

    scheduler = PipelineScheduler(SchedulerSettings(max_parallel_stages=1))
    run = await scheduler.run([StageDefinition(f"s{index}", slow) for index in range(4)])

    assert run.verdict is Verdict.PASSED
    assert scheduler.peak_concurrency == 1


async def test_dependent_stage_waits_for_its_layer() -> None:
    order: list[str] = []

    async def record(context: ExecutorContext) -> None:
        await asyncio.sleep(0.01 if context.stage_id == "a" else 0)
        order.append(context.stage_id)

    await PipelineScheduler().run(
        [StageDefinition("a", record), StageDefinition("b", record, depends_on=("a",))]
    )

    assert order == ["a", "b"]


async def test_cycle_is_rejected_before_any_executor_runs() -> None:
    calls: list[str] = []

    def tracking(context: ExecutorContext) -> None:
        calls.append(context.stage_id)

    stages = [
        StageDefinition("free", tracking),
        StageDefinition("a", tracking, depends_on=("b",)),
        StageDefinition("b", tracking, depends_on=("a",)),
    ]

    with pytest.raises(ConfigurationError, match="cycle"):
        await PipelineScheduler().run(stages)

    assert calls == []


async def test_unknown_executor_kind_is_rejected_before_any_executor_runs() -> None:
    calls: list[str] = []

    def tracking(context: ExecutorContext) -> None:
        calls.append(context.stage_id)

    with pytest.raises(ConfigurationError, match="unknown executor kind"):
        await PipelineScheduler().run(
            [StageDefinition("a", tracking), StageDefinition("b", "no-such-kind")]
        )

    assert calls == []


async def test_gate_without_threshold_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError, match="threshold"):
        await PipelineScheduler().run([StageDefinition("a", _ok, gate=GatePolicy())])


async def test_consumed_graph_cannot_be_run_again() -> None:
    graph = StageGraph.build([StageDefinition("a", _ok)])
    scheduler = PipelineScheduler()
    await scheduler.run(graph)

    with pytest.raises(ConfigurationError, match="already executed"):
        await scheduler.run(graph)


async def test_finding_at_threshold_breaches_the_gate() -> None:
    stages = [StageDefinition("sast", _findings(7.0, 2.0), gate=GatePolicy(threshold=7.0))]

    run = await PipelineScheduler().run(stages)

    failure = run.failure("sast")
    assert failure is not None
    assert failure.kind is StageFailureKind.THRESHOLD_BREACH
    gate_result = run.gate_result("sast")
    assert gate_result is not None
    assert not gate_result.passed
    assert len(run.findings) == 2
    assert run.verdict is Verdict.FAILED


async def test_report_mode_gate_records_but_passes() -> None:
    stages = [
        StageDefinition(
            "sast", _findings(9.9), gate=GatePolicy(threshold=5.0, mode=GateMode.REPORT)
        )
    ]

    run = await PipelineScheduler().run(stages)

    assert run.status("sast") is StageStatus.SUCCEEDED
    gate_result = run.gate_result("sast")
    assert gate_result is not None
    assert len(gate_result.breaching) == 1


async def test_gate_defaults_come_from_settings() -> None:
    settings = SchedulerSettings(default_gate_threshold=4.0, default_gate_mode=GateMode.FAIL)
    stages = [StageDefinition("sca", _findings(4.0), gate=GatePolicy())]

    run = await PipelineScheduler(settings).run(stages)

    failure = run.failure("sca")
    assert failure is not None
    assert failure.kind is StageFailureKind.THRESHOLD_BREACH


async def test_stage_timeout_is_classified() -> None:
    async def hang(context: ExecutorContext) -> None:
        await asyncio.sleep(10)

    run = await PipelineScheduler().run([StageDefinition("slow", hang, timeout_seconds=0.05)])

    failure = run.failure("slow")
    assert failure is not None
    assert failure.kind is StageFailureKind.TIMEOUT


async def test_malformed_output_fails_the_stage() -> None:
    def bad(context: ExecutorContext) -> str:
        return "not a result"

    run = await PipelineScheduler().run([StageDefinition("bad", bad)])

    failure = run.failure("bad")
    assert failure is not None
    assert failure.kind is StageFailureKind.EXECUTION_ERROR
    assert "expected ExecutorResult" in failure.message


async def test_executor_reported_failure_keeps_findings() -> None:
    def reported(context: ExecutorContext) -> ExecutorResult:
        return ExecutorResult(status="failed", message="license server unreachable")

    def partial(context: ExecutorContext) -> dict[str, Any]:
        return {
            "status": "failed",
            "findings": [{"tool": "fake", "severity": 3.0}],
            "artifacts": [{"name": "partial", "location": "p.json"}],
        }

    run = await PipelineScheduler().run(
        [StageDefinition("a", reported), StageDefinition("b", partial)]
    )

    failure_a = run.failure("a")
    assert failure_a is not None
    assert failure_a.message == "license server unreachable"
    assert [item.stage_id for item in run.findings] == ["b"]
    assert run.artifacts.names == ()


async def test_validation_error_from_executor_is_classified() -> None:
    def invalid(context: ExecutorContext) -> None:
        raise ValidationError("report path escapes workspace")

    run = await PipelineScheduler().run([StageDefinition("a", invalid)])

    failure = run.failure("a")
    assert failure is not None
    assert failure.kind is StageFailureKind.VALIDATION_ERROR


async def test_duplicate_artifact_name_fails_the_later_stage() -> None:
    stages = [
        StageDefinition("b-sca", _artifacts("report")),
        StageDefinition("a-sast", _artifacts("report", "sarif")),
    ]

    run = await PipelineScheduler().run(stages)

    assert run.status("a-sast") is StageStatus.SUCCEEDED
    assert run.status("b-sca") is StageStatus.FAILED
    failure = run.failure("b-sca")
    assert failure is not None
    assert failure.kind is StageFailureKind.VALIDATION_ERROR
    assert run.artifacts.names == ("report", "sarif")


async def test_invalid_artifact_name_fails_the_stage_with_hint() -> None:
    run = await PipelineScheduler().run([StageDefinition("a", _artifacts("scan_report"))])

    failure = run.failure("a")
    assert failure is not None
    assert failure.kind is StageFailureKind.VALIDATION_ERROR
    assert "replace underscore with hyphen" in failure.message
    assert len(run.artifacts) == 0


async def test_cancellation_fails_running_and_skips_pending_stages() -> None:
    token = CancellationToken()
    started = asyncio.Event()

    async def long_scan(context: ExecutorContext) -> None:
        started.set()
        await asyncio.sleep(10)

    async def cancel_when_started() -> None:
        await started.wait()
        token.cancel()

    canceller = asyncio.create_task(cancel_when_started())
    run = await PipelineScheduler().run(
        [StageDefinition("a", long_scan), StageDefinition("b", _ok, depends_on=("a",))],
        cancel_token=token,
    )
    await canceller

    failure = run.failure("a")
    assert failure is not None
    assert failure.message == CANCELLED_REASON
    assert run.status("b") is StageStatus.SKIPPED
    assert run.skip_reason("b") == CANCELLED_REASON
    assert run.verdict is Verdict.FAILED


async def test_executor_context_carries_run_metadata() -> None:
    seen: list[ExecutorContext] = []

    def capture(context: ExecutorContext) -> None:
        seen.append(context)

    trigger = PipelineTrigger(kind="push", identifier="abc123")
    run = await PipelineScheduler().run(
        [StageDefinition("a", capture, config={"k": "v"}, timeout_seconds=12)],
        run_id="run-01HV0000000000000000000000",
        trigger=trigger,
    )

    context = seen[0]
    assert context.run_id == run.run_id == "run-01HV0000000000000000000000"
    assert context.trigger is trigger
    assert context.config["k"] == "v"
    assert context.timeout_seconds == 12.0


async def test_identical_inputs_produce_identical_outcomes() -> None:
    def stages() -> list[StageDefinition]:
        return [
            StageDefinition("a", _findings(5.0)),
            StageDefinition("b", _boom, depends_on=("a",)),
            StageDefinition("c", _artifacts("report"), depends_on=("a",)),
            StageDefinition("d", _ok, depends_on=("b", "c")),
        ]

    first = await PipelineScheduler().run(stages())
    second = await PipelineScheduler().run(stages())

    def shape(run: Any) -> list[tuple[str, str, str | None]]:
        return [
            (entry.stage_id, entry.to_status.value, entry.reason) for entry in run.execution_log
        ]

    assert dict(first.statuses) == dict(second.statuses)
    assert shape(first) == shape(second)
    assert first.verdict is second.verdict is Verdict.FAILED


def test_run_pipeline_is_a_blocking_wrapper() -> None:
    run = run_pipeline([StageDefinition("a", _ok)])

    assert run.verdict is Verdict.PASSED


def test_settings_from_config_reads_sections() -> None:
    settings = SchedulerSettings.from_config(
        {
            "scheduler": {"max_parallel_stages": 8, "default_stage_timeout_seconds": 60},
            "gate": {"default_threshold": 7.5, "default_mode": "report"},
        }
    )

    assert settings.max_parallel_stages == 8
    assert settings.default_stage_timeout_seconds == 60.0
    assert settings.default_gate_threshold == 7.5
    assert settings.default_gate_mode is GateMode.REPORT


@pytest.mark.parametrize(
    "kwargs", [{"max_parallel_stages": 0}, {"default_stage_timeout_seconds": -1}]
)
def test_settings_reject_invalid_values(kwargs: dict[str, Any]) -> None:
    with pytest.raises(ValueError):
        SchedulerSettings(**kwargs)


async def test_queued_stages_turn_running_only_when_they_get_a_slot(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    transitions: list[tuple[str, StageStatus]] = []
    original = scheduler_module._transition

    def recording(run: Any, stage_id: str, to_status: StageStatus, **kwargs: Any) -> None:
        transitions.append((stage_id, to_status))
        original(run, stage_id, to_status, **kwargs)

    monkeypatch.setattr(scheduler_module, "_transition", recording)
    running_at_start: dict[str, list[str]] = {}

    async def record(context: ExecutorContext) -> None:
        running_at_start[context.stage_id] = [
            stage_id for stage_id, status in transitions if status is StageStatus.RUNNING
        ]

    scheduler = PipelineScheduler(SchedulerSettings(max_parallel_stages=1))
    await scheduler.run([StageDefinition(f"s{index}", record) for index in range(3)])

    assert running_at_start == {
        "s0": ["s0"],
        "s1": ["s0", "s1"],
        "s2": ["s0", "s1", "s2"],
    }


async def test_stage_waiting_for_a_slot_is_skipped_on_cancellation() -> None:
    token = CancellationToken()

    async def cancel_then_hang(context: ExecutorContext) -> None:
        token.cancel()
        await asyncio.sleep(10)

    run = await PipelineScheduler(SchedulerSettings(max_parallel_stages=1)).run(
        [StageDefinition("a", cancel_then_hang), StageDefinition("b", _ok)],
        cancel_token=token,
    )

    failure = run.failure("a")
    assert failure is not None
    assert failure.message == CANCELLED_REASON
    assert run.status("b") is StageStatus.SKIPPED
    assert run.skip_reason("b") == CANCELLED_REASON
    assert ("b", StageStatus.RUNNING) not in [
        (entry.stage_id, entry.to_status) for entry in run.execution_log
    ]


async def test_reported_failure_is_classified_as_an_execution_error(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    errors: list[ExecutionError] = []
    original = scheduler_module.stage_failure_for

    def capture(error: ExecutionError) -> StageFailure:
        errors.append(error)
        return original(error)

    monkeypatch.setattr(scheduler_module, "stage_failure_for", capture)

    def reported(context: ExecutorContext) -> dict[str, Any]:
        return {"status": "failed", "message": "scanner database is stale"}

    run = await PipelineScheduler().run([StageDefinition("sca", reported)])

    assert [(error.kind, str(error)) for error in errors] == [
        ("reported_failure", "scanner database is stale")
    ]
    failure = run.failure("sca")
    assert failure is not None
    assert failure.kind is StageFailureKind.EXECUTION_ERROR


@pytest.mark.parametrize(
    ("kind", "expected"),
    [
        ("timeout", StageFailureKind.TIMEOUT),
        ("error", StageFailureKind.EXECUTION_ERROR),
        ("malformed_output", StageFailureKind.EXECUTION_ERROR),
        ("reported_failure", StageFailureKind.EXECUTION_ERROR),
    ],
)
def test_execution_error_kinds_map_to_stage_failures(
    kind: str, expected: StageFailureKind
) -> None:
    failure = stage_failure_for(ExecutionError("scanner broke", kind=kind))

    assert failure.kind is expected
    assert failure.message == "scanner broke"


def test_run_pipeline_returns_without_waiting_for_a_hung_sync_executor() -> None:
    release = threading.Event()

    def hang(context: ExecutorContext) -> None:
        release.wait(5.0)

    started = time.monotonic()
    try:
        run = run_pipeline(
            [
                StageDefinition("hung", hang, timeout_seconds=0.2),
                StageDefinition("upload", _ok, depends_on=("hung",), always=True),
            ]
        )
        elapsed = time.monotonic() - started
    finally:
        release.set()

    assert elapsed < 2.0
    failure = run.failure("hung")
    assert failure is not None
    assert failure.kind is StageFailureKind.TIMEOUT
    assert run.status("upload") is StageStatus.SUCCEEDED
