"""
scangate — pipeline scheduler

File: src/scangate/control_plane/scheduler.py

Purpose
- Drives one ``PipelineRun`` through the stage graph layer by layer.

Behavior
- Layers run strictly in order; stages of one layer run concurrently through a
  ``WorkerPool`` bounded by ``max_parallel_stages``.
- A stage whose dependency FAILED or was SKIPPED is skipped without starting,
  unless it is an ``always`` stage. Skips therefore propagate transitively.
- A stage turns RUNNING when it gets a worker slot; stages still queued when
  the run is cancelled are skipped. Each stage runs under ``run_with_timeout``;
  sync executors run on a daemon thread.
- When a layer completes, outcomes are finalized one at a time in stage-id
  order: record findings, register artifacts (all or nothing), apply the
  severity gate, transition status. Duplicate artifact names are therefore
  resolved deterministically in favour of the lexically-first stage id.
- Only ``ConfigurationError`` escapes ``run``; it is raised while preparing,
  before any executor starts.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from scangate.constants import DEFAULT_MAX_PARALLEL_STAGES, DEFAULT_STAGE_TIMEOUT_SECONDS
from scangate.control_plane.run import PipelineRun
from scangate.domain.errors import (
    ArtifactValidationError,
    ConfigurationError,
    ExecutionError,
    ThresholdBreach,
    ValidationError,
)
from scangate.domain.models import (
    GateMode,
    PipelineTrigger,
    StageDefinition,
    StageFailure,
    StageFailureKind,
    StageStatus,
)
from scangate.executors import DEFAULT_EXECUTOR_REGISTRY, ExecutorRegistry
from scangate.executors.base import (
    ExecutorCallable,
    ExecutorContext,
    ExecutorResult,
    invoke_executor,
)
from scangate.observability.logging import correlation_scope
from scangate.planning.stage_graph import StageGraph
from scangate.policy.severity_gate import SeverityGate
from scangate.utils.concurrency import CancellationToken, WorkerPool, run_with_timeout

logger = logging.getLogger(__name__)

_BLOCKING_STATUSES = frozenset({StageStatus.FAILED, StageStatus.SKIPPED})
CANCELLED_REASON = "cancelled"


@dataclass(frozen=True, slots=True)
class SchedulerSettings:
    max_parallel_stages: int = DEFAULT_MAX_PARALLEL_STAGES
    default_stage_timeout_seconds: float = DEFAULT_STAGE_TIMEOUT_SECONDS
    default_gate_threshold: float | None = None
    default_gate_mode: GateMode = GateMode.FAIL

    def __post_init__(self) -> None:
        if isinstance(self.max_parallel_stages, bool) or self.max_parallel_stages <= 0:
            raise ValueError("max_parallel_stages must be > 0")
        timeout = float(self.default_stage_timeout_seconds)
        if not math.isfinite(timeout) or timeout <= 0:
            raise ValueError("default_stage_timeout_seconds must be > 0")
        object.__setattr__(self, "default_stage_timeout_seconds", timeout)
        object.__setattr__(self, "default_gate_mode", GateMode(self.default_gate_mode))

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> SchedulerSettings:
        """Build settings from an effective config mapping (``scheduler`` and ``gate`` sections)."""

        scheduler = config.get("scheduler", {})
        gate = config.get("gate", {})
        return cls(
            max_parallel_stages=scheduler.get("max_parallel_stages", DEFAULT_MAX_PARALLEL_STAGES),
            default_stage_timeout_seconds=scheduler.get(
                "default_stage_timeout_seconds", DEFAULT_STAGE_TIMEOUT_SECONDS
            ),
            default_gate_threshold=gate.get("default_threshold"),
            default_gate_mode=GateMode(gate.get("default_mode", GateMode.FAIL.value)),
        )


@dataclass(frozen=True, slots=True)
class _StagePlan:
    stage: StageDefinition
    executor: ExecutorCallable
    gate: SeverityGate | None
    timeout_seconds: float


@dataclass(frozen=True, slots=True)
class _StageOutcome:
    stage_id: str
    result: ExecutorResult | None = None
    failure: StageFailure | None = None
    skip_reason: str | None = None
    duration_ms: int = 0


class PipelineScheduler:
    """Executes stage graphs; one scheduler may drive many runs sequentially."""

    def __init__(
        self,
        settings: SchedulerSettings | None = None,
        *,
        registry: ExecutorRegistry | None = None,
    ) -> None:
        self._settings = settings if settings is not None else SchedulerSettings()
        self._registry = registry if registry is not None else DEFAULT_EXECUTOR_REGISTRY
        self.peak_concurrency = 0

    @property
    def settings(self) -> SchedulerSettings:
        return self._settings

    def prepare(
        self,
        stages: StageGraph | Iterable[StageDefinition],
        *,
        run_id: str | None = None,
        trigger: PipelineTrigger | None = None,
    ) -> tuple[PipelineRun, dict[str, _StagePlan]]:
        """Validate the graph and resolve every executor and gate before anything runs."""

        graph = stages if isinstance(stages, StageGraph) else StageGraph.build(stages)
        if graph.consumed:
            raise ConfigurationError("stage graph was already executed; build a new graph per run")

        plans: dict[str, _StagePlan] = {}
        for stage_id in graph.stage_ids:
            stage = graph.stage(stage_id)
            gate = None
            if stage.gate is not None:
                gate = SeverityGate.from_policy(
                    stage.gate,
                    default_threshold=self._settings.default_gate_threshold,
                    default_mode=self._settings.default_gate_mode,
                    stage_id=stage_id,
                )
            plans[stage_id] = _StagePlan(
                stage=stage,
                executor=self._registry.resolve(stage.executor),
                gate=gate,
                timeout_seconds=stage.timeout_seconds
                or self._settings.default_stage_timeout_seconds,
            )
        return PipelineRun(graph, run_id=run_id, trigger=trigger), plans

    async def run(
        self,
        stages: StageGraph | Iterable[StageDefinition],
        *,
        run_id: str | None = None,
        trigger: PipelineTrigger | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> PipelineRun:
        """Execute all stages and return the finalized run."""

        run, plans = self.prepare(stages, run_id=run_id, trigger=trigger)
        token = cancel_token or CancellationToken()
        self.peak_concurrency = 0

        with correlation_scope(run_id=run.run_id, trigger_kind=run.trigger.kind):
            logger.info(
                "pipeline run started",
                extra={"stage_count": len(plans), "trigger": run.trigger.to_dict()},
            )
            for index, layer in enumerate(run.graph.topological_layers()):
                with correlation_scope(layer=index):
                    await self._run_layer(run, plans, sorted(layer), token)

            verdict = run.finalize()
            logger.info(
                "pipeline run finished",
                extra={"verdict": verdict.value, "findings": len(run.findings)},
            )
        return run

    async def _run_layer(
        self,
        run: PipelineRun,
        plans: Mapping[str, _StagePlan],
        layer: list[str],
        token: CancellationToken,
    ) -> None:
        runnable: list[str] = []
        for stage_id in layer:
            if token.is_cancelled:
                _transition(run, stage_id, StageStatus.SKIPPED, reason=CANCELLED_REASON)
                continue
            stage = plans[stage_id].stage
            blocked = [dep for dep in stage.depends_on if run.status(dep) in _BLOCKING_STATUSES]
            if blocked and not stage.always:
                dep = blocked[0]
                _transition(
                    run,
                    stage_id,
                    StageStatus.SKIPPED,
                    reason=f"dependency {dep!r} {run.status(dep).value}",
                )
                continue
            runnable.append(stage_id)

        if not runnable:
            return

        logger.info("layer started", extra={"stages": runnable})

        pool: WorkerPool[_StageOutcome] = WorkerPool(self._settings.max_parallel_stages)
        outcomes: dict[str, _StageOutcome] = {}
        async for outcome in pool.run(
            self._execute_stage(run, plans[stage_id], token) for stage_id in runnable
        ):
            outcomes[outcome.stage_id] = outcome
        self.peak_concurrency = max(self.peak_concurrency, pool.max_observed)

        for stage_id in sorted(outcomes):
            with correlation_scope(stage_id=stage_id):
                self._finalize_stage(run, plans[stage_id], outcomes[stage_id])

    async def _execute_stage(
        self,
        run: PipelineRun,
        plan: _StagePlan,
        token: CancellationToken,
    ) -> _StageOutcome:
        stage_id = plan.stage.stage_id
        context = ExecutorContext(
            run_id=run.run_id,
            stage_id=stage_id,
            config=plan.stage.config,
            trigger=run.trigger,
            timeout_seconds=plan.timeout_seconds,
            cancel_token=token,
        )
        if token.is_cancelled:
            # Still queued for a worker slot when the run was cancelled.
            return _StageOutcome(stage_id, skip_reason=CANCELLED_REASON)
        started_ns = time.monotonic_ns()

        def outcome(
            result: ExecutorResult | None = None, failure: StageFailure | None = None
        ) -> _StageOutcome:
            elapsed = max(0, (time.monotonic_ns() - started_ns) // 1_000_000)
            return _StageOutcome(stage_id, result=result, failure=failure, duration_ms=elapsed)

        with correlation_scope(stage_id=stage_id):
            _transition(run, stage_id, StageStatus.RUNNING)
            try:
                result = await run_with_timeout(
                    invoke_executor(plan.executor, context), plan.timeout_seconds, token
                )
            except TimeoutError:
                return outcome(
                    failure=StageFailure(
                        StageFailureKind.TIMEOUT,
                        f"stage timed out after {plan.timeout_seconds:g}s",
                    )
                )
            except asyncio.CancelledError:
                if not token.is_cancelled:
                    raise
                return outcome(
                    failure=StageFailure(StageFailureKind.EXECUTION_ERROR, CANCELLED_REASON)
                )
            except ExecutionError as exc:
                return outcome(failure=stage_failure_for(exc))
            except ThresholdBreach as exc:
                return outcome(failure=StageFailure(StageFailureKind.THRESHOLD_BREACH, str(exc)))
            except ValidationError as exc:
                return outcome(failure=StageFailure(StageFailureKind.VALIDATION_ERROR, str(exc)))
            except Exception as exc:
                logger.warning("executor raised unexpectedly", exc_info=True)
                return outcome(
                    failure=StageFailure(
                        StageFailureKind.EXECUTION_ERROR, f"{type(exc).__name__}: {exc}"
                    )
                )
            return outcome(result=result)

    def _finalize_stage(self, run: PipelineRun, plan: _StagePlan, outcome: _StageOutcome) -> None:
        stage_id = outcome.stage_id
        logger.debug("stage outcome collected", extra={"duration_ms": outcome.duration_ms})
        if outcome.skip_reason is not None:
            _transition(run, stage_id, StageStatus.SKIPPED, reason=outcome.skip_reason)
            return
        if outcome.failure is not None:
            _transition(run, stage_id, StageStatus.FAILED, failure=outcome.failure)
            return

        result = outcome.result or ExecutorResult()
        recorded = run.record_findings(stage_id, result.findings)
        if result.message:
            run.record_message(stage_id, result.message)

        if not result.succeeded:
            error = ExecutionError(
                result.message or "executor reported failure", kind="reported_failure"
            )
            _transition(run, stage_id, StageStatus.FAILED, failure=stage_failure_for(error))
            return

        try:
            run.artifacts.register_all(result.artifacts)
        except ArtifactValidationError as exc:
            _transition(
                run,
                stage_id,
                StageStatus.FAILED,
                failure=StageFailure(StageFailureKind.VALIDATION_ERROR, str(exc)),
            )
            return

        if plan.gate is not None:
            gate_result = plan.gate.evaluate(recorded)
            run.record_gate_result(stage_id, gate_result)
            logger.info("severity gate evaluated", extra={"gate": gate_result.to_dict()})
            if not gate_result.passed:
                _transition(
                    run,
                    stage_id,
                    StageStatus.FAILED,
                    failure=StageFailure(
                        StageFailureKind.THRESHOLD_BREACH, str(ThresholdBreach(gate_result))
                    ),
                )
                return

        _transition(run, stage_id, StageStatus.SUCCEEDED)


def stage_failure_for(error: ExecutionError) -> StageFailure:
    """Classify an ``ExecutionError``; only kind ``timeout`` maps to a timeout failure."""

    if error.kind == "timeout":
        return StageFailure(StageFailureKind.TIMEOUT, str(error))
    return StageFailure(StageFailureKind.EXECUTION_ERROR, str(error))


def _transition(
    run: PipelineRun,
    stage_id: str,
    to_status: StageStatus,
    *,
    reason: str | None = None,
    failure: StageFailure | None = None,
) -> None:
    entry = run.transition(stage_id, to_status, reason=reason, failure=failure)
    level = logging.WARNING if to_status is StageStatus.FAILED else logging.INFO
    logger.log(
        level,
        "stage %s -> %s",
        stage_id,
        to_status.value,
        extra={"stage_id": stage_id, "transition": entry.to_dict()},
    )


def run_pipeline(
    stages: StageGraph | Iterable[StageDefinition],
    *,
    settings: SchedulerSettings | None = None,
    registry: ExecutorRegistry | None = None,
    trigger: PipelineTrigger | None = None,
    run_id: str | None = None,
) -> PipelineRun:
    """Blocking convenience wrapper around :meth:`PipelineScheduler.run`."""

    scheduler = PipelineScheduler(settings, registry=registry)
    return asyncio.run(scheduler.run(stages, run_id=run_id, trigger=trigger))


__all__ = [
    "CANCELLED_REASON",
    "PipelineScheduler",
    "SchedulerSettings",
    "run_pipeline",
    "stage_failure_for",
]
