"""
scangate — stage executor contract

File: src/scangate/executors/base.py

Purpose
- Defines the boundary between the scheduler and external tools: the context an
  executor receives, the result it returns, and the registry that resolves
  executor kind names used in pipeline definitions.

Functional requirements
- Executors may be sync or async callables taking one ``ExecutorContext``.
- Accepted outputs: ``ExecutorResult``, a mapping
  ``{findings, artifacts, status, message}``, or ``None``.
- Anything else raises ``ExecutionError`` with kind ``malformed_output``.
- Sync executors run on a daemon thread so they do not block sibling stages,
  and an abandoned (timed-out) one cannot keep the process alive.
"""

from __future__ import annotations

import asyncio
import contextvars
import inspect
import threading
from collections.abc import Callable, Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Literal, Protocol

from scangate.domain.errors import ConfigurationError, ExecutionError
from scangate.domain.models import Artifact, ExecutorRef, Finding, PipelineTrigger
from scangate.utils.concurrency import CancellationToken

ExecutorStatus = Literal["succeeded", "failed"]
ExecutorSource = Literal["builtin", "external"]

_RESULT_KEYS = frozenset({"findings", "artifacts", "status", "message"})
_STATUSES: tuple[ExecutorStatus, ...] = ("succeeded", "failed")


@dataclass(frozen=True, slots=True)
class ExecutorContext:
    """Everything an executor may read. ``config`` is the stage's opaque blob."""

    run_id: str
    stage_id: str
    config: Mapping[str, Any] = field(default_factory=dict)
    trigger: PipelineTrigger = field(default_factory=PipelineTrigger)
    timeout_seconds: float | None = None
    cancel_token: CancellationToken | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "config", MappingProxyType(dict(self.config)))

    @property
    def cancelled(self) -> bool:
        return self.cancel_token is not None and self.cancel_token.is_cancelled


@dataclass(frozen=True, slots=True)
class ExecutorResult:
    findings: tuple[Finding, ...] = ()
    artifacts: tuple[Artifact, ...] = ()
    status: ExecutorStatus = "succeeded"
    message: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "findings", tuple(self.findings))
        object.__setattr__(self, "artifacts", tuple(self.artifacts))
        if self.status not in _STATUSES:
            raise ValueError(
                f"ExecutorResult.status must be one of {', '.join(_STATUSES)}, got {self.status!r}"
            )

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    def bind_stage(self, stage_id: str) -> ExecutorResult:
        """Stamp every finding and artifact with the producing stage id."""

        return ExecutorResult(
            findings=tuple(item.with_stage(stage_id) for item in self.findings),
            artifacts=tuple(item.with_stage(stage_id) for item in self.artifacts),
            status=self.status,
            message=self.message,
        )


class StageExecutor(Protocol):
    def __call__(self, context: ExecutorContext) -> object: ...


ExecutorCallable = Callable[[ExecutorContext], Any]


def normalize_output(raw: object, *, stage_id: str) -> ExecutorResult:
    """Coerce an executor's return value into an ``ExecutorResult`` bound to ``stage_id``."""

    if raw is None:
        return ExecutorResult()
    if isinstance(raw, ExecutorResult):
        return raw.bind_stage(stage_id)
    if not isinstance(raw, Mapping):
        raise ExecutionError(
            f"executor returned {type(raw).__name__}; expected ExecutorResult, mapping or None",
            kind="malformed_output",
        )
    return parse_result_payload(raw, stage_id=stage_id)


def parse_result_payload(payload: Mapping[str, object], *, stage_id: str) -> ExecutorResult:
    """Parse the JSON-shaped result document shared by mappings and command output."""

    unknown = sorted(str(key) for key in payload if key not in _RESULT_KEYS)
    if unknown:
        raise ExecutionError(
            f"executor output has unknown field(s): {', '.join(unknown)}",
            kind="malformed_output",
        )

    status = payload.get("status", "succeeded")
    if status not in _STATUSES:
        raise ExecutionError(
            f"executor output status must be one of {', '.join(_STATUSES)}, got {status!r}",
            kind="malformed_output",
        )

    message = payload.get("message")
    if message is not None and not isinstance(message, str):
        raise ExecutionError("executor output 'message' must be a string", kind="malformed_output")

    findings = _parse_items(payload.get("findings", []), "findings", Finding.from_dict, stage_id)
    artifacts = _parse_items(payload.get("artifacts", []), "artifacts", Artifact.from_dict, stage_id)
    return ExecutorResult(
        findings=findings,
        artifacts=artifacts,
        status=status,  # type: ignore[arg-type]
        message=message,
    )


async def invoke_executor(executor: ExecutorCallable, context: ExecutorContext) -> ExecutorResult:
    """Call ``executor`` (sync executors on a daemon thread) and normalize its output."""

    if inspect.iscoroutinefunction(executor) or inspect.iscoroutinefunction(
        getattr(executor, "__call__", None)
    ):
        raw = await executor(context)
    else:
        raw = await run_in_daemon_thread(executor, context)
        if inspect.isawaitable(raw):
            raw = await raw
    return normalize_output(raw, stage_id=context.stage_id)


async def run_in_daemon_thread(
    func: Callable[[ExecutorContext], object], context: ExecutorContext
) -> object:
    """Run a sync executor on its own daemon thread.

    A timed-out stage abandons the thread; it is never joined, neither by
    ``asyncio.run`` on shutdown nor at interpreter exit.
    """

    loop = asyncio.get_running_loop()
    future: asyncio.Future[object] = loop.create_future()
    scope = contextvars.copy_context()

    def settle(result: object, error: BaseException | None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def target() -> None:
        try:
            result = scope.run(func, context)
        except Exception as exc:  # noqa: BLE001 - re-raised in the awaiting task.
            outcome: tuple[object, BaseException | None] = (None, exc)
        else:
            outcome = (result, None)
        # The run may already be over and its loop closed.
        with suppress(RuntimeError):
            loop.call_soon_threadsafe(settle, *outcome)

    threading.Thread(
        target=target, name=f"scangate-stage-{context.stage_id}", daemon=True
    ).start()
    return await future


@dataclass(frozen=True, slots=True)
class ExecutorRegistration:
    kind: str
    source: ExecutorSource
    executor: ExecutorCallable


class ExecutorRegistry:
    """Maps executor kind names (as written in pipeline files) to callables."""

    def __init__(self) -> None:
        self._registrations: dict[str, ExecutorRegistration] = {}

    def register(
        self,
        kind: str,
        executor: ExecutorCallable,
        *,
        source: ExecutorSource = "external",
        replace: bool = False,
    ) -> None:
        if not isinstance(kind, str) or not kind.strip():
            raise ValueError("executor kind must be a non-empty string")
        if not callable(executor):
            raise TypeError(f"executor for kind {kind!r} must be callable")
        normalized = kind.strip()
        existing = self._registrations.get(normalized)
        if existing is not None and not replace:
            raise ValueError(f"executor kind {normalized!r} already registered ({existing.source})")
        self._registrations[normalized] = ExecutorRegistration(
            kind=normalized, source=source, executor=executor
        )

    def contains(self, kind: str) -> bool:
        return kind in self._registrations

    def resolve(self, ref: ExecutorRef) -> ExecutorCallable:
        """Return the callable for ``ref``; unknown kind names are configuration errors."""

        if callable(ref):
            return ref
        registration = self._registrations.get(ref)
        if registration is None:
            known = ", ".join(self.kinds()) or "<none>"
            raise ConfigurationError(f"unknown executor kind {ref!r}; registered: [{known}]")
        return registration.executor

    def kinds(self) -> tuple[str, ...]:
        return tuple(sorted(self._registrations))

    def copy(self) -> ExecutorRegistry:
        clone = ExecutorRegistry()
        clone._registrations = dict(self._registrations)
        return clone


def _parse_items(
    raw: object,
    field_name: str,
    parse: Callable[..., Any],
    stage_id: str,
) -> tuple[Any, ...]:
    if raw is None:
        return ()
    if isinstance(raw, (str, bytes)) or not isinstance(raw, Sequence):
        raise ExecutionError(
            f"executor output {field_name!r} must be a list, got {type(raw).__name__}",
            kind="malformed_output",
        )
    parsed: list[Any] = []
    for index, item in enumerate(raw):
        if isinstance(item, (Finding, Artifact)):
            parsed.append(item.with_stage(stage_id))
            continue
        if not isinstance(item, Mapping):
            raise ExecutionError(
                f"executor output {field_name}[{index}] must be an object",
                kind="malformed_output",
            )
        try:
            parsed.append(parse(item, stage_id=stage_id))
        except (TypeError, ValueError) as exc:
            raise ExecutionError(
                f"executor output {field_name}[{index}] is invalid: {exc}",
                kind="malformed_output",
            ) from exc
    return tuple(parsed)


__all__ = [
    "ExecutorCallable",
    "ExecutorContext",
    "ExecutorRegistration",
    "ExecutorRegistry",
    "ExecutorResult",
    "ExecutorStatus",
    "StageExecutor",
    "invoke_executor",
    "normalize_output",
    "parse_result_payload",
    "run_in_daemon_thread",
]
