"""
scangate — external tool executor

File: src/scangate/executors/command.py

Purpose
- Runs a scanner as a local subprocess and turns its exit status and optional
  normalized JSON output into an ``ExecutorResult``.

Stage config keys
- ``argv`` (required): non-empty list of strings; no shell is involved.
- ``cwd``, ``env`` (mapping of strings), ``inherit_env`` (default true).
- ``allowed_exit_codes``: exit codes treated as success (default ``[0]``).
- ``findings_from``: ``stdout`` or ``file``; absent means the tool reports nothing.
- ``findings_file``: path read when ``findings_from = "file"`` (relative to ``cwd``).
- ``max_output_chars``: cap on the stderr text kept for logs and error messages
  (default 200000). Findings documents are always parsed in full.

The JSON document has the same shape as a mapping returned by a Python
executor: ``{"findings": [...], "artifacts": [...], "status": ..., "message": ...}``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
import sys
import time
from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from scangate.domain.errors import ExecutionError
from scangate.executors.base import ExecutorContext, ExecutorResult, parse_result_payload
from scangate.observability.logging import redact_text

logger = logging.getLogger(__name__)

_CONFIG_KEYS = frozenset(
    {
        "argv",
        "cwd",
        "env",
        "inherit_env",
        "allowed_exit_codes",
        "findings_from",
        "findings_file",
        "max_output_chars",
    }
)
_FINDINGS_SOURCES = ("stdout", "file")
_STDERR_TAIL_CHARS = 2000
_KILL_DRAIN_SECONDS = 2.0
_POSIX = sys.platform != "win32"


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """Validated subprocess invocation built from a stage's config blob."""

    argv: tuple[str, ...]
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    inherit_env: bool = True
    allowed_exit_codes: tuple[int, ...] = (0,)
    findings_from: str | None = None
    findings_file: str | None = None
    max_output_chars: int = 200_000

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> CommandSpec:
        unknown = sorted(str(key) for key in config if key not in _CONFIG_KEYS)
        if unknown:
            raise ExecutionError(f"command config has unknown key(s): {', '.join(unknown)}")

        argv = config.get("argv")
        if (
            not isinstance(argv, (list, tuple))
            or not argv
            or not all(isinstance(item, str) and item for item in argv)
        ):
            raise ExecutionError("command config 'argv' must be a non-empty list of strings")

        env = config.get("env", {})
        if not isinstance(env, Mapping) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in env.items()
        ):
            raise ExecutionError("command config 'env' must map strings to strings")

        codes = config.get("allowed_exit_codes", [0])
        if (
            not isinstance(codes, (list, tuple))
            or not codes
            or not all(isinstance(code, int) and not isinstance(code, bool) for code in codes)
        ):
            raise ExecutionError("command config 'allowed_exit_codes' must be a list of integers")

        findings_from = config.get("findings_from")
        if findings_from is not None and findings_from not in _FINDINGS_SOURCES:
            raise ExecutionError(
                f"command config 'findings_from' must be one of {', '.join(_FINDINGS_SOURCES)}"
            )
        findings_file = config.get("findings_file")
        if findings_from == "file" and (not isinstance(findings_file, str) or not findings_file):
            raise ExecutionError("command config 'findings_file' is required when findings_from=file")

        cwd = config.get("cwd")
        if cwd is not None and not isinstance(cwd, str):
            raise ExecutionError("command config 'cwd' must be a string")

        max_output_chars = config.get("max_output_chars", 200_000)
        if not isinstance(max_output_chars, int) or max_output_chars <= 0:
            raise ExecutionError("command config 'max_output_chars' must be a positive integer")

        return cls(
            argv=tuple(argv),
            cwd=cwd,
            env=dict(env),
            inherit_env=bool(config.get("inherit_env", True)),
            allowed_exit_codes=tuple(sorted(set(codes))),
            findings_from=findings_from,
            findings_file=findings_file if isinstance(findings_file, str) else None,
            max_output_chars=max_output_chars,
        )

    def build_env(self) -> dict[str, str]:
        if not self.inherit_env:
            return dict(self.env)
        env = dict(os.environ)
        env.update(self.env)
        return env


@dataclass(frozen=True, slots=True)
class CommandResult:
    argv: tuple[str, ...]
    exit_code: int | None
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False


class CommandExecutor:
    """Executor kind ``command``."""

    async def __call__(self, context: ExecutorContext) -> ExecutorResult:
        spec = CommandSpec.from_config(context.config)
        result = await run_command(spec, timeout_seconds=context.timeout_seconds)

        if result.timed_out:
            raise ExecutionError(
                f"command {spec.argv[0]!r} timed out after {context.timeout_seconds}s",
                kind="timeout",
            )
        if result.exit_code not in spec.allowed_exit_codes:
            raise ExecutionError(
                f"command {spec.argv[0]!r} exited with code {result.exit_code}"
                f"{_stderr_suffix(result.stderr)}"
            )

        logger.debug(
            "command finished",
            extra={"argv0": spec.argv[0], "exit_code": result.exit_code, "duration_ms": result.duration_ms},
        )

        if spec.findings_from == "stdout":
            return _parse_document(result.stdout, "stdout", context.stage_id)
        if spec.findings_from == "file":
            return _parse_document(_read_findings_file(spec), "findings file", context.stage_id)
        return ExecutorResult()


async def run_command(spec: CommandSpec, *, timeout_seconds: float | None = None) -> CommandResult:
    """Run ``spec`` and capture its output.

    The child starts in its own session so that, on timeout or cancellation,
    the whole process group is killed, not just the direct child. Draining the
    pipes after the kill is bounded by ``_KILL_DRAIN_SECONDS``: a grandchild
    that escaped the group cannot hold the stage open.
    """

    started_ns = time.monotonic_ns()
    try:
        process = await asyncio.create_subprocess_exec(
            *spec.argv,
            cwd=spec.cwd,
            env=spec.build_env(),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=_POSIX,
        )
    except OSError as exc:
        raise ExecutionError(f"unable to start {spec.argv[0]!r}: {redact_text(str(exc))}") from exc

    timed_out = False
    try:
        if timeout_seconds is None:
            stdout_bytes, stderr_bytes = await process.communicate()
        else:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=timeout_seconds
            )
    except TimeoutError:
        timed_out = True
        stdout_bytes, stderr_bytes = await _kill_and_drain(process)
    except asyncio.CancelledError:
        await _kill_and_drain(process)
        raise

    return CommandResult(
        argv=spec.argv,
        exit_code=None if timed_out else process.returncode,
        stdout=_decode(stdout_bytes),
        stderr=redact_text(_truncate(_decode(stderr_bytes), spec.max_output_chars)),
        duration_ms=max(0, (time.monotonic_ns() - started_ns) // 1_000_000),
        timed_out=timed_out,
    )


async def _kill_and_drain(process: asyncio.subprocess.Process) -> tuple[bytes, bytes]:
    _kill_process_group(process)
    try:
        return await asyncio.wait_for(process.communicate(), timeout=_KILL_DRAIN_SECONDS)
    except TimeoutError:
        logger.warning(
            "process output still open after kill; abandoning pipes",
            extra={"pid": process.pid},
        )
        return b"", b""


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    if _POSIX:
        # The child leads its own session, so its pid is the group id.
        with suppress(ProcessLookupError, PermissionError):
            os.killpg(process.pid, signal.SIGKILL)
    elif process.returncode is None:
        with suppress(ProcessLookupError):
            process.kill()


def _parse_document(text: str, source: str, stage_id: str) -> ExecutorResult:
    if not text.strip():
        return ExecutorResult()
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ExecutionError(
            f"{source} is not valid JSON: {exc.msg} at line {exc.lineno}",
            kind="malformed_output",
        ) from exc
    if isinstance(payload, list):
        payload = {"findings": payload}
    if not isinstance(payload, Mapping):
        raise ExecutionError(
            f"{source} must hold a JSON object or a list of findings", kind="malformed_output"
        )
    return parse_result_payload(payload, stage_id=stage_id)


def _read_findings_file(spec: CommandSpec) -> str:
    path = Path(spec.findings_file or "")
    if not path.is_absolute() and spec.cwd is not None:
        path = Path(spec.cwd) / path
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ExecutionError(
            f"unable to read findings file {str(path)!r}: {exc.strerror or exc}",
            kind="malformed_output",
        ) from exc


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").replace("\r\n", "\n").replace("\r", "\n")


def _truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return f"{text[:max_chars]}\n...[truncated {len(text) - max_chars} chars]"


def _stderr_suffix(stderr: str) -> str:
    tail = stderr.strip()[-_STDERR_TAIL_CHARS:]
    return f": {tail}" if tail else ""


__all__ = ["CommandExecutor", "CommandResult", "CommandSpec", "run_command"]
