"""Subprocess-backed ``command`` executor."""

from __future__ import annotations

import asyncio
import json
import sys
import time
from pathlib import Path

import pytest

from scangate.domain.errors import ExecutionError
from scangate.executors.base import ExecutorContext
from scangate.executors.command import CommandExecutor, CommandSpec, run_command


def _context(config: dict[str, object], *, timeout: float | None = 10.0) -> ExecutorContext:
    return ExecutorContext(run_id="run-test", stage_id="scan", config=config, timeout_seconds=timeout)


def _python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


async def test_findings_are_parsed_from_stdout() -> None:
    document = {"findings": [{"tool": "fake", "severity": 9.1, "location": "a.py"}]}
    code = f"import json; print(json.dumps({document!r}))"

    result = await CommandExecutor()(_context({"argv": _python(code), "findings_from": "stdout"}))

    assert [(item.tool, item.severity, item.stage_id) for item in result.findings] == [
        ("fake", 9.1, "scan")
    ]


async def test_bare_list_on_stdout_is_treated_as_findings() -> None:
    code = "import json; print(json.dumps([{'tool': 'x', 'severity': 1}]))"

    result = await CommandExecutor()(_context({"argv": _python(code), "findings_from": "stdout"}))

    assert len(result.findings) == 1


async def test_findings_are_read_from_file_relative_to_cwd(tmp_path: Path) -> None:
    payload = {"artifacts": [{"name": "sbom", "location": "sbom.json"}]}
    code = f"import json; open('out.json', 'w').write(json.dumps({payload!r}))"

    result = await CommandExecutor()(
        _context(
            {
                "argv": _python(code),
                "cwd": str(tmp_path),
                "findings_from": "file",
                "findings_file": "out.json",
            }
        )
    )

    assert [item.name for item in result.artifacts] == ["sbom"]


async def test_no_findings_source_means_empty_result() -> None:
    result = await CommandExecutor()(_context({"argv": _python("print('not json')")}))

    assert result.succeeded
    assert result.findings == ()


async def test_non_zero_exit_is_an_execution_error_with_stderr_tail() -> None:
    code = "import sys; sys.stderr.write('scanner crashed\\n'); sys.exit(3)"

    with pytest.raises(ExecutionError) as exc_info:
        await CommandExecutor()(_context({"argv": _python(code)}))

    assert exc_info.value.kind == "error"
    assert "code 3" in str(exc_info.value)
    assert "scanner crashed" in str(exc_info.value)


async def test_allowed_exit_codes_are_treated_as_success() -> None:
    code = "import sys; print('[]'); sys.exit(1)"

    result = await CommandExecutor()(
        _context({"argv": _python(code), "allowed_exit_codes": [0, 1], "findings_from": "stdout"})
    )

    assert result.succeeded


async def test_invalid_json_is_malformed_output() -> None:
    with pytest.raises(ExecutionError) as exc_info:
        await CommandExecutor()(
            _context({"argv": _python("print('{oops')"), "findings_from": "stdout"})
        )

    assert exc_info.value.kind == "malformed_output"


async def test_missing_findings_file_is_malformed_output(tmp_path: Path) -> None:
    with pytest.raises(ExecutionError) as exc_info:
        await CommandExecutor()(
            _context(
                {
                    "argv": _python("pass"),
                    "cwd": str(tmp_path),
                    "findings_from": "file",
                    "findings_file": "missing.json",
                }
            )
        )

    assert exc_info.value.kind == "malformed_output"


async def test_timeout_kills_the_process() -> None:
    with pytest.raises(ExecutionError) as exc_info:
        await CommandExecutor()(
            _context({"argv": _python("import time; time.sleep(30)")}, timeout=0.2)
        )

    assert exc_info.value.kind == "timeout"


async def test_missing_binary_is_an_execution_error() -> None:
    with pytest.raises(ExecutionError, match="unable to start"):
        await CommandExecutor()(_context({"argv": ["scangate-definitely-missing-binary"]}))


async def test_stderr_secrets_are_redacted() -> None:
    code = "import sys; sys.stderr.write('token=abc123secret'); sys.exit(2)"
    spec = CommandSpec.from_config({"argv": _python(code)})

    result = await run_command(spec, timeout_seconds=10)

    assert result.exit_code == 2
    assert "abc123secret" not in result.stderr


async def test_env_is_passed_without_inheriting() -> None:
    code = "import json, os; print(json.dumps({'message': os.environ.get('SCAN_MODE', '')}))"
    spec = CommandSpec.from_config(
        {"argv": _python(code), "env": {"SCAN_MODE": "deep"}, "inherit_env": False}
    )

    result = await run_command(spec, timeout_seconds=10)

    assert json.loads(result.stdout) == {"message": "deep"}


@pytest.mark.parametrize(
    "config",
    [
        {},
        {"argv": []},
        {"argv": "semgrep"},
        {"argv": ["x"], "env": {"A": 1}},
        {"argv": ["x"], "allowed_exit_codes": [True]},
        {"argv": ["x"], "findings_from": "stderr"},
        {"argv": ["x"], "findings_from": "file"},
        {"argv": ["x"], "max_output_chars": 0},
        {"argv": ["x"], "shell": True},
    ],
)
def test_invalid_command_config_is_rejected(config: dict[str, object]) -> None:
    with pytest.raises(ExecutionError):
        CommandSpec.from_config(config)


async def test_stderr_is_truncated_to_cap_but_stdout_is_kept_whole() -> None:
    code = "import sys; sys.stderr.write('e' * 500); print('x' * 500)"
    spec = CommandSpec.from_config({"argv": _python(code), "max_output_chars": 100})

    result = await run_command(spec, timeout_seconds=10)

    assert result.stderr.startswith("e" * 100)
    assert "truncated 400 chars" in result.stderr
    assert result.stdout == "x" * 500 + "\n"


async def test_findings_larger_than_output_cap_are_parsed_in_full() -> None:
    code = (
        "import json; print(json.dumps({'findings': ["
        "{'tool': 'osv', 'severity': 5.0, 'location': 'pkg-%d' % i} for i in range(1500)]}))"
    )

    result = await CommandExecutor()(
        _context({"argv": _python(code), "findings_from": "stdout", "max_output_chars": 1000})
    )

    assert len(result.findings) == 1500
    assert result.findings[-1].location == "pkg-1499"


@pytest.mark.skipif(sys.platform == "win32", reason="process groups are POSIX-only")
async def test_timeout_kills_grandchildren_holding_the_pipes() -> None:
    started = time.monotonic()

    with pytest.raises(ExecutionError) as exc_info:
        await CommandExecutor()(_context({"argv": ["/bin/sh", "-c", "sleep 6; true"]}, timeout=0.5))

    assert exc_info.value.kind == "timeout"
    assert time.monotonic() - started < 3.0


@pytest.mark.skipif(sys.platform == "win32", reason="process groups are POSIX-only")
async def test_cancellation_kills_the_process_group() -> None:
    spec = CommandSpec.from_config({"argv": ["/bin/sh", "-c", "sleep 6; true"]})
    task = asyncio.ensure_future(run_command(spec, timeout_seconds=30))
    await asyncio.sleep(0.3)
    started = time.monotonic()

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert time.monotonic() - started < 3.0
