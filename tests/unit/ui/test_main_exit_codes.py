"""Exit-code routing at the CLI boundary."""

from __future__ import annotations

import pytest

from scangate import main as main_module
from scangate.domain.errors import DependencyCycleError
from scangate.main import ExitCode, _route_exception, cli_entrypoint


def test_configuration_errors_route_to_config_exit_code() -> None:
    assert _route_exception(DependencyCycleError([("a", "b", "a")])) is ExitCode.CONFIG_ERROR


def test_chained_configuration_error_is_found() -> None:
    try:
        try:
            raise DependencyCycleError([("a", "a")])
        except DependencyCycleError as exc:
            raise RuntimeError("wrapper") from exc
    except RuntimeError as wrapped:
        assert _route_exception(wrapped) is ExitCode.CONFIG_ERROR


def test_unexpected_errors_are_internal() -> None:
    assert _route_exception(ZeroDivisionError()) is ExitCode.INTERNAL_ERROR


def test_internal_errors_print_traceback(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def explode(argv: object) -> int:
        raise ZeroDivisionError("bad math")

    monkeypatch.setattr("scangate.ui.cli.run_cli", explode)

    assert cli_entrypoint([]) == ExitCode.INTERNAL_ERROR
    assert "Traceback" in capsys.readouterr().err


def test_missing_subcommand_is_a_usage_error(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint([]) == 2
    assert "usage" in capsys.readouterr().err


def test_exit_codes_are_stable() -> None:
    assert [code.value for code in main_module.ExitCode] == [0, 1, 2, 3]
