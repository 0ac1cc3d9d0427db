"""Config loading: file, profile, environment and CLI precedence."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from scangate.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    env_name_for_path,
    load_config,
)
from scangate.config.schema import ConfigValidationError
from scangate.domain.errors import ConfigurationError


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "scangate.toml"
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_apply_without_a_config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    config = load_config(environ={})

    assert config["scheduler"]["max_parallel_stages"] == 4
    assert config["gate"]["default_mode"] == "fail"
    assert config["observability"]["log_dir"] == (tmp_path.resolve() / "logs").as_posix()


def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="not found"):
        load_config(tmp_path / "absent.toml", environ={})


def test_invalid_toml_is_an_error(tmp_path: Path) -> None:
    path = _write(tmp_path, "[scheduler\n")

    with pytest.raises(ConfigurationError, match="invalid TOML"):
        load_config(path, environ={})


def test_file_values_override_defaults(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        "[scheduler]\nmax_parallel_stages = 2\n\n[gate]\ndefault_threshold = 7.0\n",
    )

    config = load_config(path, environ={})

    assert config["scheduler"]["max_parallel_stages"] == 2
    assert config["gate"]["default_threshold"] == 7.0


def test_unknown_file_keys_are_rejected(tmp_path: Path) -> None:
    path = _write(tmp_path, "[scheduler]\nthreads = 2\n")

    with pytest.raises(ConfigValidationError) as exc_info:
        load_config(path, environ={})

    assert [issue.path for issue in exc_info.value.issues] == ["scheduler.threads"]


def test_precedence_cli_over_env_over_profile_over_file(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        "\n".join(
            [
                "[scheduler]",
                "max_parallel_stages = 2",
                "default_stage_timeout_seconds = 30.0",
                "",
                "[profiles.ci.scheduler]",
                "max_parallel_stages = 3",
                "default_stage_timeout_seconds = 45.0",
                "",
                "[profiles.ci.run]",
                "fail_on_partial_skip = true",
            ]
        ),
    )
    environ = {"SCANGATE_SCHEDULER__MAX_PARALLEL_STAGES": "5"}

    from_profile = load_config(path, profile="ci", environ={})
    from_env = load_config(path, profile="ci", environ=environ)
    from_cli = load_config(
        path,
        profile="ci",
        environ=environ,
        cli_overrides={"scheduler.max_parallel_stages": 6},
    )

    assert from_profile["scheduler"]["max_parallel_stages"] == 3
    assert from_profile["scheduler"]["default_stage_timeout_seconds"] == 45.0
    assert from_profile["run"]["fail_on_partial_skip"] is True
    assert from_env["scheduler"]["max_parallel_stages"] == 5
    assert from_cli["scheduler"]["max_parallel_stages"] == 6
    assert from_cli["scheduler"]["default_stage_timeout_seconds"] == 45.0


def test_profile_can_be_selected_by_environment(tmp_path: Path) -> None:
    config = load_config(_write(tmp_path, ""), environ={"SCANGATE_PROFILE": "permissive"})

    assert config["gate"]["default_mode"] == "report"


@pytest.mark.parametrize(
    ("name", "raw", "section", "key", "expected"),
    [
        ("SCANGATE_RUN__FAIL_ON_PARTIAL_SKIP", "yes", "run", "fail_on_partial_skip", True),
        ("SCANGATE_OBSERVABILITY__LOG_TO_STDOUT", "off", "observability", "log_to_stdout", False),
        ("SCANGATE_OBSERVABILITY__LOG_LEVEL", "debug", "observability", "log_level", "DEBUG"),
        ("SCANGATE_GATE__DEFAULT_THRESHOLD", "6.5", "gate", "default_threshold", 6.5),
        ("SCANGATE_GATE__DEFAULT_MODE", "report", "gate", "default_mode", "report"),
    ],
)
def test_environment_values_are_coerced(
    tmp_path: Path, name: str, raw: str, section: str, key: str, expected: object
) -> None:
    config = load_config(_write(tmp_path, ""), environ={name: raw})

    assert config[section][key] == expected


@pytest.mark.parametrize(
    ("name", "raw"),
    [
        ("SCANGATE_SCHEDULER__MAX_PARALLEL_STAGES", "many"),
        ("SCANGATE_RUN__FAIL_ON_PARTIAL_SKIP", "perhaps"),
        ("SCANGATE_GATE__DEFAULT_THRESHOLD", "high"),
    ],
)
def test_uncoercible_environment_values_are_rejected(tmp_path: Path, name: str, raw: str) -> None:
    with pytest.raises(ConfigLoadError, match=name):
        load_config(_write(tmp_path, ""), environ={name: raw})


def test_environment_values_are_validated_after_coercion(tmp_path: Path) -> None:
    with pytest.raises(ConfigValidationError):
        load_config(
            _write(tmp_path, ""), environ={"SCANGATE_SCHEDULER__MAX_PARALLEL_STAGES": "0"}
        )


def test_relative_log_dir_resolves_against_config_file(tmp_path: Path) -> None:
    nested = tmp_path / "ci"
    nested.mkdir()
    path = nested / "scangate.toml"
    path.write_text('[observability]\nlog_dir = "../artifacts/logs"\n', encoding="utf-8")

    config = load_config(path, environ={})

    assert config["observability"]["log_dir"] == (tmp_path.resolve() / "artifacts" / "logs").as_posix()


def test_env_name_for_path() -> None:
    assert env_name_for_path(("scheduler", "max_parallel_stages")) == (
        "SCANGATE_SCHEDULER__MAX_PARALLEL_STAGES"
    )


def test_dump_effective_config_is_sorted_json(tmp_path: Path) -> None:
    config = load_config(_write(tmp_path, ""), environ={})

    payload = json.loads(dump_effective_config(config))

    assert list(payload) == sorted(payload)
    assert payload["meta"]["schema_version"] == 1
