"""
scangate — configuration schema and validation.

File: src/scangate/config/schema.py

Purpose
- Built-in defaults for ``scangate.toml`` and the strict validator applied to
  every layer (file, env, CLI overrides, profile overlays).

Sections
- ``meta``: ``schema_version``.
- ``gate``: ``default_threshold`` (optional, 0..10), ``default_mode`` (fail|report).
- ``scheduler``: ``max_parallel_stages`` (>=1), ``default_stage_timeout_seconds`` (>0).
- ``run``: ``fail_on_partial_skip``.
- ``observability``: ``log_level``, ``log_dir``, ``log_to_stdout``, ``redact_secrets``.
- ``profiles.<name>``: partial overlays of the sections above.

Functional requirements
- Unknown keys are rejected; every problem is reported with its dotted path.
- Validation is deterministic so the same input always yields the same issues.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, NotRequired, TypedDict

from scangate.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_LOG_DIR,
    DEFAULT_MAX_PARALLEL_STAGES,
    DEFAULT_STAGE_TIMEOUT_SECONDS,
    SEVERITY_MAX,
    SEVERITY_MIN,
)
from scangate.domain.errors import ConfigurationError

BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("strict", "permissive")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
GATE_MODES: Final[tuple[str, ...]] = ("fail", "report")

_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_SENSITIVE_KEY_PARTS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "api_key",
    "apikey",
    "credential",
    "private_key",
)

# Config paths resolved relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (("observability", "log_dir"),)

_SECTIONS: Final[tuple[str, ...]] = ("gate", "scheduler", "run", "observability")


class MetaConfig(TypedDict):
    schema_version: int


class GateConfig(TypedDict):
    default_threshold: NotRequired[float | None]
    default_mode: Literal["fail", "report"]


class SchedulerConfig(TypedDict):
    max_parallel_stages: int
    default_stage_timeout_seconds: float


class RunConfig(TypedDict):
    fail_on_partial_skip: bool


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stdout: bool
    redact_secrets: bool


class ScangateConfig(TypedDict):
    meta: MetaConfig
    gate: GateConfig
    scheduler: SchedulerConfig
    run: RunConfig
    observability: ObservabilityConfig
    profiles: dict[str, dict[str, Any]]


DEFAULT_CONFIG: Final[ScangateConfig] = {
    "meta": {"schema_version": CONFIG_SCHEMA_VERSION},
    "gate": {"default_threshold": None, "default_mode": "fail"},
    "scheduler": {
        "max_parallel_stages": DEFAULT_MAX_PARALLEL_STAGES,
        "default_stage_timeout_seconds": DEFAULT_STAGE_TIMEOUT_SECONDS,
    },
    "run": {"fail_on_partial_skip": False},
    "observability": {
        "log_level": "INFO",
        "log_dir": DEFAULT_LOG_DIR,
        "log_to_stdout": False,
        "redact_secrets": True,
    },
    "profiles": {
        "strict": {
            "run": {"fail_on_partial_skip": True},
            "gate": {"default_mode": "fail"},
        },
        "permissive": {
            "run": {"fail_on_partial_skip": False},
            "gate": {"default_mode": "report"},
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ConfigurationError):
    """Strict config validation failed; ``issues`` lists every problem found."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> dict[str, Any]:
    """Deep copy of the built-in defaults."""
    return copy.deepcopy(dict(DEFAULT_CONFIG))


def migration_guidance(found_version: int) -> str:
    if found_version < CONFIG_SCHEMA_VERSION:
        return (
            f"schema version {found_version} is older than supported {CONFIG_SCHEMA_VERSION}; "
            "upgrade scangate.toml to the current schema"
        )
    if found_version > CONFIG_SCHEMA_VERSION:
        return (
            f"schema version {found_version} is newer than supported {CONFIG_SCHEMA_VERSION}; "
            "upgrade scangate"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; mappings merge, everything else replaces."""

    merged = copy.deepcopy(dict(base))
    _merge_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Merge the named profile onto ``config`` and re-validate the result."""

    materialized = copy.deepcopy(dict(config))
    selected = profile.strip() if isinstance(profile, str) else ""
    if not selected:
        return materialized

    profiles = materialized.get("profiles")
    overlay = profiles.get(selected) if isinstance(profiles, Mapping) else None
    if overlay is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )
    return assert_valid_config(merge_config(materialized, overlay))


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate a complete config document and return normalized values or issues."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)
    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Sorted copy with values under sensitive-looking keys replaced."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    return redacted if isinstance(redacted, dict) else {}


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"meta", "profiles", *_SECTIONS}, "", issues)
    _require_keys(payload, {"meta", *_SECTIONS}, "", issues)

    out: dict[str, Any] = {}
    _section(payload, "meta", issues, lambda obj, path: _validate_meta(obj, path, issues), out)
    for name in _SECTIONS:
        validator = _SECTION_VALIDATORS[name]
        _section(
            payload,
            name,
            issues,
            lambda obj, path, validator=validator: validator(obj, path, issues, partial=False),
            out,
        )
    _section(
        payload, "profiles", issues, lambda obj, path: _validate_profiles(obj, path, issues), out
    )
    return out


def _section(
    payload: Mapping[str, object],
    key: str,
    issues: _IssueCollector,
    validator: Callable[[dict[str, object], str], dict[str, Any]],
    out: dict[str, Any],
) -> None:
    raw = payload.get(key)
    if raw is None:
        return
    section_obj = _as_object(raw, key, issues)
    if section_obj is None:
        return
    out[key] = validator(section_obj, key)


def _validate_meta(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    _require_keys(payload, {"schema_version"}, path, issues)
    out: dict[str, Any] = {}
    if "schema_version" in payload:
        key_path = _join(path, "schema_version")
        parsed = _as_int(payload["schema_version"], key_path, issues, minimum=1)
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != CONFIG_SCHEMA_VERSION:
                issues.add(key_path, migration_guidance(parsed))
    return out


def _validate_gate(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, *, partial: bool
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"default_threshold", "default_mode"}, path, issues)
    if not partial:
        _require_keys(payload, {"default_mode"}, path, issues)

    out: dict[str, Any] = {}
    if "default_threshold" in payload:
        raw = payload["default_threshold"]
        if raw is None:
            out["default_threshold"] = None
        else:
            parsed = _as_float(
                raw,
                _join(path, "default_threshold"),
                issues,
                minimum=SEVERITY_MIN,
                maximum=SEVERITY_MAX,
            )
            if parsed is not None:
                out["default_threshold"] = parsed
    elif not partial:
        out["default_threshold"] = None

    if "default_mode" in payload:
        mode = _as_enum(
            payload["default_mode"], _join(path, "default_mode"), issues, allowed_values=GATE_MODES
        )
        if mode is not None:
            out["default_mode"] = mode
    return out


def _validate_scheduler(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, *, partial: bool
) -> dict[str, Any]:
    allowed = {"max_parallel_stages", "default_stage_timeout_seconds"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "max_parallel_stages" in payload:
        parsed_parallel = _as_int(
            payload["max_parallel_stages"], _join(path, "max_parallel_stages"), issues, minimum=1
        )
        if parsed_parallel is not None:
            out["max_parallel_stages"] = parsed_parallel
    if "default_stage_timeout_seconds" in payload:
        key_path = _join(path, "default_stage_timeout_seconds")
        parsed_timeout = _as_float(payload["default_stage_timeout_seconds"], key_path, issues)
        if parsed_timeout is not None:
            if parsed_timeout <= 0:
                issues.add(key_path, "must be > 0")
            else:
                out["default_stage_timeout_seconds"] = parsed_timeout
    return out


def _validate_run(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, *, partial: bool
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"fail_on_partial_skip"}, path, issues)
    if not partial:
        _require_keys(payload, {"fail_on_partial_skip"}, path, issues)
    out: dict[str, Any] = {}
    if "fail_on_partial_skip" in payload:
        parsed = _as_bool(
            payload["fail_on_partial_skip"], _join(path, "fail_on_partial_skip"), issues
        )
        if parsed is not None:
            out["fail_on_partial_skip"] = parsed
    return out


def _validate_observability(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, *, partial: bool
) -> dict[str, Any]:
    allowed = {"log_level", "log_dir", "log_to_stdout", "redact_secrets"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "log_level" in payload:
        raw_level = payload["log_level"]
        level = _as_enum(
            raw_level.upper() if isinstance(raw_level, str) else raw_level,
            _join(path, "log_level"),
            issues,
            allowed_values=LOG_LEVELS,
        )
        if level is not None:
            out["log_level"] = level
    if "log_dir" in payload:
        log_dir = _as_str(payload["log_dir"], _join(path, "log_dir"), issues)
        if log_dir is not None:
            if "\x00" in log_dir:
                issues.add(_join(path, "log_dir"), "must not contain NUL bytes")
            else:
                out["log_dir"] = log_dir
    for flag in ("log_to_stdout", "redact_secrets"):
        if flag in payload:
            parsed = _as_bool(payload[flag], _join(path, flag), issues)
            if parsed is not None:
                out[flag] = parsed
    return out


_SECTION_VALIDATORS: Final[dict[str, Callable[..., dict[str, Any]]]] = {
    "gate": _validate_gate,
    "scheduler": _validate_scheduler,
    "run": _validate_run,
    "observability": _validate_observability,
}


def _validate_profiles(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for profile_name in sorted(payload):
        profile_path = _join(path, profile_name)
        if not _PROFILE_NAME_PATTERN.fullmatch(profile_name):
            issues.add(profile_path, "profile name must match ^[a-z][a-z0-9_-]*$")
            continue
        profile_obj = _as_object(payload[profile_name], profile_path, issues)
        if profile_obj is None:
            continue
        _reject_unknown_keys(profile_obj, set(_SECTIONS), profile_path, issues)
        overlay: dict[str, Any] = {}
        for section in _SECTIONS:
            raw = profile_obj.get(section)
            if raw is None:
                continue
            section_path = _join(profile_path, section)
            section_obj = _as_object(raw, section_path, issues)
            if section_obj is not None:
                overlay[section] = _SECTION_VALIDATORS[section](
                    section_obj, section_path, issues, partial=True
                )
        out[profile_name] = overlay
    return out


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object, path: str, issues: _IssueCollector, *, minimum: int | None = None
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    if maximum is not None and parsed > maximum:
        issues.add(path, f"must be <= {maximum}")
        return None
    return parsed


def _as_enum(
    value: object, path: str, issues: _IssueCollector, *, allowed_values: tuple[str, ...]
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object], allowed: set[str], path: str, issues: _IssueCollector
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown field")


def _require_keys(
    payload: Mapping[str, object], required: set[str], path: str, issues: _IssueCollector
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        existing = target.get(key)
        if isinstance(value, Mapping) and isinstance(existing, dict):
            _merge_into(existing, value)
        elif isinstance(value, Mapping):
            nested: dict[str, Any] = {}
            _merge_into(nested, value)
            target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        return {
            key: "<redacted>" if _is_sensitive_key(key) else _redact_value(value[key], key)
            for key in sorted(value)
        }
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in _SENSITIVE_KEY_PARTS)


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "GATE_MODES",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "ScangateConfig",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
