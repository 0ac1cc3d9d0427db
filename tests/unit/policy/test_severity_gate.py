"""Severity gate evaluation."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from scangate.domain.errors import ConfigurationError, ThresholdBreach
from scangate.domain.models import Finding, GateMode, GatePolicy
from scangate.policy.severity_gate import GateVerdict, SeverityGate


def _finding(severity: float, location: str = "") -> Finding:
    return Finding(tool="scanner", severity=severity, location=location)


def test_finding_at_exact_threshold_fails_the_gate() -> None:
    result = SeverityGate(threshold=7.0).evaluate([_finding(7.0)])

    assert result.verdict is GateVerdict.FAIL
    assert len(result.breaching) == 1


def test_findings_below_threshold_pass() -> None:
    result = SeverityGate(threshold=7.0).evaluate([_finding(6.9), _finding(3.0)])

    assert result.passed
    assert result.breaching == ()
    assert result.max_severity == 6.9


def test_no_findings_pass_with_no_max_severity() -> None:
    result = SeverityGate(threshold=0.0).evaluate([])

    assert result.passed
    assert result.max_severity is None


def test_report_mode_passes_but_lists_breaches() -> None:
    result = SeverityGate(threshold=5.0, mode=GateMode.REPORT).evaluate([_finding(9.8)])

    assert result.passed
    assert [item.severity for item in result.breaching] == [9.8]


def test_breaching_findings_are_sorted_worst_first() -> None:
    result = SeverityGate(threshold=4.0).evaluate(
        [_finding(5.0, "b"), _finding(9.0, "a"), _finding(5.0, "a")]
    )

    assert [(item.severity, item.location) for item in result.breaching] == [
        (9.0, "a"),
        (5.0, "a"),
        (5.0, "b"),
    ]


def test_enforce_raises_threshold_breach() -> None:
    with pytest.raises(ThresholdBreach) as exc_info:
        SeverityGate(threshold=7.0).enforce([_finding(8.0)])

    assert exc_info.value.result.threshold == 7.0
    assert "7.0" in str(exc_info.value)


def test_from_policy_uses_config_defaults_for_unset_fields() -> None:
    gate = SeverityGate.from_policy(
        GatePolicy(), default_threshold=6.0, default_mode=GateMode.REPORT, stage_id="sast"
    )

    assert gate.threshold == 6.0
    assert gate.mode is GateMode.REPORT


def test_from_policy_prefers_stage_values() -> None:
    gate = SeverityGate.from_policy(
        GatePolicy(threshold=9.0, mode=GateMode.FAIL),
        default_threshold=1.0,
        default_mode=GateMode.REPORT,
        stage_id="sast",
    )

    assert gate.threshold == 9.0
    assert gate.mode is GateMode.FAIL


def test_from_policy_without_any_threshold_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError, match="sast"):
        SeverityGate.from_policy(GatePolicy(), default_threshold=None, stage_id="sast")


def test_gate_rejects_out_of_range_threshold() -> None:
    with pytest.raises(ValueError):
        SeverityGate(threshold=11.0)


@given(
    threshold=st.floats(min_value=0.0, max_value=10.0, allow_nan=False),
    severities=st.lists(st.floats(min_value=0.0, max_value=10.0, allow_nan=False), max_size=20),
)
def test_fail_mode_verdict_matches_max_severity(threshold: float, severities: list[float]) -> None:
    result = SeverityGate(threshold=threshold).evaluate(_finding(value) for value in severities)

    expected_fail = any(value >= threshold for value in severities)
    assert result.passed is not expected_fail
