"""Severity-threshold gate over a stage's findings."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum

from scangate.domain.errors import ConfigurationError, ThresholdBreach
from scangate.domain.models import Finding, GateMode, GatePolicy, JSONValue, coerce_severity


class GateVerdict(StrEnum):
    PASS = "pass"
    FAIL = "fail"


@dataclass(frozen=True, slots=True)
class GateResult:
    verdict: GateVerdict
    threshold: float
    mode: GateMode
    breaching: tuple[Finding, ...]
    max_severity: float | None

    @property
    def passed(self) -> bool:
        return self.verdict is GateVerdict.PASS

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "verdict": self.verdict.value,
            "threshold": self.threshold,
            "mode": self.mode.value,
            "breaching_count": len(self.breaching),
            "max_severity": self.max_severity,
        }


@dataclass(frozen=True, slots=True)
class SeverityGate:
    """Pure policy: ``evaluate`` depends only on the findings and the configured threshold.

    In ``fail`` mode a finding with ``severity >= threshold`` fails the gate, so a
    threshold of 7.0 rejects a finding scored exactly 7.0. ``report`` mode always
    passes but still lists the breaching findings.
    """

    threshold: float
    mode: GateMode = GateMode.FAIL

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "threshold", coerce_severity(self.threshold, "SeverityGate.threshold")
        )
        object.__setattr__(self, "mode", GateMode(self.mode))

    @classmethod
    def from_policy(
        cls,
        policy: GatePolicy,
        *,
        default_threshold: float | None,
        default_mode: GateMode = GateMode.FAIL,
        stage_id: str,
    ) -> SeverityGate:
        """Fill unset policy fields from config; a gate without any threshold is a config error."""

        threshold = policy.threshold if policy.threshold is not None else default_threshold
        if threshold is None:
            raise ConfigurationError(
                f"stage {stage_id!r} declares a severity gate but no threshold is configured; "
                "set gate.threshold on the stage or gate.default_threshold in config"
            )
        return cls(threshold=threshold, mode=policy.mode or default_mode)

    def evaluate(self, findings: Iterable[Finding]) -> GateResult:
        collected = tuple(findings)
        breaching = tuple(
            sorted(
                (finding for finding in collected if finding.severity >= self.threshold),
                key=lambda item: (-item.severity, item.location, item.tool, item.description),
            )
        )
        max_severity = max((finding.severity for finding in collected), default=None)

        if self.mode is GateMode.REPORT or not breaching:
            verdict = GateVerdict.PASS
        else:
            verdict = GateVerdict.FAIL

        return GateResult(
            verdict=verdict,
            threshold=self.threshold,
            mode=self.mode,
            breaching=breaching,
            max_severity=max_severity,
        )

    def enforce(self, findings: Iterable[Finding]) -> GateResult:
        """Evaluate and raise ``ThresholdBreach`` when the gate fails."""

        result = self.evaluate(findings)
        if not result.passed:
            raise ThresholdBreach(result)
        return result


__all__ = ["GateResult", "GateVerdict", "SeverityGate"]
