"""
scangate — artifact name validation and run-scoped registry

File: src/scangate/policy/artifacts.py

Purpose
- Validate proposed artifact names and own the per-run set of registered names.

Normative behavior
- Rules apply in order: character set (ASCII alphanumerics and ``-``), non-empty,
  no case-sensitive collision with an already-registered name.
- Underscores and path separators get dedicated reason codes so callers can
  print an actionable fix.
- ``validate_artifact_name`` is pure. ``ArtifactRegistry.register`` is the only
  writer of the name set and performs check-and-insert under one lock.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Set
from dataclasses import dataclass
from enum import StrEnum
from typing import Final

from scangate.domain.errors import ArtifactValidationError
from scangate.domain.models import Artifact

_PATH_SEPARATORS: Final[frozenset[str]] = frozenset({"/", "\\"})


class ArtifactNameReason(StrEnum):
    UNDERSCORE = "underscore"
    PATH_SEPARATOR = "path_separator"
    INVALID_CHARACTER = "invalid_character"
    EMPTY = "empty"
    DUPLICATE = "duplicate"


@dataclass(frozen=True, slots=True)
class ArtifactNameCheck:
    """Validation outcome; ``reason`` and ``message`` are set only when invalid."""

    name: str
    valid: bool
    reason: ArtifactNameReason | None = None
    message: str | None = None
    offending_character: str | None = None

    def raise_for_invalid(self) -> None:
        if self.valid:
            return
        reason = self.reason or ArtifactNameReason.INVALID_CHARACTER
        raise ArtifactValidationError(self.name, reason, self.message or reason.value)


def validate_artifact_name(name: str, existing_names: Set[str] = frozenset()) -> ArtifactNameCheck:
    """Check ``name`` against the naming rules and ``existing_names``."""

    if not isinstance(name, str):
        raise TypeError(f"artifact name must be a string, got {type(name).__name__}")

    for index, char in enumerate(name):
        if _is_allowed_character(char):
            continue
        if char == "_":
            return ArtifactNameCheck(
                name=name,
                valid=False,
                reason=ArtifactNameReason.UNDERSCORE,
                message=(
                    f"artifact name {name!r} contains an underscore at index {index}; "
                    "replace underscore with hyphen"
                ),
                offending_character=char,
            )
        if char in _PATH_SEPARATORS:
            return ArtifactNameCheck(
                name=name,
                valid=False,
                reason=ArtifactNameReason.PATH_SEPARATOR,
                message=(
                    f"artifact name {name!r} contains path separator {char!r} at index {index}; "
                    "artifact names are flat identifiers, use hyphens instead"
                ),
                offending_character=char,
            )
        return ArtifactNameCheck(
            name=name,
            valid=False,
            reason=ArtifactNameReason.INVALID_CHARACTER,
            message=(
                f"artifact name {name!r} contains invalid character {char!r} at index {index}; "
                "only letters, digits and hyphens are allowed"
            ),
            offending_character=char,
        )

    if not name:
        return ArtifactNameCheck(
            name=name,
            valid=False,
            reason=ArtifactNameReason.EMPTY,
            message="artifact name must not be empty",
        )

    if name in existing_names:
        return ArtifactNameCheck(
            name=name,
            valid=False,
            reason=ArtifactNameReason.DUPLICATE,
            message=f"artifact name {name!r} is already registered in this run",
        )

    return ArtifactNameCheck(name=name, valid=True)


class ArtifactRegistry:
    """Append-only, synchronized artifact registry owned by one pipeline run."""

    __slots__ = ("_artifacts", "_lock", "_names")

    def __init__(self) -> None:
        self._artifacts: list[Artifact] = []
        self._names: set[str] = set()
        self._lock = threading.Lock()

    def check(self, name: str) -> ArtifactNameCheck:
        with self._lock:
            return validate_artifact_name(name, self._names)

    def register(self, artifact: Artifact) -> Artifact:
        """Validate then record ``artifact``; raises ``ArtifactValidationError`` if invalid."""

        with self._lock:
            validate_artifact_name(artifact.name, self._names).raise_for_invalid()
            self._names.add(artifact.name)
            self._artifacts.append(artifact)
        return artifact

    def register_all(self, artifacts: Iterable[Artifact]) -> tuple[Artifact, ...]:
        """Register a stage's artifacts atomically: either every name is accepted or none is."""

        batch = tuple(artifacts)
        with self._lock:
            pending: set[str] = set()
            for artifact in batch:
                validate_artifact_name(artifact.name, self._names | pending).raise_for_invalid()
                pending.add(artifact.name)
            self._names.update(pending)
            self._artifacts.extend(batch)
        return batch

    @property
    def names(self) -> tuple[str, ...]:
        """Registered names in registration order."""
        with self._lock:
            return tuple(artifact.name for artifact in self._artifacts)

    @property
    def artifacts(self) -> tuple[Artifact, ...]:
        with self._lock:
            return tuple(self._artifacts)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._names

    def __len__(self) -> int:
        with self._lock:
            return len(self._artifacts)


def _is_allowed_character(char: str) -> bool:
    return char == "-" or (char.isascii() and char.isalnum())


__all__ = [
    "ArtifactNameCheck",
    "ArtifactNameReason",
    "ArtifactRegistry",
    "validate_artifact_name",
]
