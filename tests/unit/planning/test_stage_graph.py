"""
scangate — unit tests for the stage dependency graph

File: tests/unit/planning/test_stage_graph.py

Purpose
- Build-time integrity checks: duplicates, unknown references, cycles.
- Layer semantics and single-use traversal.
"""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from scangate.domain.errors import (
    ConfigurationError,
    DependencyCycleError,
    DuplicateStageError,
    GraphConsumedError,
    MissingDependencyError,
)
from scangate.domain.models import StageDefinition
from scangate.planning.stage_graph import StageGraph


def _stage(stage_id: str, *deps: str) -> StageDefinition:
    return StageDefinition(stage_id=stage_id, executor="noop", depends_on=deps)


def test_layers_group_independent_stages() -> None:
    graph = StageGraph.build(
        [
            _stage("checkout"),
            _stage("sast", "checkout"),
            _stage("sca", "checkout"),
            _stage("report", "sast", "sca"),
        ]
    )

    layers = list(graph.topological_layers())

    assert layers == [
        frozenset({"checkout"}),
        frozenset({"sast", "sca"}),
        frozenset({"report"}),
    ]


def test_layers_preview_is_sorted_and_non_consuming() -> None:
    graph = StageGraph.build([_stage("b"), _stage("a"), _stage("c", "a")])

    assert graph.layers_preview() == (("a", "b"), ("c",))
    assert not graph.consumed
    assert list(graph.topological_layers())


def test_topological_layers_is_single_use() -> None:
    graph = StageGraph.build([_stage("a")])
    list(graph.topological_layers())

    with pytest.raises(GraphConsumedError):
        graph.topological_layers()


def test_duplicate_stage_ids_are_rejected() -> None:
    with pytest.raises(DuplicateStageError):
        StageGraph.build([_stage("a"), _stage("a")])


def test_unknown_dependency_is_rejected() -> None:
    with pytest.raises(MissingDependencyError) as exc_info:
        StageGraph.build([_stage("a", "ghost")])

    assert exc_info.value.missing_id == "ghost"
    assert exc_info.value.stage_id == "a"


def test_cycle_is_a_configuration_error_naming_the_path() -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        StageGraph.build([_stage("a", "c"), _stage("b", "a"), _stage("c", "b")])

    assert isinstance(exc_info.value, DependencyCycleError)
    assert exc_info.value.cycles == (("a", "b", "c", "a"),)


def test_self_dependency_is_a_cycle() -> None:
    with pytest.raises(DependencyCycleError) as exc_info:
        StageGraph.build([_stage("a", "a")])

    assert exc_info.value.cycles == (("a", "a"),)


def test_dependents_direct_and_transitive() -> None:
    graph = StageGraph.build([_stage("a"), _stage("b", "a"), _stage("c", "b")])

    assert graph.dependents("a") == ("b",)
    assert graph.dependents("a", transitive=True) == ("b", "c")
    assert graph.dependencies("c") == ("b",)


def test_unknown_stage_lookup_raises_key_error() -> None:
    graph = StageGraph.build([_stage("a")])

    with pytest.raises(KeyError):
        graph.stage("missing")


@st.composite
def _dags(draw: st.DrawFn) -> list[StageDefinition]:
    size = draw(st.integers(min_value=1, max_value=12))
    stages: list[StageDefinition] = []
    for index in range(size):
        deps = draw(st.sets(st.integers(min_value=0, max_value=index - 1), max_size=3)) if index else set()
        stages.append(_stage(f"s{index}", *(f"s{dep}" for dep in sorted(deps))))
    return stages


@given(_dags())
def test_every_stage_appears_after_all_of_its_dependencies(stages: list[StageDefinition]) -> None:
    graph = StageGraph.build(stages)
    position: dict[str, int] = {}
    for index, layer in enumerate(graph.topological_layers()):
        for stage_id in layer:
            position[stage_id] = index

    assert sorted(position) == sorted(stage.stage_id for stage in stages)
    for stage in stages:
        for dep in stage.depends_on:
            assert position[dep] < position[stage.stage_id]
