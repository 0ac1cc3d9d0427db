"""Validated stage dependency DAG with layered (Kahn-level) traversal."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from types import MappingProxyType

from scangate.domain.errors import (
    DependencyCycleError,
    DuplicateStageError,
    GraphConsumedError,
    MissingDependencyError,
)
from scangate.domain.models import StageDefinition


class StageGraph:
    """Directed graph of stages keyed by stage id; edges run dependency -> dependent.

    Construct through :meth:`build`, which enforces unique ids, resolvable
    dependency references, and acyclicity. A graph is single-use:
    :meth:`topological_layers` may be called once per instance.
    """

    __slots__ = ("_children", "_consumed", "_parents", "_stages")

    def __init__(self, stages: Mapping[str, StageDefinition]) -> None:
        self._stages: dict[str, StageDefinition] = dict(stages)
        self._children: dict[str, set[str]] = {stage_id: set() for stage_id in self._stages}
        self._parents: dict[str, set[str]] = {stage_id: set() for stage_id in self._stages}
        self._consumed = False

        for stage_id, stage in self._stages.items():
            for dependency in stage.depends_on:
                if dependency not in self._stages:
                    raise MissingDependencyError(stage_id, dependency)
                self._children[dependency].add(stage_id)
                self._parents[stage_id].add(dependency)

    @classmethod
    def build(cls, stages: Iterable[StageDefinition]) -> StageGraph:
        """Validate ``stages`` and return a graph, or raise a ``DependencyError``."""

        indexed: dict[str, StageDefinition] = {}
        for stage in stages:
            if stage.stage_id in indexed:
                raise DuplicateStageError(stage.stage_id)
            indexed[stage.stage_id] = stage

        graph = cls(indexed)
        cycles = graph.detect_cycles()
        if cycles:
            raise DependencyCycleError(cycles)
        return graph

    @property
    def stage_ids(self) -> tuple[str, ...]:
        """All stage ids in deterministic order."""
        return tuple(sorted(self._stages))

    @property
    def stages(self) -> Mapping[str, StageDefinition]:
        return MappingProxyType(self._stages)

    @property
    def consumed(self) -> bool:
        return self._consumed

    def stage(self, stage_id: str) -> StageDefinition:
        self._assert_stage_exists(stage_id)
        return self._stages[stage_id]

    def dependencies(self, stage_id: str) -> tuple[str, ...]:
        self._assert_stage_exists(stage_id)
        return tuple(sorted(self._parents[stage_id]))

    def dependents(self, stage_id: str, *, transitive: bool = False) -> tuple[str, ...]:
        """Return direct or transitive dependents for ``stage_id``."""
        self._assert_stage_exists(stage_id)
        if not transitive:
            return tuple(sorted(self._children[stage_id]))

        visited: set[str] = set()
        pending: list[str] = list(self._children[stage_id])
        while pending:
            node = pending.pop()
            if node in visited:
                continue
            visited.add(node)
            pending.extend(child for child in self._children[node] if child not in visited)
        return tuple(sorted(visited))

    def topological_layers(self) -> Iterator[frozenset[str]]:
        """
        Lazily yield layers of stage ids.

        Each layer holds only stages whose dependencies all appear in earlier
        layers; stages inside one layer are mutually independent. The sequence
        is finite and cannot be restarted: a second call raises
        ``GraphConsumedError``.
        """
        if self._consumed:
            raise GraphConsumedError(
                "topological_layers() already requested for this graph; rebuild the graph per run"
            )
        self._consumed = True
        return self._iter_layers()

    def layers_preview(self) -> tuple[tuple[str, ...], ...]:
        """Non-consuming, sorted rendering of the layers for display and planning."""
        return tuple(tuple(sorted(layer)) for layer in self._iter_layers())

    def detect_cycles(self) -> tuple[tuple[str, ...], ...]:
        """
        Detect directed cycles.

        Returns cycle paths as closed paths, e.g. ``("a", "b", "a")``; a self
        dependency is reported as ``("a", "a")``.
        """
        state: dict[str, int] = {}
        stack: list[str] = []
        stack_index: dict[str, int] = {}
        cycles: dict[tuple[str, ...], None] = {}

        for start in sorted(self._stages):
            if state.get(start, 0) != 0:
                continue

            state[start] = 1
            stack.append(start)
            stack_index[start] = 0
            frames: list[tuple[str, Iterator[str]]] = [(start, iter(sorted(self._children[start])))]

            while frames:
                node, child_iter = frames[-1]
                try:
                    child = next(child_iter)
                except StopIteration:
                    frames.pop()
                    state[node] = 2
                    stack.pop()
                    del stack_index[node]
                    continue

                child_state = state.get(child, 0)
                if child_state == 0:
                    state[child] = 1
                    stack_index[child] = len(stack)
                    stack.append(child)
                    frames.append((child, iter(sorted(self._children[child]))))
                elif child_state == 1:
                    cycle = tuple(stack[stack_index[child] :] + [child])
                    cycles[_canonicalize_cycle(cycle)] = None

        return tuple(sorted(cycles))

    def _iter_layers(self) -> Iterator[frozenset[str]]:
        indegree = {stage_id: len(parents) for stage_id, parents in self._parents.items()}
        ready = {stage_id for stage_id, degree in indegree.items() if degree == 0}
        emitted = 0

        while ready:
            layer = frozenset(ready)
            emitted += len(layer)
            next_ready: set[str] = set()
            for stage_id in layer:
                for child in self._children[stage_id]:
                    indegree[child] -= 1
                    if indegree[child] == 0:
                        next_ready.add(child)
            yield layer
            ready = next_ready

        if emitted != len(self._stages):
            raise DependencyCycleError(self.detect_cycles())

    def _assert_stage_exists(self, stage_id: str) -> None:
        if stage_id not in self._stages:
            raise KeyError(f"Unknown stage: {stage_id}")

    def __contains__(self, stage_id: object) -> bool:
        return stage_id in self._stages

    def __len__(self) -> int:
        return len(self._stages)


def _canonicalize_cycle(cycle: Sequence[str]) -> tuple[str, ...]:
    core = tuple(cycle[:-1])
    if len(core) == 1:
        return (core[0], core[0])

    best = core
    for offset in range(1, len(core)):
        rotated = core[offset:] + core[:offset]
        if rotated < best:
            best = rotated
    return best + (best[0],)


__all__ = ["StageGraph"]
