"""Stage executor contract, registry and built-in executor kinds."""

from scangate.executors.base import (
    ExecutorCallable,
    ExecutorContext,
    ExecutorRegistration,
    ExecutorRegistry,
    ExecutorResult,
    StageExecutor,
    invoke_executor,
    normalize_output,
    parse_result_payload,
)
from scangate.executors.builtin import load_entry_point, noop_executor, python_executor
from scangate.executors.command import CommandExecutor, CommandSpec, run_command


def build_default_registry() -> ExecutorRegistry:
    """A fresh registry holding the ``command``, ``python`` and ``noop`` kinds."""

    registry = ExecutorRegistry()
    registry.register("command", CommandExecutor(), source="builtin")
    registry.register("python", python_executor, source="builtin")
    registry.register("noop", noop_executor, source="builtin")
    return registry


DEFAULT_EXECUTOR_REGISTRY = build_default_registry()

__all__ = [
    "DEFAULT_EXECUTOR_REGISTRY",
    "CommandExecutor",
    "CommandSpec",
    "ExecutorCallable",
    "ExecutorContext",
    "ExecutorRegistration",
    "ExecutorRegistry",
    "ExecutorResult",
    "StageExecutor",
    "build_default_registry",
    "invoke_executor",
    "load_entry_point",
    "noop_executor",
    "normalize_output",
    "parse_result_payload",
    "python_executor",
    "run_command",
]
