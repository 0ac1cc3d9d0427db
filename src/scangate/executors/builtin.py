"""Built-in executor kinds other than ``command``."""

from __future__ import annotations

import importlib
from collections.abc import Callable
from typing import Any

from scangate.domain.errors import ExecutionError
from scangate.executors.base import ExecutorContext, ExecutorResult, invoke_executor


def noop_executor(context: ExecutorContext) -> ExecutorResult:
    """Executor kind ``noop``: succeeds without reporting anything."""
    message = context.config.get("message")
    return ExecutorResult(message=message if isinstance(message, str) else None)


def load_entry_point(reference: str) -> Callable[..., Any]:
    """Resolve a ``package.module:function`` reference to a callable."""

    module_name, sep, attr_path = reference.partition(":")
    if not sep or not module_name.strip() or not attr_path.strip():
        raise ExecutionError(f"entry point {reference!r} must look like 'package.module:function'")
    try:
        target: Any = importlib.import_module(module_name.strip())
    except ImportError as exc:
        raise ExecutionError(f"cannot import module {module_name!r}: {exc}") from exc
    for part in attr_path.strip().split("."):
        try:
            target = getattr(target, part)
        except AttributeError as exc:
            raise ExecutionError(f"{module_name!r} has no attribute {attr_path!r}") from exc
    if not callable(target):
        raise ExecutionError(f"entry point {reference!r} is not callable")
    return target


async def python_executor(context: ExecutorContext) -> ExecutorResult:
    """Executor kind ``python``.

    ``config.entry_point`` names the callable; ``config.options`` is forwarded
    as the nested stage config, so the target sees an ordinary ``ExecutorContext``.
    """

    reference = context.config.get("entry_point")
    if not isinstance(reference, str):
        raise ExecutionError("python executor requires config 'entry_point' ('module:function')")
    options = context.config.get("options", {})
    if not isinstance(options, dict):
        raise ExecutionError("python executor config 'options' must be an object")

    target = load_entry_point(reference)
    inner = ExecutorContext(
        run_id=context.run_id,
        stage_id=context.stage_id,
        config=options,
        trigger=context.trigger,
        timeout_seconds=context.timeout_seconds,
        cancel_token=context.cancel_token,
    )
    return await invoke_executor(target, inner)


__all__ = ["load_entry_point", "noop_executor", "python_executor"]
