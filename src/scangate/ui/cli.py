"""Command-line interface router for scangate."""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from collections.abc import Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from scangate.config import effective_config, load_config
from scangate.constants import TRIGGER_KINDS
from scangate.control_plane import (
    PipelineScheduler,
    PipelineSummary,
    ResultAggregator,
    SchedulerSettings,
)
from scangate.control_plane.run import PipelineRun
from scangate.domain.ids import generate_run_id
from scangate.domain.models import PipelineTrigger
from scangate.executors import DEFAULT_EXECUTOR_REGISTRY
from scangate.observability import setup_logging, shutdown_logging
from scangate.planning import PipelineDefinition, load_pipeline_definition
from scangate.ui.render import CLIRenderer, create_renderer
from scangate.utils.concurrency import CancellationToken


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scangate",
        description=(
            "scangate — security-scan pipeline orchestrator for CI.\n\n"
            "Common workflows:\n"
            "  scangate validate pipeline.yaml   Check the stage graph and print its layers\n"
            "  scangate run pipeline.yaml        Run all stages and gate on severity\n"
            "  scangate config                   Show the effective configuration\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to scangate TOML config (default: ./scangate.toml if present).",
    )
    common.add_argument("--profile", default=None, help="Config profile overlay name.")
    common.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Emit machine-readable JSON instead of text.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Execute a pipeline definition",
        description="Run every stage of PIPELINE and exit non-zero when the verdict fails.",
    )
    run_parser.add_argument("pipeline", help="Path to the pipeline YAML file.")
    run_parser.add_argument(
        "--trigger-kind",
        choices=TRIGGER_KINDS,
        default="manual",
        help="Event that started this run (recorded only).",
    )
    run_parser.add_argument("--trigger-id", default="", help="Commit SHA, PR number, etc.")
    run_parser.add_argument(
        "--report-out",
        default=None,
        help="Also write the JSON summary to this path.",
    )
    run_parser.add_argument(
        "--max-parallel",
        type=int,
        default=None,
        help="Override scheduler.max_parallel_stages for this run.",
    )
    run_parser.set_defaults(handler=_cmd_run)

    validate_parser = subparsers.add_parser(
        "validate",
        parents=[common],
        help="Validate a pipeline definition without running it",
    )
    validate_parser.add_argument("pipeline", help="Path to the pipeline YAML file.")
    validate_parser.set_defaults(handler=_cmd_validate)

    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show the effective (redacted) configuration",
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return the process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_run(args: argparse.Namespace) -> int:
    overrides: dict[str, object] = {}
    if args.max_parallel is not None:
        overrides["scheduler.max_parallel_stages"] = args.max_parallel
    config = _load_effective_config(args, overrides)
    definition = load_pipeline_definition(args.pipeline)
    trigger = PipelineTrigger(kind=args.trigger_kind, identifier=args.trigger_id)
    scheduler = PipelineScheduler(
        SchedulerSettings.from_config(config), registry=DEFAULT_EXECUTOR_REGISTRY
    )
    # Graph and executor errors surface before the run's log directory exists.
    scheduler.prepare(definition.stages)

    run_id = generate_run_id()
    handle = setup_logging(config.get("observability"), run_id=run_id)
    try:
        handle.logger.info(
            "pipeline loaded",
            extra={"pipeline": definition.name, "source": str(definition.source_path)},
        )
        run = asyncio.run(_execute(scheduler, definition, run_id=run_id, trigger=trigger))
        summary = ResultAggregator().summarize(run)
    finally:
        shutdown_logging(handle)

    exit_code = summary.exit_code(fail_on_partial_skip=bool(config["run"]["fail_on_partial_skip"]))

    if args.report_out:
        _write_report(Path(args.report_out), summary)

    if args.json:
        _emit_json(summary.to_dict())
        return exit_code

    _render_summary(_get_renderer(args), definition, summary, log_path=handle.log_path)
    return exit_code


def _cmd_validate(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    definition = load_pipeline_definition(args.pipeline)
    scheduler = PipelineScheduler(
        SchedulerSettings.from_config(config), registry=DEFAULT_EXECUTOR_REGISTRY
    )
    run, _ = scheduler.prepare(definition.stages)
    layers = run.graph.layers_preview()

    if args.json:
        _emit_json(
            {
                "command": "validate",
                "pipeline": definition.name,
                "valid": True,
                "stage_count": len(run.graph),
                "layers": [list(layer) for layer in layers],
            }
        )
        return 0

    renderer = _get_renderer(args)
    renderer.heading(f"Pipeline {definition.name!r} is valid ({len(run.graph)} stages)")
    renderer.table(
        ("Layer", "Stages"),
        [(str(index), ", ".join(layer)) for index, layer in enumerate(layers)],
        title="Execution layers:",
    )
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    redacted = effective_config(config)

    if args.json:
        _emit_json({"command": "config", "active_profile": args.profile, "config": redacted})
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Active profile", args.profile or "(default)")
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _execute(
    scheduler: PipelineScheduler,
    definition: PipelineDefinition,
    *,
    run_id: str,
    trigger: PipelineTrigger,
) -> PipelineRun:
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        # add_signal_handler is unavailable on Windows event loops.
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signum, token.cancel)
            installed.append(signum)
    try:
        return await scheduler.run(
            definition.stages, run_id=run_id, trigger=trigger, cancel_token=token
        )
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)


def _load_effective_config(
    args: argparse.Namespace, overrides: Mapping[str, object] | None = None
) -> dict[str, Any]:
    return load_config(args.config_path, profile=args.profile, cli_overrides=overrides)


def _render_summary(
    renderer: CLIRenderer,
    definition: PipelineDefinition,
    summary: PipelineSummary,
    *,
    log_path: Path,
) -> None:
    renderer.heading(f"Pipeline {definition.name!r}")
    renderer.kv("Run ID", summary.run_id)
    renderer.kv("Trigger", f"{summary.trigger['kind']} {summary.trigger['identifier']}".strip())
    renderer.table(
        ("Stage", "Status", "Findings", "Reason"),
        [
            (
                item.stage_id,
                item.status.value,
                str(item.finding_count),
                item.reason or "",
            )
            for item in summary.stages
        ],
        title="Stages:",
    )
    renderer.table(
        ("Band", "Count"),
        [(band, str(count)) for band, count in summary.band_counts.items()],
        title="Findings by severity:",
    )
    if summary.tool_counts:
        renderer.table(
            ("Tool", "Count"),
            [(tool, str(count)) for tool, count in summary.tool_counts.items()],
            title="Findings by tool:",
        )
    if summary.artifact_names:
        renderer.section("Artifacts:")
        renderer.items(list(summary.artifact_names))
    if summary.skipped_stage_ids:
        renderer.section("Skipped:")
        renderer.items(list(summary.skipped_stage_ids))
    renderer.section("")
    renderer.status("Verdict", summary.verdict.value)
    renderer.kv("Log", log_path)


def _write_report(path: Path, summary: PipelineSummary) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(summary.to_json() + "\n", encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"unable to write report to {path}: {exc}", exit_code=3) from exc


def _emit_json(payload: Mapping[str, object]) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=bool(getattr(args, "no_color", False)))


__all__ = ["CLIError", "build_parser", "run_cli"]
