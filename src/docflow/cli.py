"""Command line entry point for analysing documents and running pipelines."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import orjson

from docflow.analysis import DocumentAnalysisError, DocumentAnalyzer
from docflow.config.settings import AppSettings, load_settings
from docflow.orchestration.events import iter_audit_log
from docflow.orchestration.graph import validate_pipeline
from docflow.orchestration.run import RunReport, RunStatus
from docflow.orchestration.runtime import OrchestrationContext
from docflow.orchestration.topology import PipelineTopology
from docflow.pipelines import default_pipelines, default_registry
from docflow.utils.errors import FoundationError
from docflow.utils.logging import configure_logging


def _dump(payload: Any) -> str:
    return orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode()


def _load_payload(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    if raw.startswith("@"):
        raw = Path(raw[1:]).read_text()
    value = orjson.loads(raw)
    if not isinstance(value, dict):
        raise ValueError("payload must be a JSON object")
    return value


def render_report(report: RunReport) -> str:
    lines = [f"Pipeline: {report.pipeline} run={report.run_id} status={report.status.value}"]
    for stage in report.stages:
        line = f"  - {stage.name}: {stage.status.value}"
        if stage.attempts:
            line += f" (attempts={stage.attempts}, {stage.duration_ms}ms)"
        if stage.error:
            line += f" error={stage.error.get('detail') or stage.error.get('title')}"
        elif stage.skip_reason:
            line += f" [{stage.skip_reason}]"
        lines.append(line)
    return "\n".join(lines)


def render_manifest(manifest: list[dict[str, Any]]) -> str:
    lines: list[str] = []
    for pipeline in manifest:
        events = ", ".join(pipeline["events"]) or "-"
        lines.append(f"{pipeline['name']} (on: {events})")
        for stage in pipeline["stages"]:
            parents = ", ".join(stage["parents"]) or "-"
            lines.append(f"  - {stage['name']} <- {parents} retries={stage['retries']}")
    return "\n".join(lines)


# ==============================================================================
# COMMANDS
# ==============================================================================


def _cmd_pipelines(args: argparse.Namespace, settings: AppSettings) -> int:
    context = OrchestrationContext(settings=settings)
    try:
        context.register_all(default_pipelines(settings))
        manifest = context.manifest()
    finally:
        context.shutdown()
    print(_dump(manifest) if args.json else render_manifest(manifest))
    return 0


def _cmd_analyze(args: argparse.Namespace, settings: AppSettings) -> int:
    storage = settings.storage
    if args.storage_root:
        storage = storage.model_copy(update={"root": Path(args.storage_root)})
    analyzer = DocumentAnalyzer.from_settings(storage)
    try:
        result, metrics = analyzer.analyze_with_metrics(args.document_id, args.file_path)
    except DocumentAnalysisError as exc:
        print(_dump(exc.problem.model_dump()), file=sys.stderr)
        return 1
    print(_dump({"result": result.model_dump(mode="json"), "metrics": metrics.model_dump(mode="json")}))
    return 0


def _run_reports(args: argparse.Namespace, settings: AppSettings) -> list[RunReport]:
    payload = _load_payload(args.payload)
    context = OrchestrationContext(settings=settings)
    context.register_all(default_pipelines(settings))
    context.install_signal_handlers()
    with context:
        if args.command == "run":
            return [context.run(args.pipeline, payload)]
        return context.trigger(args.event, payload)


def _cmd_run(args: argparse.Namespace, settings: AppSettings) -> int:
    reports = _run_reports(args, settings)
    if not reports:
        print(f"No pipeline subscribed to event '{args.event}'", file=sys.stderr)
        return 2
    if args.json:
        print(_dump([report.model_dump(mode="json") for report in reports]))
    else:
        print("\n".join(render_report(report) for report in reports))
    return 0 if all(report.status is RunStatus.SUCCEEDED for report in reports) else 1


def _cmd_events(args: argparse.Namespace, settings: AppSettings) -> int:
    path = Path(args.path) if args.path else settings.audit.path
    if not path.exists():
        print(f"Audit log {path} does not exist", file=sys.stderr)
        return 1
    for event in iter_audit_log(path):
        if args.step and event.stage_name != args.step:
            continue
        print(event.to_json().decode())
    return 0


def _cmd_validate(args: argparse.Namespace, settings: AppSettings) -> int:
    topology = PipelineTopology.from_yaml(args.topology)
    graph = validate_pipeline(topology.build(default_registry(settings)))
    description = graph.describe()
    print(_dump(description) if args.json else render_manifest([description]))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="docflow", description="Document pipeline tooling")
    parser.add_argument("--env", default=None, help="Settings profile (dev, staging, prod)")
    parser.add_argument("--log-level", dest="log_level", default=None, help="Override log level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    pipelines = subparsers.add_parser("pipelines", help="List registered pipelines")
    pipelines.add_argument("--json", action="store_true", help="Emit the full manifest as JSON")

    analyze = subparsers.add_parser("analyze", help="Analyse one stored document")
    analyze.add_argument("document_id")
    analyze.add_argument("--file-path", dest="file_path", default=None)
    analyze.add_argument("--storage-root", dest="storage_root", default=None)

    run = subparsers.add_parser("run", help="Run a pipeline by name")
    run.add_argument("pipeline")
    run.add_argument("--payload", help="JSON object or @file with the trigger input")
    run.add_argument("--json", action="store_true")

    trigger = subparsers.add_parser("trigger", help="Run every pipeline subscribed to an event")
    trigger.add_argument("event")
    trigger.add_argument("--payload", help="JSON object or @file with the trigger input")
    trigger.add_argument("--json", action="store_true")

    events = subparsers.add_parser("events", help="Print the audit event log")
    events.add_argument("--path", default=None)
    events.add_argument("--step", default=None, help="Only events of this stage")

    validate = subparsers.add_parser("validate", help="Validate a YAML pipeline topology")
    validate.add_argument("topology")
    validate.add_argument("--json", action="store_true")
    return parser


_COMMANDS = {
    "pipelines": _cmd_pipelines,
    "analyze": _cmd_analyze,
    "run": _cmd_run,
    "trigger": _cmd_run,
    "events": _cmd_events,
    "validate": _cmd_validate,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args.env)
    logging_settings = settings.observability.logging
    if args.log_level:
        logging_settings = logging_settings.model_copy(update={"level": args.log_level})
    configure_logging(settings=logging_settings)
    try:
        return _COMMANDS[args.command](args, settings)
    except FoundationError as exc:
        print(_dump(exc.problem.model_dump()), file=sys.stderr)
        return 2
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":  # pragma: no cover - manual CLI execution
    raise SystemExit(main())
