from __future__ import annotations

import logging

import orjson
import pytest
import structlog

from docflow.cli import main

QUIET = ["--log-level", "CRITICAL"]


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_pipelines_manifest(capsys) -> None:
    assert main([*QUIET, "pipelines", "--json"]) == 0
    manifest = orjson.loads(capsys.readouterr().out)
    assert {entry["name"] for entry in manifest} == {
        "analyze-document",
        "document-processing-pipeline",
        "invoice-processing-pipeline",
    }


def test_analyze_prints_result_and_metrics(tmp_path, make_pdf, capsys) -> None:
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    (uploads / "scan.pdf").write_bytes(make_pdf(["", ""]))

    assert main([*QUIET, "analyze", "scan"]) == 0
    payload = orjson.loads(capsys.readouterr().out)
    assert payload["result"]["page_count"] == 2
    assert payload["result"]["process_type"] == "simple"
    assert payload["metrics"]["is_text_based"] is False


def test_analyze_missing_document_reports_problem(capsys) -> None:
    assert main([*QUIET, "analyze", "absent"]) == 1
    problem = orjson.loads(capsys.readouterr().err)
    assert problem["status"] == 404
    assert problem["extra"]["document_id"] == "absent"


def test_trigger_failing_pipeline_exits_non_zero_and_writes_audit_log(capsys) -> None:
    assert main([*QUIET, "trigger", "invoice:process", "--payload", '{"id": "inv-7"}']) == 1
    out = capsys.readouterr().out
    assert "step-6-store: failed" in out
    assert "step-7-notify: skipped" in out

    assert main([*QUIET, "events", "--step", "step-1-receive"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert [orjson.loads(line)["type"] for line in lines] == ["STEP_STARTED", "STEP_COMPLETED"]


def test_run_by_name_as_json(capsys) -> None:
    code = main([*QUIET, "run", "document-processing-pipeline", "--payload", '{"id": "d1"}', "--json"])
    assert code == 0
    (report,) = orjson.loads(capsys.readouterr().out)
    assert report["status"] == "succeeded"


def test_trigger_without_subscribers(capsys) -> None:
    assert main([*QUIET, "trigger", "nothing:here"]) == 2


def test_run_unknown_pipeline_reports_problem(capsys) -> None:
    assert main([*QUIET, "run", "missing"]) == 2
    assert orjson.loads(capsys.readouterr().err)["status"] == 404


def test_validate_topology(tmp_path, capsys) -> None:
    path = tmp_path / "pipeline.yaml"
    path.write_text(
        "name: custom\nstages:\n  - {name: upload}\n  - {name: check, handler: validate, parents: [upload]}\n"
    )
    assert main([*QUIET, "validate", str(path), "--json"]) == 0
    description = orjson.loads(capsys.readouterr().out)
    assert [stage["name"] for stage in description["stages"]] == ["upload", "check"]

    path.write_text("name: loop\nstages:\n  - {name: upload, parents: [upload]}\n")
    assert main([*QUIET, "validate", str(path)]) == 2
    assert orjson.loads(capsys.readouterr().err)["extra"]["stages"] == ["upload", "upload"]


def test_events_without_log(tmp_path) -> None:
    assert main([*QUIET, "events", "--path", str(tmp_path / "none.jsonl")]) == 1
