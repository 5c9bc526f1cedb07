from __future__ import annotations

import threading
from collections import Counter

import pytest
from pydantic import BaseModel

from docflow.orchestration.events import AuditEventEmitter, AuditEventType, InMemoryAuditLog
from docflow.orchestration.executor import DagExecutor
from docflow.orchestration.graph import PipelineDefinition, StageDefinition, validate_pipeline
from docflow.orchestration.run import PipelineRun, RunStatus, StageStatus
from docflow.orchestration.stages import FunctionHandler, StageContext


class Payload(BaseModel):
    value: int


class Result(BaseModel):
    stage: str
    total: int = 0


def _handler(func) -> FunctionHandler[Payload, Result]:
    return FunctionHandler(func, input_model=Payload, output_model=Result)


def _ok(context: StageContext, payload: Payload) -> Result:
    return Result(stage=context.stage, total=payload.value)


def _graph(*stages: StageDefinition):
    return validate_pipeline(PipelineDefinition(name="exec-test", stages=stages))


@pytest.fixture
def executor(emitter: AuditEventEmitter):
    with DagExecutor(max_workers=4, audit=emitter) as pool:
        yield pool


def test_diamond_failure_cascades_but_sibling_completes(
    executor: DagExecutor, audit_log: InMemoryAuditLog
) -> None:
    def fail(context: StageContext, payload: Payload) -> Result:
        raise RuntimeError("b exploded")

    graph = _graph(
        StageDefinition("a", _handler(_ok)),
        StageDefinition("b", _handler(fail), parents=("a",), retries=1),
        StageDefinition("c", _handler(_ok), parents=("a",)),
        StageDefinition("d", _handler(_ok), parents=("b", "c")),
    )

    report = executor.execute(graph, {"value": 7})

    assert report.status is RunStatus.FAILED
    assert report.statuses() == {
        "a": StageStatus.SUCCEEDED,
        "b": StageStatus.FAILED,
        "c": StageStatus.SUCCEEDED,
        "d": StageStatus.SKIPPED,
    }
    assert report.stage("b").attempts == 2
    assert report.stage("b").error["detail"] == "b exploded"
    assert report.stage("b").error["extra"]["error_type"] == "RuntimeError"
    assert report.stage("d").attempts == 0

    completed = [
        event.stage_name
        for event in audit_log.events
        if event.event_type is AuditEventType.STEP_COMPLETED
    ]
    assert sorted(completed) == ["a", "c"]
    started = Counter(
        event.stage_name
        for event in audit_log.events
        if event.event_type is AuditEventType.STEP_STARTED
    )
    assert started == {"a": 1, "b": 2, "c": 1}


def test_retry_budget_allows_n_plus_one_independent_attempts(
    executor: DagExecutor, audit_log: InMemoryAuditLog
) -> None:
    seen: list[tuple[int, str]] = []

    def flaky(context: StageContext, payload: Payload) -> Result:
        seen.append((context.attempt, context.step_run_id))
        if len(seen) < 3:
            raise ConnectionError("transient")
        return Result(stage=context.stage)

    report = executor.execute(_graph(StageDefinition("flaky", _handler(flaky), retries=2)), {"value": 1})

    assert report.status is RunStatus.SUCCEEDED
    assert report.stage("flaky").attempts == 3
    assert [attempt for attempt, _ in seen] == [1, 2, 3]
    assert len({step_run_id for _, step_run_id in seen}) == 3
    types = [event.event_type for event in audit_log.events]
    assert types.count(AuditEventType.STEP_STARTED) == 3
    assert types.count(AuditEventType.STEP_COMPLETED) == 1
    assert types[-1] is AuditEventType.STEP_COMPLETED


def test_exhausted_budget_fails_stage(executor: DagExecutor) -> None:
    calls = []

    def always(context: StageContext, payload: Payload) -> Result:
        calls.append(context.attempt)
        raise ValueError("nope")

    report = executor.execute(_graph(StageDefinition("x", _handler(always), retries=3)), {"value": 1})

    assert report.status is RunStatus.FAILED
    assert calls == [1, 2, 3, 4]
    assert report.stage("x").attempts == 4


def test_invalid_input_is_not_retried(executor: DagExecutor, audit_log: InMemoryAuditLog) -> None:
    report = executor.execute(
        _graph(StageDefinition("x", _handler(_ok), retries=5)), {"unexpected": True}
    )

    assert report.status is RunStatus.FAILED
    assert report.stage("x").attempts == 1
    assert report.stage("x").error["extra"]["error_type"] == "StageInputError"
    assert audit_log.events == []


def test_invalid_output_fails_stage(executor: DagExecutor) -> None:
    def wrong(context: StageContext, payload: Payload):
        return {"unexpected": "shape"}

    report = executor.execute(_graph(StageDefinition("x", _handler(wrong))), {"value": 1})
    assert report.stage("x").status is StageStatus.FAILED


def test_parent_outputs_flow_to_children(executor: DagExecutor) -> None:
    def combine(context: StageContext, payload: Payload) -> Result:
        left = context.parent_output("left", Result)
        right = context.parent_output("right", Result)
        return Result(stage=context.stage, total=left.total + right.total)

    report = executor.execute(
        _graph(
            StageDefinition("left", _handler(_ok)),
            StageDefinition("right", _handler(_ok)),
            StageDefinition("sum", _handler(combine), parents=("left", "right")),
        ),
        {"value": 5},
    )
    assert report.stage("sum").output == {"stage": "sum", "total": 10}


def test_fan_out_siblings_run_concurrently(executor: DagExecutor) -> None:
    barrier = threading.Barrier(3, timeout=5)

    def rendezvous(context: StageContext, payload: Payload) -> Result:
        barrier.wait()
        return Result(stage=context.stage)

    report = executor.execute(
        _graph(
            StageDefinition("root", _handler(_ok)),
            *(StageDefinition(f"s{i}", _handler(rendezvous), parents=("root",)) for i in range(3)),
        ),
        {"value": 1},
    )
    assert report.status is RunStatus.SUCCEEDED


def test_fan_in_stage_runs_exactly_once(executor: DagExecutor) -> None:
    calls = Counter()
    lock = threading.Lock()

    def counted(context: StageContext, payload: Payload) -> Result:
        with lock:
            calls[context.stage] += 1
        return Result(stage=context.stage)

    parents = [StageDefinition(f"p{i}", _handler(counted)) for i in range(6)]
    join = StageDefinition("join", _handler(counted), parents=tuple(p.name for p in parents))
    report = executor.execute(_graph(*parents, join), {"value": 1})

    assert report.status is RunStatus.SUCCEEDED
    assert calls["join"] == 1
    assert all(calls[p.name] == 1 for p in parents)


def test_cancel_lets_in_flight_stage_finish(executor: DagExecutor) -> None:
    entered = threading.Event()
    release = threading.Event()

    def slow(context: StageContext, payload: Payload) -> Result:
        entered.set()
        release.wait(5)
        return Result(stage=context.stage)

    graph = _graph(
        StageDefinition("slow", _handler(slow)),
        StageDefinition("after", _handler(_ok), parents=("slow",)),
    )
    run = PipelineRun(graph, {"value": 1})
    reports = []
    worker = threading.Thread(target=lambda: reports.append(executor.drive(run)))
    worker.start()
    assert entered.wait(5)
    run.cancel("shutdown requested")
    release.set()
    worker.join(5)

    report = reports[0]
    assert report.status is RunStatus.CANCELLED
    assert report.stage("slow").status is StageStatus.SUCCEEDED
    assert report.stage("after").status is StageStatus.SKIPPED
    assert report.stage("after").skip_reason == "shutdown requested"


def test_broken_audit_sink_does_not_fail_stages() -> None:
    class BrokenSink(InMemoryAuditLog):
        name = "broken"

        def append(self, event) -> None:
            raise OSError("disk full")

    with DagExecutor(max_workers=2, audit=AuditEventEmitter(BrokenSink())) as pool:
        report = pool.execute(_graph(StageDefinition("x", _handler(_ok))), {"value": 1})
    assert report.status is RunStatus.SUCCEEDED


def test_max_workers_must_be_positive() -> None:
    with pytest.raises(ValueError):
        DagExecutor(max_workers=0)


def test_shut_down_pool_fails_claimed_stage_instead_of_leaving_it_running(
    audit_log: InMemoryAuditLog,
) -> None:
    pool = DagExecutor(max_workers=1, audit=AuditEventEmitter(audit_log))
    pool.shutdown()
    graph = _graph(
        StageDefinition("root", _handler(_ok)),
        StageDefinition("child", _handler(_ok), parents=("root",)),
    )

    report = pool.execute(graph, {"value": 1})

    assert report.status is RunStatus.FAILED
    assert report.stage("root").status is StageStatus.FAILED
    assert report.stage("root").error["status"] == 503
    assert report.stage("child").status is StageStatus.SKIPPED
    assert audit_log.events == []


def test_interpreter_exit_is_not_retried_and_leaves_consistent_state(executor: DagExecutor) -> None:
    calls = []

    def exits(context: StageContext, payload: Payload) -> Result:
        calls.append(context.attempt)
        raise SystemExit(3)

    graph = _graph(
        StageDefinition("exit", _handler(exits), retries=3),
        StageDefinition("after", _handler(_ok), parents=("exit",)),
        StageDefinition("other", _handler(_ok)),
    )
    run = PipelineRun(graph, {"value": 1})

    with pytest.raises(SystemExit):
        executor.drive(run)

    assert calls == [1]
    assert run.stage_status("exit") is StageStatus.FAILED
    assert run.stage_status("after") is StageStatus.SKIPPED
    assert run.is_finished()
    assert run.status is RunStatus.FAILED
