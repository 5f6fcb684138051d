import threading

import pytest

from matrixci.dsl import uses, wf
from matrixci.errors import ConfigurationError
from matrixci.model import Job, JobResult, JobStatus, RunResult, RunStatus, StepStatus
from matrixci.runner import StatusBoard, run_job, run_matrix, run_workflow


def _three_jobs():
    # job 2 fails, jobs 1 and 3 pass
    return wf(
        "three",
        uses("work", "work"),
        uses("after", "work"),
        matrix={"n": [1, 2, 3]},
        job_name="job${{ matrix.n }}",
    ).jobs()


def _work_action(started):
    lock = threading.Lock()

    def work(call):
        with lock:
            started.append(call.job)
        if call.matrix["n"] == 2:
            raise call.fail("job2 is broken", exit_code=2)
        return {}

    return work


def test_fail_fast_cancels_pending_jobs(tmp_path):
    jobs = _three_jobs()
    started = []
    actions = {"work": _work_action(started)}
    board = StatusBoard(fail_fast=True)
    board.register(jobs)

    failed = run_job(jobs[1], actions=actions, workspace=tmp_path, board=board)
    first = run_job(jobs[0], actions=actions, workspace=tmp_path, board=board)
    third = run_job(jobs[2], actions=actions, workspace=tmp_path, board=board)

    assert failed.status is JobStatus.FAILED
    assert first.status is JobStatus.CANCELLED
    assert third.status is JobStatus.CANCELLED
    assert started == ["job2"]
    assert board.snapshot() == {0: JobStatus.CANCELLED, 1: JobStatus.FAILED, 2: JobStatus.CANCELLED}


def test_without_fail_fast_other_jobs_finish(tmp_path):
    jobs = _three_jobs()
    started = []
    actions = {"work": _work_action(started)}
    board = StatusBoard(fail_fast=False)
    board.register(jobs)

    failed = run_job(jobs[1], actions=actions, workspace=tmp_path, board=board)
    first = run_job(jobs[0], actions=actions, workspace=tmp_path, board=board)
    third = run_job(jobs[2], actions=actions, workspace=tmp_path, board=board)

    assert failed.status is JobStatus.FAILED
    assert first.status is JobStatus.SUCCEEDED
    assert third.status is JobStatus.SUCCEEDED
    assert not board.cancel_requested


def test_run_matrix_fail_fast_single_worker(tmp_path):
    jobs = _three_jobs()
    started = []
    ordered = [jobs[1], jobs[0], jobs[2]]

    result = run_matrix(
        ordered,
        fail_fast=True,
        actions={"work": _work_action(started)},
        workspace=tmp_path,
        max_workers=1,
    )

    assert started == ["job2"]
    assert [j.name for j in result.jobs] == ["job2", "job1", "job3"]
    assert [j.status for j in result.jobs] == [JobStatus.FAILED, JobStatus.CANCELLED, JobStatus.CANCELLED]
    assert result.status is RunStatus.CANCELLED_PARTIAL
    assert not result.ok


def test_run_matrix_no_fail_fast(tmp_path):
    jobs = _three_jobs()
    started = []

    result = run_matrix(
        jobs,
        fail_fast=False,
        actions={"work": _work_action(started)},
        workspace=tmp_path,
        max_workers=3,
    )

    assert [j.status for j in result.jobs] == [JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.SUCCEEDED]
    assert sorted(started) == ["job1", "job1", "job2", "job3", "job3"]
    assert result.status is RunStatus.FAILED


def test_in_flight_job_stops_at_next_step(tmp_path):
    board = StatusBoard(fail_fast=True)
    slow_started = threading.Event()
    ran = []

    def slow(call):
        slow_started.set()
        board.wait_for_cancel(timeout=10)
        return {}

    def fast_fail(call):
        slow_started.wait(timeout=10)
        raise call.fail("broken")

    def record(call):
        ran.append(call.step)
        return {}

    jobs = wf(
        "inflight",
        uses("first", "first"),
        uses("second", "record"),
        matrix={"kind": ["slow", "fail"]},
    ).jobs()
    actions = {
        "first": lambda call: slow(call) if call.matrix["kind"] == "slow" else fast_fail(call),
        "record": record,
    }

    result = run_matrix(jobs, True, actions=actions, workspace=tmp_path, max_workers=2, board=board)

    slow_job, fail_job = result.jobs
    assert fail_job.status is JobStatus.FAILED
    assert slow_job.status is JobStatus.CANCELLED
    assert slow_job.statuses() == [StepStatus.SUCCEEDED, StepStatus.CANCELLED]
    assert ran == []


def test_all_green_run(tmp_path):
    jobs = wf("green", uses("ok", "ok"), matrix={"os": ["a", "b"]}).jobs()
    result = run_matrix(jobs, actions={"ok": lambda call: {}}, workspace=tmp_path)
    assert result.status is RunStatus.SUCCEEDED
    assert result.ok
    assert len(result.succeeded_jobs) == 2


def test_run_matrix_rejects_duplicate_indexes(tmp_path):
    job = wf("dup", uses("ok", "ok")).jobs()[0]
    with pytest.raises(ConfigurationError):
        run_matrix([job, job], workspace=tmp_path)


def test_run_matrix_rejects_mismatched_board(tmp_path):
    jobs = wf("mismatch", uses("ok", "ok")).jobs()
    with pytest.raises(ValueError):
        run_matrix(jobs, fail_fast=True, board=StatusBoard(fail_fast=False), workspace=tmp_path)


def test_run_status_precedence():
    def job_result(index, status):
        return JobResult(job=Job(index=index, name=f"j{index}", matrix={}), status=status)

    failed_and_cancelled = RunResult(
        workflow="w",
        event="push",
        fail_fast=True,
        jobs=[job_result(0, JobStatus.FAILED), job_result(1, JobStatus.CANCELLED)],
    )
    only_failed = RunResult(
        workflow="w",
        event="push",
        fail_fast=False,
        jobs=[job_result(0, JobStatus.FAILED), job_result(1, JobStatus.SUCCEEDED)],
    )
    assert failed_and_cancelled.status is RunStatus.CANCELLED_PARTIAL
    assert only_failed.status is RunStatus.FAILED
    assert only_failed.to_dict()["status"] == "failed"


def test_board_rejects_non_terminal_finish():
    board = StatusBoard()
    with pytest.raises(ValueError):
        board.finish(0, JobStatus.RUNNING)


def test_run_workflow_respects_trigger(tmp_path):
    workflow = wf("pr-only", uses("ok", "ok"), on=["pull_request"])
    actions = {"ok": lambda call: {}}

    assert run_workflow(workflow, "push", actions=actions, workspace=tmp_path) is None

    result = run_workflow(workflow, "pull-request", actions=actions, workspace=tmp_path)
    assert result is not None
    assert result.event == "pull-request"
    assert result.ok


def test_run_workflow_fail_fast_override(tmp_path):
    jobs_started = []
    workflow = wf(
        "override",
        uses("work", "work"),
        matrix={"n": [1, 2, 3]},
        job_name="job${{ matrix.n }}",
        fail_fast=True,
    )
    result = run_workflow(
        workflow,
        "push",
        fail_fast=False,
        max_workers=1,
        actions={"work": _work_action(jobs_started)},
        workspace=tmp_path,
    )
    assert result.fail_fast is False
    assert [j.status for j in result.jobs] == [JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.SUCCEEDED]


def test_step_outputs_stay_inside_their_job(tmp_path):
    both_running = threading.Barrier(2, timeout=10)
    consumed = []

    def produce(call):
        both_running.wait()
        return {"x": "yes"} if call.matrix["side"] == "a" else {}

    def consume(call):
        consumed.append(call.job)
        return {}

    jobs = wf(
        "scoped",
        uses("produce", "produce", id="p"),
        uses("consume", "consume", if_="steps.p.outputs.x == 'yes'"),
        matrix={"side": ["a", "b"]},
        job_name="side-${{ matrix.side }}",
    ).jobs()

    result = run_matrix(
        jobs,
        actions={"produce": produce, "consume": consume},
        workspace=tmp_path,
        max_workers=2,
    )

    job_a, job_b = result.jobs
    assert job_a.statuses() == [StepStatus.SUCCEEDED, StepStatus.SUCCEEDED]
    assert job_b.statuses() == [StepStatus.SUCCEEDED, StepStatus.SKIPPED]
    assert job_b.steps[0].outputs == {}
    assert consumed == ["side-a"]
