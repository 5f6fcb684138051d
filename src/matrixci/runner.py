# runner.py
from __future__ import annotations

import os
import runpy
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

from . import settings
from .actions import BUILTIN_ACTIONS, Action, ActionCall
from .config import load_workflow_file, validate_workflow
from .errors import ConfigurationError, StepFailure
from .expr import ExpressionContext, MissingReference, interpolate, to_text, truthy
from .model import (
    Job,
    JobResult,
    JobStatus,
    RunResult,
    Step,
    StepResult,
    StepStatus,
    Workflow,
)
from .ui.console import get_console


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Workflow:
    """
    Load a workflow from a YAML file or a python file.

    A python file must define either:
      - workflow() -> Workflow
      - WORKFLOW = Workflow(...)

    Raises ConfigurationError if the file is missing or the workflow is invalid.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise ConfigurationError(kind="file_not_found", message=f"Workflow file not found: {wf_path}")

    if wf_path.suffix in (".yml", ".yaml"):
        return load_workflow_file(wf_path)
    if wf_path.suffix != ".py":
        raise ConfigurationError(
            kind="unsupported_format",
            message=f"Workflow must be a .yml/.yaml or .py file, got: {wf_path.name}",
        )

    module_name = f"matrixci_workflow_{wf_path.stem}"
    try:
        globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

        wf = None
        if "workflow" in globals_dict and callable(globals_dict["workflow"]):
            wf = globals_dict["workflow"]()
        elif "WORKFLOW" in globals_dict:
            wf = globals_dict["WORKFLOW"]
    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(
            kind="invalid_workflow",
            message=f"{type(e).__name__}: {e}",
            details={"file": str(wf_path)},
        ) from e

    if not isinstance(wf, Workflow):
        raise ConfigurationError(
            kind="invalid_workflow",
            message="Workflow file must return/define a Workflow. "
            "Define workflow() -> Workflow or WORKFLOW = wf(...).",
            details={"file": str(wf_path)},
        )

    validate_workflow(wf)
    return wf


# ----------------------------------------------------------------------
# Run-level status board
# ----------------------------------------------------------------------

class StatusBoard:
    """
    Per-run record of job states and the fail-fast signal.

    Every transition goes through one lock, so two jobs failing at the same
    moment cannot race, and a job can never start after cancellation has
    been requested.
    """

    def __init__(self, fail_fast: bool = True):
        self.fail_fast = fail_fast
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._statuses: Dict[int, JobStatus] = {}

    def register(self, jobs: Iterable[Job]) -> None:
        with self._lock:
            for job in jobs:
                self._statuses[job.index] = JobStatus.PENDING

    def start(self, index: int) -> bool:
        """Pending -> Running, or Pending -> Cancelled if the run is being cancelled."""
        with self._lock:
            if self._cancel.is_set():
                self._statuses[index] = JobStatus.CANCELLED
                return False
            self._statuses[index] = JobStatus.RUNNING
            return True

    def finish(self, index: int, status: JobStatus) -> None:
        if not status.terminal:
            raise ValueError(f"job {index} cannot finish as {status.value}")
        with self._lock:
            self._statuses[index] = status
            if status is JobStatus.FAILED and self.fail_fast:
                self._cancel.set()

    def cancel(self) -> None:
        with self._lock:
            self._cancel.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def wait_for_cancel(self, timeout: Optional[float] = None) -> bool:
        return self._cancel.wait(timeout)

    def status(self, index: int) -> JobStatus:
        with self._lock:
            return self._statuses.get(index, JobStatus.PENDING)

    def snapshot(self) -> Dict[int, JobStatus]:
        with self._lock:
            return dict(self._statuses)


# ----------------------------------------------------------------------
# Step sequencing
# ----------------------------------------------------------------------

def resolve_conditional(step: Step, context: ExpressionContext) -> bool:
    """
    True if the step should run. A guard that references anything the job
    has not produced (a skipped, failed or later step's output) is false.
    """
    if step.condition is None:
        return True
    for ref in step.condition.references():
        try:
            context.lookup(ref.path)
        except MissingReference:
            return False
    try:
        return truthy(step.condition.evaluate(context))
    except MissingReference:
        return False


def _run_step(
    job: Job,
    step: Step,
    ctx: ExpressionContext,
    registry: Mapping[str, Action],
    workspace: Path,
) -> StepResult:
    name = step.display_name
    try:
        action = registry.get(step.action)
        if action is None:
            raise ConfigurationError(
                kind="unknown_action",
                message=f"step '{name}' uses unknown action '{step.action}'",
                details={"known": ", ".join(sorted(registry))},
            )

        env = dict(job.env)
        env.update({k: interpolate(v, ctx) for k, v in step.env.items()})
        call = ActionCall(
            job=job.name,
            step=name,
            workspace=workspace,
            params={k: interpolate(v, ctx) for k, v in step.params.items()},
            run=interpolate(step.run, ctx) if step.run is not None else None,
            env=env,
            cwd=interpolate(step.cwd, ctx) if step.cwd else None,
            matrix=dict(job.matrix),
        )

        produced = {k: to_text(v) for k, v in (action(call) or {}).items()}

        if step.outputs:
            # declared outputs may read this step's own action outputs
            own_steps = dict(ctx.steps)
            if step.id:
                own_steps[step.id] = produced
            out_ctx = ExpressionContext(matrix=ctx.matrix, steps=own_steps, env=ctx.env, event=ctx.event)
            produced.update({k: interpolate(v, out_ctx) for k, v in step.outputs.items()})

        return StepResult(name=name, status=StepStatus.SUCCEEDED, id=step.id, outputs=produced)

    except ConfigurationError as e:
        return StepResult(name=name, status=StepStatus.FAILED, id=step.id, error=str(e))
    except StepFailure as e:
        return StepResult(
            name=name,
            status=StepStatus.FAILED,
            id=step.id,
            error=str(e),
            exit_code=e.exit_code,
            stdout=e.stdout,
            stderr=e.stderr,
        )
    except Exception as e:
        # a broken action fails its step; it must not escape the job
        return StepResult(name=name, status=StepStatus.FAILED, id=step.id, error=f"{type(e).__name__}: {e}")


def run_job(
    job: Job,
    *,
    event: Optional[str] = None,
    actions: Optional[Mapping[str, Action]] = None,
    workspace: str | Path = ".",
    board: Optional[StatusBoard] = None,
) -> JobResult:
    """
    Execute the job's steps strictly in declared order.

    Per step: cancellation check, guard, parameter resolution, action.
    The first failed step (unless continue_on_error) aborts the rest.
    Never raises for step problems; everything lands in the JobResult.
    """
    console = get_console()
    event = event or settings.DEFAULT_EVENT
    registry: Dict[str, Action] = dict(BUILTIN_ACTIONS)
    registry.update(actions or {})
    workspace_p = Path(workspace).resolve()
    steps = list(job.steps)

    if board is not None and not board.start(job.index):
        return JobResult(
            job=job,
            status=JobStatus.CANCELLED,
            steps=[StepResult(name=s.display_name, status=StepStatus.CANCELLED, id=s.id) for s in steps],
        )

    started = time.monotonic()
    console.print_job_start(job)

    outputs: Dict[str, Dict[str, str]] = {}
    ctx = ExpressionContext(matrix=job.matrix, steps=outputs, env=job.env, event=event)
    results: List[StepResult] = []
    status = JobStatus.SUCCEEDED

    for i, step in enumerate(steps):
        if board is not None and board.cancel_requested:
            results.extend(
                StepResult(name=s.display_name, status=StepStatus.CANCELLED, id=s.id) for s in steps[i:]
            )
            status = JobStatus.CANCELLED
            break

        if not resolve_conditional(step, ctx):
            console.print_step_skipped(job.name, step.display_name, str(step.condition))
            results.append(StepResult(name=step.display_name, status=StepStatus.SKIPPED, id=step.id))
            continue

        console.print_step(job.name, step.display_name)
        result = _run_step(job, step, ctx, registry, workspace_p)
        results.append(result)

        if result.status is StepStatus.FAILED:
            console.print_step_failure(job.name, result.name, result.error or "", result.exit_code)
            if step.continue_on_error:
                continue
            results.extend(
                StepResult(name=s.display_name, status=StepStatus.ABORTED, id=s.id) for s in steps[i + 1:]
            )
            status = JobStatus.FAILED
            break

        if step.id:
            outputs[step.id] = result.outputs

    job_result = JobResult(job=job, status=status, steps=results, duration=time.monotonic() - started)
    if board is not None:
        board.finish(job.index, status)
    console.print_job_finished(job_result)
    return job_result


# ----------------------------------------------------------------------
# Matrix execution
# ----------------------------------------------------------------------

def _default_workers(job_count: int) -> int:
    if settings.DEFAULT_WORKERS:
        return max(1, settings.DEFAULT_WORKERS)
    c = os.cpu_count() or 2
    return max(1, min(job_count, c))


def run_matrix(
    jobs: Iterable[Job],
    fail_fast: bool = True,
    *,
    workflow: str = "workflow",
    event: Optional[str] = None,
    actions: Optional[Mapping[str, Action]] = None,
    workspace: str | Path = ".",
    max_workers: Optional[int] = None,
    board: Optional[StatusBoard] = None,
) -> RunResult:
    """
    Run every job concurrently and collect a RunResult.

    fail_fast=True: the first failed job cancels every job that has not
    started and stops in-flight jobs after their current step.
    fail_fast=False: every job runs to its own terminal state.
    """
    jobs = list(jobs)
    event = event or settings.DEFAULT_EVENT

    indexes = [j.index for j in jobs]
    if len(set(indexes)) != len(indexes):
        raise ConfigurationError(kind="duplicate_job", message=f"Duplicate job indexes: {sorted(indexes)}")

    if board is None:
        board = StatusBoard(fail_fast=fail_fast)
    elif board.fail_fast != fail_fast:
        raise ValueError("board.fail_fast does not match fail_fast")
    board.register(jobs)

    if max_workers is None:
        max_workers = _default_workers(len(jobs))

    results: Dict[int, JobResult] = {}
    if jobs:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = {
                pool.submit(
                    run_job,
                    job,
                    event=event,
                    actions=actions,
                    workspace=workspace,
                    board=board,
                ): job
                for job in jobs
            }
            try:
                for fut in as_completed(futures):
                    job = futures[fut]
                    try:
                        results[job.index] = fut.result()
                    except Exception as e:
                        get_console().print_exception(e)
                        board.finish(job.index, JobStatus.FAILED)
                        results[job.index] = JobResult(job=job, status=JobStatus.FAILED)
            except KeyboardInterrupt:
                board.cancel()
                raise

    return RunResult(
        workflow=workflow,
        event=event,
        fail_fast=fail_fast,
        jobs=[results[j.index] for j in jobs],
    )


def run_workflow(
    wf: Workflow,
    event: Optional[str] = None,
    *,
    fail_fast: Optional[bool] = None,
    max_workers: Optional[int] = None,
    actions: Optional[Mapping[str, Action]] = None,
    workspace: str | Path = ".",
) -> Optional[RunResult]:
    """
    Run `wf` for one repository event. Returns None when the event does not
    trigger the workflow. `fail_fast`/`max_workers` override the workflow's own.
    """
    event = event or settings.DEFAULT_EVENT
    if not wf.trigger.matches(event):
        return None

    return run_matrix(
        wf.jobs(),
        wf.fail_fast if fail_fast is None else fail_fast,
        workflow=wf.name,
        event=event,
        actions=actions,
        workspace=workspace,
        max_workers=max_workers or wf.max_parallel,
    )
