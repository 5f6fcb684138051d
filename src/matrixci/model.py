# model.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from .expr import Expression


DEFAULT_EVENTS = frozenset({"push", "pull_request"})


class StepStatus(str, Enum):
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)


class RunStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED_PARTIAL = "cancelled-partial"


def _normalize_event(event: str) -> str:
    return event.strip().lower().replace("-", "_")


@dataclass(frozen=True)
class Trigger:
    """Repository event kinds that activate a workflow."""
    events: FrozenSet[str] = DEFAULT_EVENTS

    @classmethod
    def of(cls, *events: str) -> Trigger:
        return cls(frozenset(_normalize_event(e) for e in events))

    def matches(self, event: str) -> bool:
        return _normalize_event(event) in self.events


@dataclass(frozen=True)
class Axis:
    """One matrix dimension: a name and its ordered values."""
    name: str
    values: Tuple[Any, ...]


@dataclass(frozen=True)
class Step:
    """
    One ordered unit of work inside a job.

    Exactly one of `run` (shell command) or `uses` (action reference) is set.
    `params`, `env`, `cwd`, `run` and `outputs` values may hold `${{ }}`
    templates; they are resolved only after `condition` evaluates true.
    """
    name: Optional[str] = None
    run: Optional[str] = None
    uses: Optional[str] = None
    id: Optional[str] = None
    condition: Optional[Expression] = None
    params: Dict[str, str] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    outputs: Dict[str, str] = field(default_factory=dict)
    cwd: Optional[str] = None
    continue_on_error: bool = False

    @property
    def action(self) -> str:
        return "run" if self.run is not None else (self.uses or "")

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.run is not None:
            first = self.run.strip().splitlines()[0] if self.run.strip() else ""
            return f"Run {first}"
        return str(self.uses)


@dataclass
class Workflow:
    """A declarative matrix workflow: trigger + axes + ordered steps."""
    name: str
    steps: List[Step]
    trigger: Trigger = field(default_factory=Trigger)
    axes: List[Axis] = field(default_factory=list)
    fail_fast: bool = True
    max_parallel: Optional[int] = None
    job_name: Optional[str] = None     # template, e.g. "Test ${{ matrix.os }}"
    runs_on: Optional[str] = None      # template, e.g. "${{ matrix.os }}"
    env: Dict[str, str] = field(default_factory=dict)

    @property
    def matrix(self) -> Dict[str, List[Any]]:
        return {a.name: list(a.values) for a in self.axes}

    def jobs(self) -> List[Job]:
        from .matrix import expand

        return expand(
            self.matrix,
            steps=self.steps,
            name=self.name,
            name_template=self.job_name,
            runs_on=self.runs_on,
            env=self.env,
        )


@dataclass(frozen=True)
class Job:
    """One element of the matrix cross-product."""
    index: int
    name: str
    matrix: Dict[str, Any]
    steps: Tuple[Step, ...] = ()
    env: Dict[str, str] = field(default_factory=dict)
    runs_on: Optional[str] = None


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

@dataclass
class StepResult:
    name: str
    status: StepStatus
    id: Optional[str] = None
    outputs: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"name": self.name, "status": self.status.value}
        if self.id is not None:
            d["id"] = self.id
        if self.outputs:
            d["outputs"] = dict(self.outputs)
        if self.error is not None:
            d["error"] = self.error
        if self.exit_code is not None:
            d["exit_code"] = self.exit_code
        return d


@dataclass
class JobResult:
    job: Job
    status: JobStatus
    steps: List[StepResult] = field(default_factory=list)
    duration: float = 0.0

    @property
    def name(self) -> str:
        return self.job.name

    @property
    def failed_step(self) -> Optional[StepResult]:
        for s in self.steps:
            if s.status is StepStatus.FAILED:
                return s
        return None

    def statuses(self) -> List[StepStatus]:
        return [s.status for s in self.steps]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.job.name,
            "matrix": dict(self.job.matrix),
            "runs_on": self.job.runs_on,
            "status": self.status.value,
            "duration": round(self.duration, 3),
            "steps": [s.to_dict() for s in self.steps],
        }


@dataclass
class RunResult:
    """
    Outcome of one run. `status` keeps the three terminal pictures apart:
    all green, some jobs failed, some jobs never finished because of fail-fast.
    """
    workflow: str
    event: str
    fail_fast: bool
    jobs: List[JobResult] = field(default_factory=list)
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def succeeded_jobs(self) -> List[JobResult]:
        return [j for j in self.jobs if j.status is JobStatus.SUCCEEDED]

    @property
    def failed_jobs(self) -> List[JobResult]:
        return [j for j in self.jobs if j.status is JobStatus.FAILED]

    @property
    def cancelled_jobs(self) -> List[JobResult]:
        return [j for j in self.jobs if j.status is JobStatus.CANCELLED]

    @property
    def status(self) -> RunStatus:
        if self.cancelled_jobs:
            return RunStatus.CANCELLED_PARTIAL
        if self.failed_jobs:
            return RunStatus.FAILED
        return RunStatus.SUCCEEDED

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "workflow": self.workflow,
            "event": self.event,
            "fail_fast": self.fail_fast,
            "status": self.status.value,
            "jobs": [j.to_dict() for j in self.jobs],
        }
