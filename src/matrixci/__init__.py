from .dsl import sh, uses, axis, wf, WorkflowBuilder, build
from .errors import ConfigurationError, StepFailure
from .matrix import expand
from .model import Job, JobResult, JobStatus, RunResult, RunStatus, Step, StepResult, StepStatus, Workflow
from .runner import StatusBoard, load_workflow, resolve_conditional, run_job, run_matrix, run_workflow

__all__ = [
    "sh", "uses", "axis", "wf", "WorkflowBuilder", "build",
    "ConfigurationError", "StepFailure",
    "expand",
    "Job", "JobResult", "JobStatus", "RunResult", "RunStatus", "Step", "StepResult", "StepStatus", "Workflow",
    "StatusBoard", "load_workflow", "resolve_conditional", "run_job", "run_matrix", "run_workflow",
]
