# actions/base.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from ..errors import ConfigurationError, StepFailure
from .. import settings


@dataclass(frozen=True)
class ActionCall:
    """
    Everything an action gets to see: resolved parameters only.
    Templates have already been interpolated by the runner.
    """
    job: str
    step: str
    workspace: Path
    params: Dict[str, str] = field(default_factory=dict)
    run: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    cwd: Optional[str] = None
    matrix: Dict[str, Any] = field(default_factory=dict)

    @property
    def workdir(self) -> Path:
        return (self.workspace / (self.cwd or ".")).resolve()

    def param(self, key: str, default: Optional[str] = None, *, required: bool = False) -> Optional[str]:
        if key in self.params:
            return self.params[key]
        if required:
            raise ConfigurationError(
                kind="missing_parameter",
                message=f"step '{self.step}' requires parameter '{key}'",
                details={"job": self.job, "step": self.step},
            )
        return default

    def fail(
        self,
        message: str,
        *,
        exit_code: Optional[int] = None,
        stdout: str = "",
        stderr: str = "",
    ) -> StepFailure:
        return StepFailure(
            job=self.job,
            step=self.step,
            message=message,
            exit_code=exit_code,
            stdout=tail(stdout),
            stderr=tail(stderr),
        )


# An action returns its named outputs (or None) and raises StepFailure on failure.
Action = Callable[[ActionCall], Optional[Mapping[str, str]]]


def tail(text: Optional[str]) -> str:
    if not text:
        return ""
    return text[-settings.OUTPUT_TAIL:]
