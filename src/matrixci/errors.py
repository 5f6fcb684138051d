# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(eq=False)
class ConfigurationError(Exception):
    """
    Malformed or contradictory workflow declaration.

    Raised wherever it is detected: while loading a workflow, while
    expanding the matrix, or while resolving a single step's parameters.
    The runner turns a step-scoped one into a failed step; everywhere else
    it propagates to the caller.
    """
    kind: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass(eq=False)
class StepFailure(Exception):
    """An action reported a failed outcome (non-zero exit, missing file, ...)."""
    job: str
    step: str
    message: str
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""

    def __str__(self) -> str:
        if self.exit_code is not None:
            return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.message}"
        return f"[{self.job}] step '{self.step}' failed: {self.message}"
