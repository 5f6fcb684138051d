# src/matrixci/dsl.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from .expr import parse, to_text
from .model import Axis, Step, Trigger, Workflow


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def _strs(values: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    return {k: to_text(v) for k, v in (values or {}).items()}


def sh(
    name: Optional[str],
    cmd: str,
    *,
    id: Optional[str] = None,
    if_: Optional[str] = None,
    cwd: Optional[str] = None,
    env: Optional[Mapping[str, Any]] = None,
    outputs: Optional[Mapping[str, str]] = None,
    continue_on_error: bool = False,
) -> Step:
    """Create a shell step."""
    return Step(
        name=name,
        run=cmd,
        id=id,
        condition=parse(if_) if if_ else None,
        env=_strs(env),
        outputs=dict(outputs or {}),
        cwd=cwd,
        continue_on_error=continue_on_error,
    )


def uses(
    name: Optional[str],
    action: str,
    *,
    id: Optional[str] = None,
    if_: Optional[str] = None,
    with_: Optional[Mapping[str, Any]] = None,
    cwd: Optional[str] = None,
    env: Optional[Mapping[str, Any]] = None,
    outputs: Optional[Mapping[str, str]] = None,
    continue_on_error: bool = False,
) -> Step:
    """Create a step that calls a named action, e.g. uses("Read MSRV", "read-file", with_={...})."""
    return Step(
        name=name,
        uses=action,
        id=id,
        condition=parse(if_) if if_ else None,
        params=_strs(with_),
        env=_strs(env),
        outputs=dict(outputs or {}),
        cwd=cwd,
        continue_on_error=continue_on_error,
    )


def axis(name: str, values: Iterable[Any]) -> Axis:
    return Axis(name=name, values=tuple(values))


# ---------------------------------------------------------------------
# Functional workflow helper
# ---------------------------------------------------------------------

def wf(
    name: str,
    *steps: Step,
    on: Iterable[str] = ("push", "pull_request"),
    matrix: Optional[Mapping[str, Iterable[Any]]] = None,
    fail_fast: bool = True,
    max_parallel: Optional[int] = None,
    job_name: Optional[str] = None,
    runs_on: Optional[str] = None,
    env: Optional[Mapping[str, Any]] = None,
) -> Workflow:
    """
    Workflow definition helper.

    Users can write:
        from matrixci import wf, sh, uses

        def workflow():
            return wf(
                "Tests",
                uses("Checkout", "checkout"),
                sh("Test", "pytest -q"),
                matrix={"python": ["3.11", "3.12"]},
            )
    """
    if not steps:
        raise ValueError(f"wf({name!r}) must have at least one step")

    return Workflow(
        name=name,
        steps=list(steps),
        trigger=Trigger.of(*on),
        axes=[axis(k, v) for k, v in (matrix or {}).items()],
        fail_fast=fail_fast,
        max_parallel=max_parallel,
        job_name=job_name,
        runs_on=runs_on,
        env=_strs(env),
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class WorkflowBuilder:
    def __init__(self, name: str):
        self.name = name
        self._events: List[str] = []
        self._axes: List[Axis] = []
        self._steps: List[Step] = []
        self._env: Dict[str, str] = {}
        self._fail_fast: bool = True
        self._max_parallel: Optional[int] = None
        self._job_name: Optional[str] = None
        self._runs_on: Optional[str] = None

    def on(self, *events: str):
        self._events.extend(events)
        return self

    def axis(self, name: str, *values: Any):
        self._axes.append(axis(name, values))
        return self

    def fail_fast(self, enabled: bool = True):
        self._fail_fast = enabled
        return self

    def max_parallel(self, n: int):
        self._max_parallel = n
        return self

    def job_name(self, template: str):
        self._job_name = template
        return self

    def runs_on(self, template: str):
        self._runs_on = template
        return self

    def with_env(self, **env):
        # force values to str, they end up in the process environment
        self._env.update(_strs(env))
        return self

    def step(self, step: Step):
        self._steps.append(step)
        return self

    def define_step(self, name: str, run: str, **kwargs):
        return self.step(sh(name, run, **kwargs))

    def build(self) -> Workflow:
        if not self._steps:
            raise ValueError(f"Workflow '{self.name}' has no steps")

        return Workflow(
            name=self.name,
            steps=list(self._steps),
            trigger=Trigger.of(*self._events) if self._events else Trigger(),
            axes=list(self._axes),
            fail_fast=self._fail_fast,
            max_parallel=self._max_parallel,
            job_name=self._job_name,
            runs_on=self._runs_on,
            env=dict(self._env),
        )


def build(name: str) -> WorkflowBuilder:
    """Convenience: build('Tests').axis('os', 'linux').define_step(...).build()"""
    return WorkflowBuilder(name)
