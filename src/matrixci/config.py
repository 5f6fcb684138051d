# config.py
"""
Declarative workflow files (YAML).

    name: Tests
    on: [push, pull_request]
    fail-fast: false
    matrix:
      os: [ubuntu-latest, macOS-latest]
      rust: [stable, toolchain-file]
    steps:
      - uses: checkout
      - id: read-toolchain-file
        if: matrix.rust == 'toolchain-file'
        uses: read-file
        with: {file-name: rust-toolchain}
      - run: cargo +${{ steps.read-toolchain-file.outputs.data }} test

Float scalars keep their source text when the float would drop digits
(`1.70` stays "1.70"). The raw document is validated with pydantic and converted into the
dataclass model. Any problem surfaces as ConfigurationError.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ConfigurationError
from .expr import Expression, Ref, parse, template_expressions, to_text
from .matrix import check_axes
from .model import DEFAULT_EVENTS, Axis, Step, Trigger, Workflow


Scalar = Union[bool, int, float, str]

STEP_ID_PATTERN = r"^[A-Za-z_][A-Za-z0-9_-]*$"


class _WorkflowLoader(yaml.SafeLoader):
    """SafeLoader that keeps a float scalar as text when the float would change it (`1.70` -> `1.7`)."""


def _construct_float(loader: _WorkflowLoader, node: yaml.ScalarNode) -> Any:
    value = loader.construct_yaml_float(node)
    if to_text(value) != node.value:
        return node.value
    return value


_WorkflowLoader.add_constructor("tag:yaml.org,2002:float", _construct_float)


# -------------------- Schemas --------------------

class StepConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: Optional[str] = None
    id: Optional[str] = Field(default=None, pattern=STEP_ID_PATTERN)
    if_: Optional[Union[bool, str]] = Field(default=None, alias="if")
    uses: Optional[str] = None
    run: Optional[str] = None
    with_: Dict[str, Scalar] = Field(default_factory=dict, alias="with")
    env: Dict[str, Scalar] = Field(default_factory=dict)
    outputs: Dict[str, str] = Field(default_factory=dict)
    working_directory: Optional[str] = Field(default=None, alias="working-directory")
    continue_on_error: bool = Field(default=False, alias="continue-on-error")

    @model_validator(mode="after")
    def _exactly_one_action(self) -> "StepConfig":
        if (self.uses is None) == (self.run is None):
            raise ValueError("a step needs exactly one of 'run' or 'uses'")
        return self


class WorkflowConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str = "workflow"
    on: List[str] = Field(default_factory=lambda: sorted(DEFAULT_EVENTS))
    fail_fast: bool = Field(default=True, alias="fail-fast")
    max_parallel: Optional[int] = Field(default=None, alias="max-parallel", ge=1)
    job_name: Optional[str] = Field(default=None, alias="job-name")
    runs_on: Optional[str] = Field(default=None, alias="runs-on")
    env: Dict[str, Scalar] = Field(default_factory=dict)
    matrix: Dict[str, List[Scalar]] = Field(default_factory=dict)
    steps: List[StepConfig] = Field(min_length=1)

    @field_validator("on", mode="before")
    @classmethod
    def _normalize_on(cls, v: Any) -> Any:
        # on: push | on: [push, pull_request] | on: {push: {...}, pull_request: null}
        if isinstance(v, str):
            return [v]
        if isinstance(v, dict):
            return list(v.keys())
        return v

    @field_validator("on")
    @classmethod
    def _non_empty_on(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("at least one trigger event is required")
        return v


# -------------------- Conversion --------------------

def _step_from_config(cfg: StepConfig) -> Step:
    return Step(
        name=cfg.name,
        run=cfg.run,
        uses=cfg.uses,
        id=cfg.id,
        condition=parse(to_text(cfg.if_)) if cfg.if_ is not None else None,
        params={k: to_text(v) for k, v in cfg.with_.items()},
        env={k: to_text(v) for k, v in cfg.env.items()},
        outputs=dict(cfg.outputs),
        cwd=cfg.working_directory,
        continue_on_error=cfg.continue_on_error,
    )


def _format_validation_error(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<workflow>"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def workflow_from_dict(data: Dict[Any, Any], *, source: str = "<workflow>") -> Workflow:
    """Validate a raw workflow document and build the Workflow model."""
    data = dict(data)
    # YAML 1.1 reads a bare `on:` key as the boolean True
    if True in data:
        data["on"] = data.pop(True)
    if "trigger" in data:
        if "on" in data:
            raise ConfigurationError(
                kind="invalid_workflow",
                message="use either 'on' or 'trigger', not both",
                details={"file": source},
            )
        data["on"] = data.pop("trigger")

    try:
        cfg = WorkflowConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            kind="invalid_workflow",
            message=_format_validation_error(e),
            details={"file": source},
        ) from e

    wf = Workflow(
        name=cfg.name,
        steps=[_step_from_config(s) for s in cfg.steps],
        trigger=Trigger.of(*cfg.on),
        axes=[Axis(name=n, values=tuple(v)) for n, v in cfg.matrix.items()],
        fail_fast=cfg.fail_fast,
        max_parallel=cfg.max_parallel,
        job_name=cfg.job_name,
        runs_on=cfg.runs_on,
        env={k: to_text(v) for k, v in cfg.env.items()},
    )
    validate_workflow(wf)
    return wf


def load_workflow_file(path: str | Path) -> Workflow:
    p = Path(path)
    try:
        raw_text = p.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigurationError(kind="file_not_found", message=f"Workflow file not found: {p}") from e

    try:
        data = yaml.load(raw_text, Loader=_WorkflowLoader)
    except yaml.YAMLError as e:
        raise ConfigurationError(kind="yaml_parse", message=str(e), details={"file": str(p)}) from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            kind="invalid_workflow",
            message="top-level document must be a mapping",
            details={"file": str(p)},
        )
    return workflow_from_dict(data, source=str(p))


# -------------------- Validation --------------------

def _check_ref(ref: Ref, axis_names: List[str], where: str) -> None:
    head, n = ref.path[0], len(ref.path)
    ok = (
        (head == "matrix" and n == 2)
        or (head == "env" and n == 2)
        or (head == "event" and n == 1)
        or (head == "steps" and n == 4 and ref.path[2] == "outputs")
    )
    if not ok:
        raise ConfigurationError(
            kind="invalid_reference",
            message=f"'{ref.dotted}' in {where} is not a valid reference",
            details={"expected": "matrix.<axis> | steps.<id>.outputs.<name> | env.<name> | event"},
        )
    if head == "matrix" and ref.path[1] not in axis_names:
        raise ConfigurationError(
            kind="unknown_axis",
            message=f"'{ref.dotted}' in {where} refers to an undeclared matrix axis",
            details={"axes": ", ".join(axis_names) or "<none>"},
        )


def _check_expression(expression: Expression, axis_names: List[str], where: str) -> None:
    for ref in expression.references():
        _check_ref(ref, axis_names, where)


def validate_workflow(wf: Workflow) -> None:
    """
    Static checks that do not need a run: axes, step shape, ids, expression
    syntax and references. Ends by expanding the matrix once so name/runs-on
    templates are checked too.
    """
    axis_names = [a.name for a in wf.axes]
    if len(set(axis_names)) != len(axis_names):
        raise ConfigurationError(kind="duplicate_axis", message=f"matrix axes repeat: {axis_names}")
    check_axes(wf.matrix)

    if not wf.steps:
        raise ConfigurationError(kind="invalid_workflow", message=f"workflow '{wf.name}' has no steps")
    if wf.max_parallel is not None and wf.max_parallel < 1:
        raise ConfigurationError(kind="invalid_workflow", message="max-parallel must be >= 1")

    seen_ids: List[str] = []
    for index, step in enumerate(wf.steps):
        where = f"step {index + 1} ('{step.display_name}')"
        if (step.run is None) == (step.uses is None):
            raise ConfigurationError(
                kind="invalid_step",
                message=f"{where} needs exactly one of 'run' or 'uses'",
            )
        if step.id is not None:
            if step.id in seen_ids:
                raise ConfigurationError(kind="duplicate_step_id", message=f"{where} reuses id '{step.id}'")
            seen_ids.append(step.id)

        if step.condition is not None:
            _check_expression(step.condition, axis_names, where)

        templates = [step.run or "", step.cwd or ""]
        templates += list(step.params.values()) + list(step.env.values()) + list(step.outputs.values())
        for template in templates:
            for expression in template_expressions(template):
                _check_expression(expression, axis_names, where)

    wf.jobs()
