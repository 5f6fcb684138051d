# matrix.py
from __future__ import annotations

import itertools
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .errors import ConfigurationError
from .expr import ExpressionContext, interpolate, to_text
from .model import Job, Step


def check_axes(axes: Mapping[str, Sequence[Any]]) -> None:
    for name, values in axes.items():
        values = list(values)
        if not values:
            raise ConfigurationError(
                kind="empty_axis",
                message=f"matrix axis '{name}' has no values",
                details={"axis": name},
            )
        seen: List[Any] = []
        for v in values:
            if v in seen:
                raise ConfigurationError(
                    kind="duplicate_axis_value",
                    message=f"matrix axis '{name}' lists {v!r} more than once",
                    details={"axis": name, "value": v},
                )
            seen.append(v)


def _default_job_name(name: str, assignment: Dict[str, Any]) -> str:
    if not assignment:
        return name
    return f"{name} ({', '.join(to_text(v) for v in assignment.values())})"


def expand(
    axes: Mapping[str, Sequence[Any]],
    *,
    steps: Sequence[Step] = (),
    name: str = "job",
    name_template: Optional[str] = None,
    runs_on: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> List[Job]:
    """
    Expand matrix axes into the full cross-product of jobs.

    Order is row-major over the declared axis order: the last axis varies
    fastest. No axes at all yields a single job with an empty assignment.

    Example:
        expand({"os": ["A", "B"], "channel": ["stable", "beta"]})
        -> (A, stable), (A, beta), (B, stable), (B, beta)

    Raises ConfigurationError for an empty axis, a duplicated axis value or
    a name/runs-on/env template that references something other than the
    job's own axis values.
    """
    check_axes(axes)
    names = list(axes.keys())
    jobs: List[Job] = []

    for index, combo in enumerate(itertools.product(*(list(axes[n]) for n in names))):
        assignment = dict(zip(names, combo))
        ctx = ExpressionContext(matrix=assignment)

        job_name = (
            interpolate(name_template, ctx) if name_template
            else _default_job_name(name, assignment)
        )
        job_env = {k: interpolate(str(v), ctx) for k, v in (env or {}).items()}

        jobs.append(
            Job(
                index=index,
                name=job_name,
                matrix=assignment,
                steps=tuple(steps),
                env=job_env,
                runs_on=interpolate(runs_on, ctx) if runs_on else None,
            )
        )

    return jobs
