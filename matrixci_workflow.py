# matrixci_workflow.py
# Workflow for matrixci itself: core and CLI test suites as two matrix rows, ruff on one of them.
from __future__ import annotations

from matrixci.dsl import wf, sh, uses


def workflow():
    return wf(
        "matrixci",
        uses("Checkout sources", "checkout", id="checkout"),
        sh("Install package", "pip install -e '.[test]'"),
        uses(
            "Ruff check",
            "tool",
            if_="matrix.suite == 'cli'",
            with_={"tool": "ruff", "args": "check src tests"},
            continue_on_error=True,
        ),
        sh("Run pytest", "pytest -q ${{ env.PYTEST_ARGS }}"),
        sh(
            "Tested revision",
            "echo ${{ steps.checkout.outputs.sha }}",
            if_="steps.checkout.outputs.dirty == 'false'",
        ),
        matrix={"suite": ["not cli", "cli"]},
        env={"PYTEST_ARGS": "-k '${{ matrix.suite }}'"},
        fail_fast=False,
        job_name="pytest (${{ matrix.suite }})",
    )
