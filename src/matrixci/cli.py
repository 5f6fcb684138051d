# cli.py
from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path

import click

from matrixci import settings
from matrixci.errors import ConfigurationError
from matrixci.git_facts.git import get_remote_url
from matrixci.model import RunStatus, Workflow
from matrixci.runner import load_workflow, run_workflow
from matrixci.ui.console import Console, get_console, set_console


DEFAULT_WORKFLOW_FILES = ("matrixci.yml", "matrixci.yaml", "matrixci_workflow.py")


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    current_dir = Path(".")
    found: set[Path] = set()

    for name in DEFAULT_WORKFLOW_FILES:
        candidate = current_dir / name
        if candidate.exists():
            found.add(candidate)

    for path in current_dir.glob("*_workflow.py"):
        found.add(path)

    return sorted(found)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  matrixci run --workflow matrixci.yml",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", *(f"  {n}" for n in DEFAULT_WORKFLOW_FILES), "  *_workflow.py"],
            suggestion="Create matrixci.yml, or specify a workflow explicitly:\n  matrixci run --workflow tests.yml",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[f"  {f}" for f in workflow_files],
            suggestion="Specify a workflow explicitly:\n  matrixci run --workflow matrixci.yml",
        )
        sys.exit(1)

    return workflow_files[0]


def _load_or_exit(workflow_path: Path) -> Workflow:
    console = get_console()
    try:
        return load_workflow(workflow_path)
    except ConfigurationError as e:
        console.print_error(
            "Invalid workflow",
            f"Could not load workflow from {workflow_path}",
            details=str(e).splitlines(),
        )
        sys.exit(1)


def _repository_name(workspace: Path) -> str:
    try:
        url = get_remote_url("origin", cwd=workspace)
        return url.rstrip("/").split("/")[-1].replace(".git", "")
    except (subprocess.CalledProcessError, FileNotFoundError):
        return workspace.resolve().name


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """matrixci: run a cross-platform, cross-toolchain test matrix locally."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (defaults to matrixci.yml or *_workflow.py)")
@click.option("--event", default=settings.DEFAULT_EVENT, show_default=True, help="Repository event that triggers the run")
@click.option("--workers", default=None, type=click.IntRange(min=1), help="Number of parallel jobs")
@click.option("--fail-fast/--no-fail-fast", default=True, help="Override the workflow's fail-fast setting")
@click.option("--workspace", default=".", type=click.Path(file_okay=False, path_type=Path), help="Directory steps run in")
@click.option("--report", default=None, type=click.Path(dir_okay=False, path_type=Path), help="Write a JSON run report here")
@click.pass_context
def run(ctx, workflow, event, workers, fail_fast, workspace, report):
    """Run a workflow for one repository event."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    wf = _load_or_exit(workflow_path)

    # the workflow's own fail-fast applies unless the flag was given explicitly
    if ctx.get_parameter_source("fail_fast") is click.core.ParameterSource.DEFAULT:
        fail_fast = None

    if not wf.trigger.matches(event):
        console.print_not_triggered(wf.name, event, wf.trigger.events)
        return

    try:
        jobs = wf.jobs()
        console.print_run_started(
            workflow=f"{wf.name} ({workflow_path.name})",
            event=event,
            job_count=len(jobs),
            fail_fast=wf.fail_fast if fail_fast is None else fail_fast,
            repository=_repository_name(workspace),
        )

        result = run_workflow(
            wf,
            event,
            fail_fast=fail_fast,
            max_workers=workers,
            workspace=workspace,
        )
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except ConfigurationError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(1)

    console.print_results(result)

    if report is not None:
        report.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
        console.print_debug(f"report written to {report}")

    if result.status is not RunStatus.SUCCEEDED:
        sys.exit(1)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (defaults to matrixci.yml or *_workflow.py)")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the plan as JSON")
def plan(workflow, as_json):
    """Print the expanded job matrix without running anything."""
    console = get_console()
    wf = _load_or_exit(discover_workflow(workflow))
    jobs = wf.jobs()

    if as_json:
        payload = [
            {"index": j.index, "name": j.name, "matrix": j.matrix, "runs_on": j.runs_on}
            for j in jobs
        ]
        console.print_info(json.dumps(payload, indent=2))
        return

    console.print_header(f"{wf.name}: {len(jobs)} job(s)")
    console.print_info(f"Triggers: {', '.join(sorted(wf.trigger.events))}")
    console.print_info(f"Fail-fast: {'on' if wf.fail_fast else 'off'}")
    console.print_plan(jobs)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (defaults to matrixci.yml or *_workflow.py)")
def validate(workflow):
    """Load and check a workflow file."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    wf = _load_or_exit(workflow_path)
    console.print_info(
        f"OK: {workflow_path} ({wf.name}: {len(wf.axes)} axes, {len(wf.jobs())} jobs, {len(wf.steps)} steps)"
    )


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
