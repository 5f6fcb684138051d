# actions/tool.py
from __future__ import annotations

import os
import shlex
import subprocess

from .. import settings
from .base import ActionCall


TOOL_HINTS = {
    "cargo": "Install Rust via rustup (https://rustup.rs) or fix PATH.",
    "rustup": "Install rustup (https://rustup.rs) or fix PATH.",
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "node": "Install Node.js or fix PATH.",
    "pytest": "Install pytest (e.g., pip install pytest).",
    "ruff": "Install ruff (e.g., pip install ruff).",
    "docker": "Install Docker and ensure the daemon is running.",
    "python3": "Install Python 3 or fix PATH (python3).",
}


def _not_available(call: ActionCall, tool: str, reason: str):
    hint = TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")
    return call.fail(f"{tool} is not available ({reason}). {hint}")


def run_tool(call: ActionCall) -> None:
    """
    Run `tool` with `args`, e.g. {tool: cargo, args: "test --all"}.
    Like `run:` but without a shell, and with a friendlier error when the
    tool is missing. The tool is looked up with the step's own env (PATH)
    and working directory, so `./build.sh` resolves against the workspace.
    """
    tool = call.param("tool", required=True)

    cmd_parts = [tool]
    args = call.param("args")
    if args:
        cmd_parts.extend(shlex.split(args))

    cwd = call.workdir
    if not cwd.exists():
        raise call.fail(f"working directory not found: {cwd}")

    env = os.environ.copy()
    env.update(call.env)

    try:
        proc = subprocess.run(
            cmd_parts,
            shell=False,
            cwd=str(cwd),
            env=env,
            text=True,
            capture_output=True,
            timeout=settings.STEP_TIMEOUT,
        )
    except FileNotFoundError as e:
        raise _not_available(call, tool, "not found") from e
    except PermissionError as e:
        raise _not_available(call, tool, "not executable") from e
    except subprocess.TimeoutExpired as e:
        raise call.fail(f"timed out after {settings.STEP_TIMEOUT}s: {' '.join(cmd_parts)}") from e

    if proc.returncode != 0:
        raise call.fail(
            " ".join(cmd_parts),
            exit_code=proc.returncode,
            stdout=proc.stdout,
            stderr=proc.stderr,
        )
    return None
