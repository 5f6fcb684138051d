# actions/checkout.py
from __future__ import annotations

import subprocess
from typing import Dict

from ..git_facts import git
from .base import ActionCall


def checkout(call: ActionCall) -> Dict[str, str]:
    """
    Confirm the workspace is a git checkout and describe it.
    Cloning is left to the hosting platform; locally the sources are already here.
    """
    target = (call.workspace / (call.param("path") or ".")).resolve()
    if not target.exists():
        raise call.fail(f"checkout path not found: {target}")
    try:
        root = git.repo_root(cwd=target)
        sha = git.head_sha(cwd=target)
        ref = git.get_current_ref(cwd=target)
        dirty = git.is_dirty(cwd=target)
    except FileNotFoundError as e:
        raise call.fail("git command not found. Please install Git.") from e
    except subprocess.CalledProcessError as e:
        raise call.fail(f"{target} is not a git checkout", exit_code=e.returncode) from e

    return {
        "path": str(root),
        "sha": sha,
        "ref": ref,
        "dirty": "true" if dirty else "false",
    }
