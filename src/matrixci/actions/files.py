# actions/files.py
from __future__ import annotations

from typing import Dict

from .base import ActionCall


def read_file(call: ActionCall) -> Dict[str, str]:
    """Read `file-name` (relative to the step's working directory) into the `data` output."""
    name = call.param("file-name", required=True)
    path = call.workdir / name
    if not path.is_file():
        raise call.fail(f"file not found: {path}")
    return {"data": path.read_text(encoding="utf-8").strip()}
