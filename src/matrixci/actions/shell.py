# actions/shell.py
from __future__ import annotations

import os
import subprocess
import tempfile
from pathlib import Path
from typing import Dict

from .. import settings
from ..errors import ConfigurationError
from .base import ActionCall


def parse_output_file(text: str) -> Dict[str, str]:
    """
    Parse the step output file. Each output is either a `name=value` line or
    a heredoc block:

        name<<EOF
        multi
        line
        EOF
    """
    outputs: Dict[str, str] = {}
    lines = text.splitlines()
    i = 0
    while i < len(lines):
        line = lines[i]
        i += 1
        if not line.strip():
            continue
        if "<<" in line and ("=" not in line or line.index("<<") < line.index("=")):
            name, delimiter = line.split("<<", 1)
            body = []
            while i < len(lines) and lines[i] != delimiter:
                body.append(lines[i])
                i += 1
            if i >= len(lines):
                raise ConfigurationError(
                    kind="malformed_output",
                    message=f"output '{name}' is missing its closing delimiter {delimiter!r}",
                )
            i += 1
            outputs[name.strip()] = "\n".join(body)
            continue
        if "=" not in line:
            raise ConfigurationError(
                kind="malformed_output",
                message=f"output line is not name=value: {line!r}",
            )
        name, value = line.split("=", 1)
        outputs[name.strip()] = value
    return outputs


def run_shell(call: ActionCall) -> Dict[str, str]:
    """Run `call.run` through the shell. Outputs are read back from $MATRIXCI_OUTPUT."""
    cwd = call.workdir
    if not cwd.exists():
        raise call.fail(f"working directory not found: {cwd}")

    env = os.environ.copy()
    env.update(call.env)

    with tempfile.TemporaryDirectory(prefix="matrixci-") as tmp:
        output_file = Path(tmp) / "outputs"
        output_file.touch()
        env[settings.OUTPUT_FILE_ENV] = str(output_file)

        try:
            proc = subprocess.run(
                call.run or "",
                shell=True,
                cwd=str(cwd),
                env=env,
                text=True,
                capture_output=True,
                timeout=settings.STEP_TIMEOUT,
            )
        except subprocess.TimeoutExpired as e:
            raise call.fail(
                f"timed out after {settings.STEP_TIMEOUT}s: {call.run}",
                stdout=e.stdout if isinstance(e.stdout, str) else "",
                stderr=e.stderr if isinstance(e.stderr, str) else "",
            ) from e

        if proc.returncode != 0:
            raise call.fail(
                call.run or "",
                exit_code=proc.returncode,
                stdout=proc.stdout,
                stderr=proc.stderr,
            )

        return parse_output_file(output_file.read_text(encoding="utf-8"))
