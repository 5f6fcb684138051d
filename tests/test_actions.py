import shutil
import subprocess

import pytest

from matrixci import settings
from matrixci.actions import ActionCall, checkout, read_file, run_shell, run_tool
from matrixci.actions.shell import parse_output_file
from matrixci.errors import ConfigurationError, StepFailure


def _call(tmp_path, **kw):
    kw.setdefault("job", "job")
    kw.setdefault("step", "step")
    return ActionCall(workspace=tmp_path, **kw)


def test_parse_output_file_lines_and_heredoc():
    text = "name=stable\nempty=\n\nnotes<<EOF\nline one\nline=two\nEOF\nurl=a=b\n"
    assert parse_output_file(text) == {
        "name": "stable",
        "empty": "",
        "notes": "line one\nline=two",
        "url": "a=b",
    }


def test_parse_output_file_rejects_garbage():
    with pytest.raises(ConfigurationError) as ei:
        parse_output_file("just text\n")
    assert ei.value.kind == "malformed_output"


def test_parse_output_file_unterminated_heredoc():
    with pytest.raises(ConfigurationError):
        parse_output_file("notes<<EOF\nnever closed\n")


def test_run_shell_collects_outputs(tmp_path):
    call = _call(tmp_path, run='echo "sha=abc" >> "$MATRIXCI_OUTPUT"; echo ran')
    assert run_shell(call) == {"sha": "abc"}


def test_run_shell_uses_env_and_cwd(tmp_path):
    (tmp_path / "sub").mkdir()
    call = _call(
        tmp_path,
        run='test "$(basename "$PWD")" = sub && test "$CHANNEL" = beta',
        env={"CHANNEL": "beta"},
        cwd="sub",
    )
    assert run_shell(call) == {}


def test_run_shell_nonzero_exit(tmp_path):
    call = _call(tmp_path, run="echo oops >&2; exit 3")
    with pytest.raises(StepFailure) as ei:
        run_shell(call)
    assert ei.value.exit_code == 3
    assert "oops" in ei.value.stderr


def test_run_shell_missing_cwd(tmp_path):
    with pytest.raises(StepFailure):
        run_shell(_call(tmp_path, run="true", cwd="missing"))


def test_run_shell_timeout(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "STEP_TIMEOUT", 0.2)
    with pytest.raises(StepFailure) as ei:
        run_shell(_call(tmp_path, run="sleep 2"))
    assert "timed out" in ei.value.message


def test_read_file_strips_content(tmp_path):
    (tmp_path / "rust-toolchain").write_text("1.70.0\n", encoding="utf-8")
    call = _call(tmp_path, params={"file-name": "rust-toolchain"})
    assert read_file(call) == {"data": "1.70.0"}


def test_read_file_missing_file(tmp_path):
    with pytest.raises(StepFailure) as ei:
        read_file(_call(tmp_path, params={"file-name": "rust-toolchain"}))
    assert "file not found" in ei.value.message


def test_read_file_requires_parameter(tmp_path):
    with pytest.raises(ConfigurationError) as ei:
        read_file(_call(tmp_path))
    assert ei.value.kind == "missing_parameter"


def test_run_tool_missing_tool(tmp_path):
    call = _call(tmp_path, params={"tool": "definitely-not-a-real-tool-xyz"})
    with pytest.raises(StepFailure) as ei:
        run_tool(call)
    assert "is not available" in ei.value.message


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
def test_run_tool_passes_args(tmp_path):
    assert run_tool(_call(tmp_path, params={"tool": "git", "args": "--version"})) is None


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
def test_checkout_outside_repo_fails(tmp_path):
    with pytest.raises(StepFailure):
        checkout(_call(tmp_path))


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
def test_checkout_describes_repo(tmp_path):
    def git(*args):
        subprocess.run(["git", *args], cwd=tmp_path, check=True, capture_output=True)

    git("init", "-q")
    git("-c", "user.email=ci@example.com", "-c", "user.name=ci", "commit", "-q", "--allow-empty", "-m", "init")

    outputs = checkout(_call(tmp_path))
    assert len(outputs["sha"]) == 40
    assert outputs["dirty"] == "false"
    assert outputs["ref"]

    (tmp_path / "new.txt").write_text("x", encoding="utf-8")
    assert checkout(_call(tmp_path))["dirty"] == "true"


def _script(path, body="exit 0"):
    path.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
    path.chmod(0o755)
    return path


def test_run_tool_workspace_relative_script(tmp_path):
    _script(tmp_path / "build.sh", 'test "$1" = release')
    assert run_tool(_call(tmp_path, params={"tool": "./build.sh", "args": "release"})) is None


def test_run_tool_found_on_step_path(tmp_path):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    _script(bin_dir / "mytool")
    env = {"PATH": f"{bin_dir}:/usr/bin:/bin"}
    assert run_tool(_call(tmp_path, params={"tool": "mytool"}, env=env)) is None


def test_run_tool_without_version_flag(tmp_path):
    # a tool that rejects --version but runs fine with its real args
    _script(tmp_path / "picky.sh", 'test "$1" = "--version" && exit 2; exit 0')
    assert run_tool(_call(tmp_path, params={"tool": "./picky.sh", "args": "check"})) is None


def test_run_tool_nonzero_exit(tmp_path):
    _script(tmp_path / "fail.sh", "echo bad >&2; exit 4")
    with pytest.raises(StepFailure) as ei:
        run_tool(_call(tmp_path, params={"tool": "./fail.sh"}))
    assert ei.value.exit_code == 4
    assert "bad" in ei.value.stderr
