import pytest

from matrixci import build, sh, uses, wf
from matrixci.model import Trigger


def test_sh_and_uses_steps():
    step = sh("Test", "cargo test", id="test", if_="matrix.rust == 'stable'", env={"N": 2})
    assert step.action == "run"
    assert step.env == {"N": "2"}
    assert str(step.condition) == "matrix.rust == 'stable'"

    read = uses(None, "read-file", with_={"file-name": "rust-toolchain", "strip": True})
    assert read.action == "read-file"
    assert read.params == {"file-name": "rust-toolchain", "strip": "true"}
    assert read.display_name == "read-file"


def test_wf_defaults():
    workflow = wf("ci", sh(None, "make check\nmake test"))
    assert workflow.trigger == Trigger()
    assert workflow.fail_fast is True
    assert workflow.axes == []
    assert workflow.steps[0].display_name == "Run make check"
    assert len(workflow.jobs()) == 1


def test_wf_requires_steps():
    with pytest.raises(ValueError):
        wf("empty")


def test_builder_matches_functional_form():
    built = (
        build("Tests")
        .on("push", "pull-request")
        .axis("os", "linux", "mac")
        .axis("rust", "stable", "beta")
        .fail_fast(False)
        .max_parallel(2)
        .job_name("${{ matrix.os }}-${{ matrix.rust }}")
        .with_env(RUST_BACKTRACE=1)
        .define_step("test", "cargo test")
        .build()
    )
    functional = wf(
        "Tests",
        sh("test", "cargo test"),
        on=["push", "pull_request"],
        matrix={"os": ["linux", "mac"], "rust": ["stable", "beta"]},
        fail_fast=False,
        max_parallel=2,
        job_name="${{ matrix.os }}-${{ matrix.rust }}",
        env={"RUST_BACKTRACE": "1"},
    )
    assert built == functional
    assert [j.name for j in built.jobs()] == ["linux-stable", "linux-beta", "mac-stable", "mac-beta"]


def test_builder_requires_steps():
    with pytest.raises(ValueError):
        build("nothing").axis("os", "linux").build()
