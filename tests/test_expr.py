import pytest

from matrixci.errors import ConfigurationError
from matrixci.expr import ExpressionContext, MissingReference, interpolate, parse


def _ctx(**kw):
    kw.setdefault("matrix", {"os": "ubuntu-latest", "rust": "stable", "py": 3.12})
    kw.setdefault("steps", {"msrv": {"data": "1.70.0"}})
    kw.setdefault("env", {"CI": "true"})
    kw.setdefault("event", "push")
    return ExpressionContext(**kw)


@pytest.mark.parametrize(
    "source, expected",
    [
        ("matrix.rust == 'stable'", True),
        ("matrix.rust != 'stable'", False),
        ("matrix.os == 'ubuntu-latest' && matrix.rust == 'stable'", True),
        ("matrix.os == 'windows-latest' || matrix.rust == 'stable'", True),
        ("!(matrix.rust == 'nightly')", True),
        ("steps.msrv.outputs.data == '1.70.0'", True),
        ("env.CI == 'true'", True),
        ("event == 'push'", True),
        ("matrix.py >= 3.11", True),
        ("matrix.py < '3.10'", False),
        ("contains(matrix.os, 'ubuntu')", True),
        ("startsWith(matrix.os, 'mac')", False),
        ("endsWith(matrix.os, '-latest')", True),
        ("true && !false", True),
        ("null == null", True),
    ],
)
def test_guard_evaluation(source, expected):
    assert parse(source).evaluate(_ctx()) is expected


def test_string_comparison_is_case_sensitive():
    assert parse("matrix.os == 'Ubuntu-latest'").evaluate(_ctx()) is False


def test_wrapped_expression_is_accepted():
    assert parse("${{ matrix.rust == 'stable' }}").evaluate(_ctx()) is True


def test_quote_escape_in_string_literal():
    expression = parse("'it''s'")
    assert expression.evaluate(_ctx()) == "it's"


def test_missing_reference_raises():
    with pytest.raises(MissingReference) as ei:
        parse("steps.toolchain.outputs.name == 'x'").evaluate(_ctx())
    assert ei.value.path == ("steps", "toolchain", "outputs", "name")


def test_or_falls_through_missing_reference():
    expression = parse("steps.toolchain.outputs.name || steps.msrv.outputs.data")
    assert expression.evaluate(_ctx()) == "1.70.0"


def test_or_with_every_operand_missing_still_raises():
    with pytest.raises(MissingReference):
        parse("steps.a.outputs.x || steps.b.outputs.x").evaluate(_ctx())


def test_and_does_not_swallow_missing_reference():
    with pytest.raises(MissingReference):
        parse("steps.a.outputs.x && true").evaluate(_ctx())


def test_references_lists_every_ref():
    refs = parse("matrix.os == 'x' && contains(steps.s.outputs.o, env.CI)").references()
    assert [r.dotted for r in refs] == ["matrix.os", "steps.s.outputs.o", "env.CI"]


@pytest.mark.parametrize(
    "source",
    [
        "",
        "matrix.os ==",
        "(matrix.os == 'a'",
        "secrets.TOKEN == 'x'",
        "fromJSON(matrix.os, 'x')",
        "contains(matrix.os)",
        "matrix.os = 'a'",
        "matrix.os == 'a' 'b'",
    ],
)
def test_syntax_errors(source):
    with pytest.raises(ConfigurationError) as ei:
        parse(source)
    assert ei.value.kind == "expression_syntax"


def test_interpolate_replaces_every_template():
    text = interpolate("cargo +${{ matrix.rust }} test on ${{ matrix.os }}", _ctx())
    assert text == "cargo +stable test on ubuntu-latest"


def test_interpolate_renders_booleans_and_numbers():
    assert interpolate("${{ matrix.py }} ${{ matrix.rust == 'stable' }}", _ctx()) == "3.12 true"


def test_interpolate_leaves_plain_text_alone():
    assert interpolate("echo $HOME", _ctx()) == "echo $HOME"


def test_interpolate_unresolved_reference():
    with pytest.raises(ConfigurationError) as ei:
        interpolate("rustup install ${{ steps.read-toolchain-file.outputs.data }}", _ctx())
    assert ei.value.kind == "unresolved_reference"
    assert "steps.read-toolchain-file.outputs.data" in ei.value.message
