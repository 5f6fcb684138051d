# expr.py
"""
Guard and template expressions.

Guards (`if:`) and `${{ ... }}` templates are parsed into a small typed tree
and evaluated against an explicit ExpressionContext. Supported syntax:

    literals     'text'  42  1.5  true  false  null
    references   matrix.os   steps.<id>.outputs.<name>   env.NAME   event
    operators    !  &&  ||  ==  !=  <  <=  >  >=  ( )
    functions    contains(a, b)  startsWith(a, b)  endsWith(a, b)

A reference that cannot be resolved raises MissingReference; callers decide
whether that means "skip" (guards) or ConfigurationError (templates). The
one exception is `||`, which moves on to its next operand, so
`steps.a.outputs.x || steps.b.outputs.x` picks whichever step ran.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Iterator, List, Mapping, Optional, Tuple, Union

from .errors import ConfigurationError


ROOTS = ("matrix", "steps", "env", "event")

_TEMPLATE_RE = re.compile(r"\$\{\{(.*?)\}\}", re.DOTALL)
_WRAPPED_RE = re.compile(r"^\s*\$\{\{(.*)\}\}\s*$", re.DOTALL)

_TOKEN_RE = re.compile(
    r"""
    (?P<number>\d+(?:\.\d+)?)
    | (?P<string>'(?:[^']|'')*')
    | (?P<op>==|!=|<=|>=|&&|\|\||[<>!(),])
    | (?P<ident>[A-Za-z_][A-Za-z0-9_-]*(?:\.[A-Za-z_][A-Za-z0-9_-]*)*)
    """,
    re.VERBOSE,
)

_KEYWORDS = {"true": True, "false": False, "null": None}


class MissingReference(LookupError):
    def __init__(self, path: Tuple[str, ...]):
        super().__init__(".".join(path))
        self.path = path


# ----------------------------------------------------------------------
# Tree
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Ref:
    path: Tuple[str, ...]

    @property
    def dotted(self) -> str:
        return ".".join(self.path)


@dataclass(frozen=True)
class Not:
    operand: Node


@dataclass(frozen=True)
class Compare:
    op: str
    left: Node
    right: Node


@dataclass(frozen=True)
class BoolOp:
    op: str  # "&&" | "||"
    operands: Tuple[Node, ...]


@dataclass(frozen=True)
class Call:
    name: str
    args: Tuple[Node, ...]


Node = Union[Literal, Ref, Not, Compare, BoolOp, Call]


@dataclass
class ExpressionContext:
    """What an expression inside one job can see."""
    matrix: Mapping[str, Any] = field(default_factory=dict)
    steps: Mapping[str, Mapping[str, str]] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)
    event: Optional[str] = None

    def lookup(self, path: Tuple[str, ...]) -> Any:
        head, rest = path[0], path[1:]
        if head == "matrix" and len(rest) == 1 and rest[0] in self.matrix:
            return self.matrix[rest[0]]
        if head == "steps" and len(rest) == 3 and rest[1] == "outputs":
            outputs = self.steps.get(rest[0])
            if outputs is not None and rest[2] in outputs:
                return outputs[rest[2]]
        if head == "env" and len(rest) == 1 and rest[0] in self.env:
            return self.env[rest[0]]
        if head == "event" and not rest and self.event is not None:
            return self.event
        raise MissingReference(path)


@dataclass(frozen=True)
class Expression:
    source: str
    root: Node

    def references(self) -> List[Ref]:
        return list(_walk_refs(self.root))

    def evaluate(self, ctx: ExpressionContext) -> Any:
        return evaluate(self.root, ctx)

    def __str__(self) -> str:
        return self.source


def _walk_refs(node: Node) -> Iterator[Ref]:
    if isinstance(node, Ref):
        yield node
    elif isinstance(node, Not):
        yield from _walk_refs(node.operand)
    elif isinstance(node, Compare):
        yield from _walk_refs(node.left)
        yield from _walk_refs(node.right)
    elif isinstance(node, (BoolOp, Call)):
        children = node.operands if isinstance(node, BoolOp) else node.args
        for child in children:
            yield from _walk_refs(child)


# ----------------------------------------------------------------------
# Parsing
# ----------------------------------------------------------------------

def _syntax_error(source: str, message: str) -> ConfigurationError:
    return ConfigurationError(
        kind="expression_syntax",
        message=message,
        details={"expression": source},
    )


def _tokenize(source: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    while pos < len(source):
        if source[pos].isspace():
            pos += 1
            continue
        m = _TOKEN_RE.match(source, pos)
        if m is None:
            raise _syntax_error(source, f"unexpected character {source[pos]!r} at offset {pos}")
        kind = m.lastgroup or ""
        tokens.append((kind, m.group(kind)))
        pos = m.end()
    return tokens


class _Parser:
    # or := and ('||' and)* ; and := unary ('&&' unary)* ;
    # unary := '!' unary | cmp ; cmp := primary (CMP primary)?
    def __init__(self, source: str):
        self.source = source
        self.tokens = _tokenize(source)
        self.pos = 0

    def peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self) -> Tuple[str, str]:
        tok = self.peek()
        if tok is None:
            raise _syntax_error(self.source, "unexpected end of expression")
        self.pos += 1
        return tok

    def expect(self, value: str) -> None:
        kind, text = self.take()
        if kind != "op" or text != value:
            raise _syntax_error(self.source, f"expected {value!r}, got {text!r}")

    def at_op(self, *values: str) -> bool:
        tok = self.peek()
        return tok is not None and tok[0] == "op" and tok[1] in values

    def parse(self) -> Node:
        node = self.parse_or()
        if self.peek() is not None:
            raise _syntax_error(self.source, f"unexpected token {self.peek()[1]!r}")
        return node

    def parse_or(self) -> Node:
        operands = [self.parse_and()]
        while self.at_op("||"):
            self.take()
            operands.append(self.parse_and())
        return operands[0] if len(operands) == 1 else BoolOp("||", tuple(operands))

    def parse_and(self) -> Node:
        operands = [self.parse_unary()]
        while self.at_op("&&"):
            self.take()
            operands.append(self.parse_unary())
        return operands[0] if len(operands) == 1 else BoolOp("&&", tuple(operands))

    def parse_unary(self) -> Node:
        if self.at_op("!"):
            self.take()
            return Not(self.parse_unary())
        return self.parse_compare()

    def parse_compare(self) -> Node:
        left = self.parse_primary()
        if self.at_op("==", "!=", "<", "<=", ">", ">="):
            op = self.take()[1]
            return Compare(op, left, self.parse_primary())
        return left

    def parse_primary(self) -> Node:
        kind, text = self.take()
        if kind == "number":
            return Literal(float(text) if "." in text else int(text))
        if kind == "string":
            return Literal(text[1:-1].replace("''", "'"))
        if kind == "op" and text == "(":
            node = self.parse_or()
            self.expect(")")
            return node
        if kind == "ident":
            if text in _KEYWORDS:
                return Literal(_KEYWORDS[text])
            if self.at_op("("):
                return self.parse_call(text)
            path = tuple(text.split("."))
            if path[0] not in ROOTS:
                raise _syntax_error(self.source, f"unknown context {path[0]!r} (expected one of {', '.join(ROOTS)})")
            return Ref(path)
        raise _syntax_error(self.source, f"unexpected token {text!r}")

    def parse_call(self, name: str) -> Node:
        if name.lower() not in _FUNCTIONS:
            raise _syntax_error(self.source, f"unknown function {name!r}")
        self.expect("(")
        args: List[Node] = []
        if not self.at_op(")"):
            args.append(self.parse_or())
            while self.at_op(","):
                self.take()
                args.append(self.parse_or())
        self.expect(")")
        if len(args) != 2:
            raise _syntax_error(self.source, f"{name}() takes 2 arguments, got {len(args)}")
        return Call(name.lower(), tuple(args))


@lru_cache(maxsize=512)
def parse(source: str) -> Expression:
    """Parse a guard or template body. A surrounding `${{ }}` is optional."""
    m = _WRAPPED_RE.match(source)
    body = m.group(1) if m else source
    if not body.strip():
        raise _syntax_error(source, "empty expression")
    return Expression(source=body.strip(), root=_Parser(body).parse())


def template_expressions(template: str) -> List[Expression]:
    return [parse(m.group(1)) for m in _TEMPLATE_RE.finditer(template)]


# ----------------------------------------------------------------------
# Evaluation
# ----------------------------------------------------------------------

def truthy(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0
    if isinstance(value, str):
        return value != ""
    return True


def _as_number(value: str) -> Any:
    try:
        return float(value)
    except ValueError:
        return value


def _normalize_pair(a: Any, b: Any) -> Tuple[Any, Any]:
    def norm(v: Any) -> Any:
        if isinstance(v, bool):
            return "true" if v else "false"
        if isinstance(v, (int, float)):
            return float(v)
        return v

    a, b = norm(a), norm(b)
    if isinstance(a, float) and isinstance(b, str):
        b = _as_number(b)
    elif isinstance(b, float) and isinstance(a, str):
        a = _as_number(a)
    return a, b


def _compare(op: str, a: Any, b: Any) -> bool:
    if a is None or b is None:
        if op == "==":
            return a is b
        if op == "!=":
            return a is not b
        return False
    a, b = _normalize_pair(a, b)
    if op == "==":
        return a == b
    if op == "!=":
        return a != b
    if type(a) is not type(b):
        return False
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    return a >= b


def to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


_FUNCTIONS = {
    "contains": lambda a, b: to_text(b) in (a if isinstance(a, (list, tuple)) else to_text(a)),
    "startswith": lambda a, b: to_text(a).startswith(to_text(b)),
    "endswith": lambda a, b: to_text(a).endswith(to_text(b)),
}


def evaluate(node: Node, ctx: ExpressionContext) -> Any:
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, Ref):
        return ctx.lookup(node.path)
    if isinstance(node, Not):
        return not truthy(evaluate(node.operand, ctx))
    if isinstance(node, Compare):
        return _compare(node.op, evaluate(node.left, ctx), evaluate(node.right, ctx))
    if isinstance(node, BoolOp):
        value: Any = None
        last = len(node.operands) - 1
        for i, operand in enumerate(node.operands):
            try:
                value = evaluate(operand, ctx)
            except MissingReference:
                # `a || b`: fall through to b when a was never produced
                if node.op != "||" or i == last:
                    raise
                continue
            if node.op == "&&" and not truthy(value):
                return value
            if node.op == "||" and truthy(value):
                return value
        return value
    if isinstance(node, Call):
        args = [evaluate(a, ctx) for a in node.args]
        return _FUNCTIONS[node.name](*args)
    raise TypeError(f"not an expression node: {node!r}")


def interpolate(template: str, ctx: ExpressionContext) -> str:
    """
    Replace every `${{ expr }}` in `template`.
    Raises ConfigurationError(kind="unresolved_reference") when a reference
    cannot be resolved in `ctx`.
    """
    def _sub(m: re.Match) -> str:
        expression = parse(m.group(1))
        try:
            return to_text(expression.evaluate(ctx))
        except MissingReference as e:
            raise ConfigurationError(
                kind="unresolved_reference",
                message=f"'{'.'.join(e.path)}' is not available",
                details={"expression": expression.source},
            ) from e

    return _TEMPLATE_RE.sub(_sub, template)
