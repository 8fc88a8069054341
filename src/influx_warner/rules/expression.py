"""Restricted boolean expressions evaluated against one result row.

Check strings are parsed by a small recursive-descent parser into a
tuple tree and walked by ``_eval``. Nothing is handed to ``eval`` or
``exec``: the only names an expression can see are the row's fields and
the ``matched``/``valid`` accumulators, held in a dict that is built for
one evaluation and thrown away afterwards.

Supported syntax::

    matched = account_count < 5
    result == 'fail' && type != "vip"
    not (errors > 10 or ratio >= 0.5)
    10 <= latency < 250
"""

from __future__ import annotations

import operator
import re
from collections.abc import Callable, Iterable
from typing import Any

from ..exceptions import ConfigError, EvaluationError

ACCUMULATORS = ("matched", "valid")

_MAX_NESTING = 50

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<number>(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?)
    |(?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
    |(?P<op>===|!==|==|!=|<=|>=|&&|\|\||[<>=!+\-*/%()])
    |(?P<name>[A-Za-z_$][A-Za-z0-9_$]*)
    """,
    re.VERBOSE,
)

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"'}

_CONSTANTS = {
    "true": True,
    "True": True,
    "false": False,
    "False": False,
    "null": None,
    "None": None,
}

_COMPARE = {
    "==": operator.eq,
    "===": operator.eq,
    "!=": operator.ne,
    "!==": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}

_ARITH = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
    "%": operator.mod,
}

_OR = ("||", "or")
_AND = ("&&", "and")
_NOT = ("!", "not")


def _tokenize(source: str) -> list[tuple[str, Any]]:
    tokens: list[tuple[str, Any]] = []
    pos = 0
    while pos < len(source):
        m = _TOKEN_RE.match(source, pos)
        if m is None:
            raise ConfigError(f"unexpected character {source[pos]!r} at {pos} in '{source}'")
        pos = m.end()
        kind = m.lastgroup
        text = m.group()
        if kind == "ws":
            continue
        if kind == "number":
            value = float(text)
            tokens.append(("const", int(value) if value.is_integer() and "." not in text else value))
        elif kind == "string":
            body = re.sub(r"\\(.)", lambda e: _ESCAPES.get(e.group(1), e.group(1)), text[1:-1])
            tokens.append(("const", body))
        elif kind == "name" and text in _CONSTANTS:
            tokens.append(("const", _CONSTANTS[text]))
        elif kind == "name" and text in ("and", "or", "not"):
            tokens.append(("op", text))
        else:
            tokens.append((kind, text))
    tokens.append(("end", None))
    return tokens


class _Parser:
    def __init__(self, source: str) -> None:
        self._source = source
        self._tokens = _tokenize(source)
        self._pos = 0
        self._depth = 0

    def _peek(self) -> tuple[str, Any]:
        return self._tokens[self._pos]

    def _next(self) -> tuple[str, Any]:
        tok = self._tokens[self._pos]
        self._pos += 1
        return tok

    def _at_op(self, *ops: str) -> bool:
        kind, value = self._peek()
        return kind == "op" and value in ops

    def _fail(self, message: str) -> ConfigError:
        return ConfigError(f"{message} in check '{self._source}'")

    def _nested(self, parse: Callable[[], tuple]) -> tuple:
        self._depth += 1
        if self._depth > _MAX_NESTING:
            raise self._fail(f"nesting deeper than {_MAX_NESTING} levels")
        try:
            return parse()
        finally:
            self._depth -= 1

    def parse(self) -> tuple[str | None, tuple]:
        target = None
        kind, value = self._peek()
        if kind == "name" and self._tokens[self._pos + 1] == ("op", "="):
            if value not in ACCUMULATORS:
                raise self._fail(f"cannot assign to '{value}'")
            target = value
            self._pos += 2
        tree = self._or()
        if self._peek()[0] != "end":
            raise self._fail(f"unexpected token {self._peek()[1]!r}")
        return target, tree

    def _or(self) -> tuple:
        items = [self._and()]
        while self._at_op(*_OR):
            self._next()
            items.append(self._and())
        return items[0] if len(items) == 1 else ("or", items)

    def _and(self) -> tuple:
        items = [self._not()]
        while self._at_op(*_AND):
            self._next()
            items.append(self._not())
        return items[0] if len(items) == 1 else ("and", items)

    def _not(self) -> tuple:
        if self._at_op(*_NOT):
            self._next()
            return ("not", self._nested(self._not))
        return self._compare()

    def _compare(self) -> tuple:
        left = self._additive()
        pairs = []
        while self._at_op(*_COMPARE):
            op = self._next()[1]
            pairs.append((op, self._additive()))
        return ("cmp", left, pairs) if pairs else left

    def _additive(self) -> tuple:
        node = self._term()
        while self._at_op("+", "-"):
            op = self._next()[1]
            node = ("arith", op, node, self._term())
        return node

    def _term(self) -> tuple:
        node = self._unary()
        while self._at_op("*", "/", "%"):
            op = self._next()[1]
            node = ("arith", op, node, self._unary())
        return node

    def _unary(self) -> tuple:
        if self._at_op("-"):
            self._next()
            return ("neg", self._nested(self._unary))
        if self._at_op("+"):
            self._next()
            return self._nested(self._unary)
        return self._primary()

    def _primary(self) -> tuple:
        kind, value = self._next()
        if kind == "const":
            return ("const", value)
        if kind == "name":
            return ("name", value)
        if kind == "op" and value == "(":
            node = self._nested(self._or)
            if not self._at_op(")"):
                raise self._fail("missing ')'")
            self._next()
            return node
        if kind == "end":
            raise self._fail("unexpected end of expression")
        raise self._fail(f"unexpected token {value!r}")


def _arith(op: str, left: Any, right: Any) -> Any:
    if op == "+" and isinstance(left, str) and isinstance(right, str):
        return left + right
    if not (isinstance(left, (int, float)) and isinstance(right, (int, float))):
        raise TypeError(
            f"unsupported operand types for {op}: "
            f"{type(left).__name__} and {type(right).__name__}"
        )
    return _ARITH[op](left, right)


def _eval(node: tuple, scope: dict[str, Any]) -> Any:
    kind = node[0]
    if kind == "const":
        return node[1]
    if kind == "name":
        try:
            return scope[node[1]]
        except KeyError:
            raise NameError(f"undefined identifier '{node[1]}'") from None
    if kind == "or":
        value: Any = False
        for item in node[1]:
            value = _eval(item, scope)
            if value:
                return value
        return value
    if kind == "and":
        value = True
        for item in node[1]:
            value = _eval(item, scope)
            if not value:
                return value
        return value
    if kind == "not":
        return not _eval(node[1], scope)
    if kind == "neg":
        return -_eval(node[1], scope)
    if kind == "arith":
        return _arith(node[1], _eval(node[2], scope), _eval(node[3], scope))
    if kind == "cmp":
        left = _eval(node[1], scope)
        for op, right_node in node[2]:
            right = _eval(right_node, scope)
            if not _COMPARE[op](left, right):
                return False
            left = right
        return True
    raise ValueError(f"unknown node {kind}")


class CheckExpression:
    """One compiled check string."""

    def __init__(self, source: str) -> None:
        if not isinstance(source, str) or not source.strip():
            raise ConfigError("check expression must be a non-empty string")
        self.source = source
        self.target, self._tree = _Parser(source).parse()

    def run(self, scope: dict[str, Any]) -> bool:
        """Evaluate inside ``scope``, assigning the accumulator if named."""
        try:
            value = _eval(self._tree, scope)
        except Exception as e:
            raise EvaluationError(f"{e} in check '{self.source}'", expression=self.source) from e
        if self.target:
            scope[self.target] = value
        return bool(value)

    def __repr__(self) -> str:
        return f"CheckExpression({self.source!r})"


class CheckSet:
    """OR-combination of one or more check expressions."""

    def __init__(self, checks: str | Iterable[str]) -> None:
        sources = [checks] if isinstance(checks, str) else list(checks)
        if not sources:
            raise ConfigError("at least one check expression is required")
        self.expressions = [CheckExpression(s) for s in sources]

    def __len__(self) -> int:
        return len(self.expressions)

    def first_match(self, row: dict[str, Any]) -> int | None:
        """Index of the first check that holds for ``row``, else None."""
        scope: dict[str, Any] = {name: False for name in ACCUMULATORS}
        scope.update(row)
        for index, expression in enumerate(self.expressions):
            if expression.run(scope):
                return index
        return None

    def matches(self, row: dict[str, Any]) -> bool:
        return self.first_match(row) is not None


def evaluate(checks: str | Iterable[str] | CheckSet, row: dict[str, Any]) -> bool:
    """True when any of ``checks`` holds for ``row``."""
    check_set = checks if isinstance(checks, CheckSet) else CheckSet(checks)
    return check_set.matches(row)
