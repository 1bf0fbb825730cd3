"""Per-row formula evaluation for custom columns.

A formula is a template over positional references ``$1..$N`` into the
base row. References are substituted with the referenced cell's text
(``"0"`` when the cell is missing or empty), and the resulting text is
parsed with a fixed LALR grammar and evaluated by walking the tree.

Supported:
- Number literals (``3``, ``2.5``, ``.5``, ``1e3``) and quoted strings
  (``"abc"`` or ``'abc'``)
- Arithmetic ``+ - * /`` with unary ``+``/``-`` and parentheses
- ``+`` concatenates when either side is a string
- Comparisons ``< > <= >= == != === !==``

There are no names, calls or loops in the grammar, so evaluation always
terminates and cannot reach anything outside the row.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Sequence

from lark import Lark, Token, Tree
from lark.exceptions import LarkError

from sheetvault.errors import FormulaEvaluationError
from sheetvault.models import ERROR, CellValue, Scalar

logger = logging.getLogger(__name__)

# Operator precedence (lowest to highest):
#   1. Equality: == != === !==
#   2. Relational: < > <= >=
#   3. Additive: + -
#   4. Multiplicative: * /
#   5. Unary: + -
#   6. Atoms: number, string, parenthesized expr
GRAMMAR = r"""
?start: equality

?equality: relational
    | equality "===" relational  -> strict_eq
    | equality "!==" relational  -> strict_ne
    | equality "==" relational   -> eq
    | equality "!=" relational   -> ne

?relational: additive
    | relational "<=" additive  -> le
    | relational ">=" additive  -> ge
    | relational "<" additive   -> lt
    | relational ">" additive   -> gt

?additive: multiplicative
    | additive "+" multiplicative  -> add
    | additive "-" multiplicative  -> sub

?multiplicative: unary
    | multiplicative "*" unary  -> mul
    | multiplicative "/" unary  -> div

?unary: atom
    | "-" unary  -> neg
    | "+" unary  -> pos

?atom: NUMBER          -> number
    | DOUBLE_STRING    -> string
    | SINGLE_STRING    -> string
    | "(" equality ")"

NUMBER: /(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?/
DOUBLE_STRING: /"(?:\\.|[^"\\])*"/
SINGLE_STRING: /'(?:\\.|[^'\\])*'/

%import common.WS
%ignore WS
"""

_parser = Lark(GRAMMAR, parser="lalr", start="start")

_REF_RE = re.compile(r"\$(\d+)")
_INT_RE = re.compile(r"[+-]?[0-9]+")
_ESCAPE_RE = re.compile(r"\\(.)", re.DOTALL)
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0"}

# Integers beyond this magnitude lose precision as doubles; past it every
# number is a float, so digit count stays bounded.
_MAX_SAFE_INT = 2**53 - 1
_MAX_INT_DIGITS = len(str(_MAX_SAFE_INT))

Value = str | int | float | bool


# ── Substitution ─────────────────────────────────────────────────


def format_number(value: int | float) -> str:
    """Render a number the way it reads in a cell (``7.0`` -> ``"7"``)."""
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    return str(value)


def _cell_text(cell: Scalar) -> str:
    if cell is None:
        return ""
    if isinstance(cell, (int, float)):
        return format_number(cell)
    return str(cell)


def substitute(formula: str, row: Sequence[Scalar]) -> str:
    """Replace each ``$N`` in *formula* with the text of ``row[N-1]``.

    Missing, ``None`` or empty cells become ``"0"``.
    """

    def _replace(match: re.Match[str]) -> str:
        index = int(match.group(1)) - 1
        if 0 <= index < len(row):
            text = _cell_text(row[index])
            if text:
                return text
        return "0"

    return _REF_RE.sub(_replace, formula)


# ── Parsing ──────────────────────────────────────────────────────


def parse_expression(text: str) -> Tree:
    """Parse substituted formula text into a Lark tree.

    Raises:
        FormulaEvaluationError: If *text* is not a valid expression.
    """
    try:
        return _parser.parse(text)
    except LarkError as exc:
        pos = getattr(exc, "column", None)
        summary = (str(exc).strip().splitlines() or ["invalid syntax"])[0]
        raise FormulaEvaluationError(summary, position=pos) from exc
    except RecursionError as exc:
        raise FormulaEvaluationError("expression is nested too deeply") from exc


# ── Evaluation ───────────────────────────────────────────────────


def _parse_number(text: str) -> int | float:
    """Parse numeric text; long integers become floats like any double."""
    if _INT_RE.fullmatch(text) and len(text.lstrip("+-")) <= _MAX_INT_DIGITS:
        return _finite(int(text))
    try:
        result = float(text)
    except ValueError:
        raise FormulaEvaluationError(f"not a number: {text!r}") from None
    if math.isnan(result):
        raise FormulaEvaluationError(f"not a number: {text!r}")
    return _finite(result)


def _to_number(value: Value) -> int | float:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    text = value.strip()
    if not text:
        return 0
    return _parse_number(text)


def _to_text(value: Value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    return value


def _finite(value: int | float) -> int | float:
    if isinstance(value, int) and abs(value) > _MAX_SAFE_INT:
        try:
            value = float(value)
        except OverflowError:
            raise FormulaEvaluationError("result is not a finite number") from None
    if isinstance(value, float) and not math.isfinite(value):
        raise FormulaEvaluationError("result is not a finite number")
    return value


def _compare(left: Value, right: Value) -> tuple[Value, Value]:
    if isinstance(left, str) and isinstance(right, str):
        return left, right
    return _to_number(left), _to_number(right)


def _loose_equal(left: Value, right: Value) -> bool:
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    return _to_number(left) == _to_number(right)


def _strict_equal(left: Value, right: Value) -> bool:
    if isinstance(left, str) or isinstance(right, str):
        return isinstance(left, str) and isinstance(right, str) and left == right
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    return left == right


def _unquote(raw: str) -> str:
    return _ESCAPE_RE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(1)), raw[1:-1])


def _eval(node: Tree | Token) -> Value:
    if isinstance(node, Token):
        raise FormulaEvaluationError(f"unexpected token {node!s}")

    rule = node.data

    if rule == "number":
        return _parse_number(str(node.children[0]))
    if rule == "string":
        return _unquote(str(node.children[0]))

    if rule in ("neg", "pos"):
        operand = _to_number(_eval(node.children[0]))
        return -operand if rule == "neg" else operand

    left = _eval(node.children[0])
    right = _eval(node.children[1])

    if rule == "add":
        if isinstance(left, str) or isinstance(right, str):
            return _to_text(left) + _to_text(right)
        return _finite(_to_number(left) + _to_number(right))
    if rule == "sub":
        return _finite(_to_number(left) - _to_number(right))
    if rule == "mul":
        return _finite(_to_number(left) * _to_number(right))
    if rule == "div":
        divisor = _to_number(right)
        if divisor == 0:
            raise FormulaEvaluationError("division by zero")
        return _finite(_to_number(left) / divisor)

    if rule == "lt":
        a, b = _compare(left, right)
        return a < b  # type: ignore[operator]
    if rule == "gt":
        a, b = _compare(left, right)
        return a > b  # type: ignore[operator]
    if rule == "le":
        a, b = _compare(left, right)
        return a <= b  # type: ignore[operator]
    if rule == "ge":
        a, b = _compare(left, right)
        return a >= b  # type: ignore[operator]
    if rule == "eq":
        return _loose_equal(left, right)
    if rule == "ne":
        return not _loose_equal(left, right)
    if rule == "strict_eq":
        return _strict_equal(left, right)
    if rule == "strict_ne":
        return not _strict_equal(left, right)

    raise FormulaEvaluationError(f"unknown node type: {rule}")


def _normalize(value: Value) -> Value:
    if isinstance(value, float) and value.is_integer() and abs(value) <= _MAX_SAFE_INT:
        return int(value)
    return value


def evaluate_strict(formula: str, row: Sequence[Scalar]) -> Value:
    """Evaluate *formula* against *row*, raising on failure.

    Raises:
        FormulaEvaluationError: On syntax errors, non-numeric operands,
            division by zero or non-finite results.
    """
    try:
        tree = parse_expression(substitute(formula, row))
        return _normalize(_eval(tree))
    except RecursionError as exc:
        raise FormulaEvaluationError("expression is nested too deeply") from exc
    except OverflowError as exc:
        raise FormulaEvaluationError("result is not a finite number") from exc
    except ValueError as exc:
        # int/str conversion limits on oversized values
        raise FormulaEvaluationError(str(exc)) from exc


def evaluate(formula: str, row: Sequence[Scalar]) -> CellValue:
    """Evaluate *formula* against *row*; failures yield :data:`ERROR`."""
    try:
        return evaluate_strict(formula, row)
    except FormulaEvaluationError as exc:
        logger.debug("formula %r failed on row %r: %s", formula, row, exc)
        return ERROR
