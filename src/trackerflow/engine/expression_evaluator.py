# src/trackerflow/engine/expression_evaluator.py
"""Total evaluator for JSON expression nodes.

evaluate() never raises for any input. Malformed nodes, unknown operators
and missing operands yield None (numeric operators yield NaN), so a single
bad rule degrades to an empty value instead of breaking row computation.

Numeric coercion mirrors the authoring layer's loose typing:

    None            -> 0
    int / float     -> itself (bool excluded)
    ""  / "   "     -> 0
    "12.5"          -> 12.5
    "1e3" / "0x10"   -> 1000.0 / 16.0
    "Infinity"      -> inf (exact spelling only; "inf", "1_000" are NaN)
    anything else   -> NaN
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any

from trackerflow.contracts.enums import ExprOp
from trackerflow.contracts.expressions import (
    binary_operands,
    canonical_op,
    is_expr_node,
    variadic_operands,
)
from trackerflow.core.paths import to_plain_string

NAN = float("nan")

_REGEX_FLAGS: Mapping[str, re.RegexFlag] = MappingProxyType(
    {
        "i": re.IGNORECASE,
        "m": re.MULTILINE,
        "s": re.DOTALL,
    }
)


def regex_flags(raw_flags: Any) -> int:
    """Translate JS-style flag letters; unknown letters are ignored."""
    flags = 0
    if isinstance(raw_flags, str):
        for flag in raw_flags:
            flags |= _REGEX_FLAGS.get(flag, 0)
    return flags


# Decimal literal grammar of the authoring layer's Number(): optional sign,
# digits with an optional fraction or a bare fraction, optional exponent.
# Underscore separators and "inf"/"nan" spellings are not numbers there.
_DECIMAL_PATTERN = re.compile(r"[+-]?(?:Infinity|(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?)")
_PREFIXED_PATTERN = re.compile(r"0(?:[xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)")


def parse_numeric_string(text: str) -> float:
    """Parse a string the way the authoring layer's Number() does.

    Surrounding whitespace is ignored and a blank string is 0. Hex, octal and
    binary literals take a 0x/0o/0b prefix and no sign. Anything else that is
    not a decimal literal is NaN.
    """
    stripped = text.strip()
    if not stripped:
        return 0.0
    if _DECIMAL_PATTERN.fullmatch(stripped):
        return float(stripped)
    if _PREFIXED_PATTERN.fullmatch(stripped):
        return float(int(stripped, 0))
    return NAN


def is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def is_nan(value: Any) -> bool:
    return isinstance(value, float) and math.isnan(value)


def to_number(value: Any) -> float | int:
    """Coerce a row value to a number (NaN when not numeric)."""
    if value is None:
        return 0
    if is_number(value):
        return value
    if isinstance(value, str):
        if not value.strip():
            return 0
        return parse_numeric_string(value)
    return NAN


def is_truthy(value: Any) -> bool:
    """Truthiness of a computed value. NaN is falsy; containers are truthy."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if is_number(value):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ""
    return True


def strict_equals(left: Any, right: Any) -> bool:
    """Same-value comparison used by ``eq``/``neq``.

    Numbers compare by value across int/float (NaN equals NaN); every other
    type must match exactly and compare structurally.
    """
    if is_number(left) and is_number(right):
        if is_nan(left) and is_nan(right):
            return True
        return bool(left == right)
    if is_number(left) or is_number(right):
        return False
    if type(left) is not type(right):
        return False
    return bool(left == right)


def _compare(node: Mapping[str, Any], row_values: Mapping[str, Any], check: Callable[[float, float], bool]) -> bool:
    pair = binary_operands(node)
    if pair is None:
        return False
    left = to_number(evaluate(pair[0], row_values))
    right = to_number(evaluate(pair[1], row_values))
    if math.isnan(left) or math.isnan(right):
        return False
    return check(left, right)


def _eval_const(node: Mapping[str, Any], row_values: Mapping[str, Any]) -> Any:
    return node.get("value")


def _eval_field(node: Mapping[str, Any], row_values: Mapping[str, Any]) -> Any:
    field_id = node.get("fieldId")
    if not isinstance(field_id, str):
        return None
    return row_values.get(field_id)


def _eval_add(node: Mapping[str, Any], row_values: Mapping[str, Any]) -> Any:
    operands = variadic_operands(node)
    if not operands:
        return NAN
    total: float | int = 0
    for operand in operands:
        total += to_number(evaluate(operand, row_values))
    return total


def _eval_mul(node: Mapping[str, Any], row_values: Mapping[str, Any]) -> Any:
    operands = variadic_operands(node)
    if not operands:
        return NAN
    product: float | int = 1
    for operand in operands:
        product *= to_number(evaluate(operand, row_values))
    return product


def _eval_sub(node: Mapping[str, Any], row_values: Mapping[str, Any]) -> Any:
    pair = binary_operands(node)
    if pair is None:
        return NAN
    return to_number(evaluate(pair[0], row_values)) - to_number(evaluate(pair[1], row_values))


def _eval_div(node: Mapping[str, Any], row_values: Mapping[str, Any]) -> Any:
    pair = binary_operands(node)
    if pair is None:
        return NAN
    numerator = to_number(evaluate(pair[0], row_values))
    denominator = to_number(evaluate(pair[1], row_values))
    if denominator == 0 or math.isnan(denominator):
        return NAN
    return numerator / denominator


def _eval_eq(node: Mapping[str, Any], row_values: Mapping[str, Any]) -> Any:
    pair = binary_operands(node)
    if pair is None:
        return None
    return strict_equals(evaluate(pair[0], row_values), evaluate(pair[1], row_values))


def _eval_neq(node: Mapping[str, Any], row_values: Mapping[str, Any]) -> Any:
    pair = binary_operands(node)
    if pair is None:
        return None
    return not strict_equals(evaluate(pair[0], row_values), evaluate(pair[1], row_values))


def _eval_and(node: Mapping[str, Any], row_values: Mapping[str, Any]) -> Any:
    args = node.get("args")
    if not isinstance(args, list) or not args:
        return False
    return all(is_truthy(evaluate(arg, row_values)) for arg in args)


def _eval_or(node: Mapping[str, Any], row_values: Mapping[str, Any]) -> Any:
    args = node.get("args")
    if not isinstance(args, list) or not args:
        return False
    return any(is_truthy(evaluate(arg, row_values)) for arg in args)


def _eval_not(node: Mapping[str, Any], row_values: Mapping[str, Any]) -> Any:
    arg = node.get("arg")
    if not is_expr_node(arg):
        return None
    return not is_truthy(evaluate(arg, row_values))


def _eval_if(node: Mapping[str, Any], row_values: Mapping[str, Any]) -> Any:
    cond, then, otherwise = node.get("cond"), node.get("then"), node.get("else")
    if not (is_expr_node(cond) and is_expr_node(then) and is_expr_node(otherwise)):
        return None
    if is_truthy(evaluate(cond, row_values)):
        return evaluate(then, row_values)
    return evaluate(otherwise, row_values)


def _eval_regex(node: Mapping[str, Any], row_values: Mapping[str, Any]) -> Any:
    value_node = node.get("value")
    pattern = node.get("pattern")
    if not is_expr_node(value_node) or not isinstance(pattern, str):
        return None
    flags = regex_flags(node.get("flags"))
    value = evaluate(value_node, row_values)
    text = to_plain_string(value)
    try:
        return re.search(pattern, text, flags) is not None
    except re.error:
        return False


_EVALUATORS: Mapping[ExprOp, Callable[[Mapping[str, Any], Mapping[str, Any]], Any]] = MappingProxyType(
    {
        ExprOp.CONST: _eval_const,
        ExprOp.FIELD: _eval_field,
        ExprOp.ADD: _eval_add,
        ExprOp.SUB: _eval_sub,
        ExprOp.MUL: _eval_mul,
        ExprOp.DIV: _eval_div,
        ExprOp.EQ: _eval_eq,
        ExprOp.NEQ: _eval_neq,
        ExprOp.GT: lambda node, values: _compare(node, values, lambda a, b: a > b),
        ExprOp.GTE: lambda node, values: _compare(node, values, lambda a, b: a >= b),
        ExprOp.LT: lambda node, values: _compare(node, values, lambda a, b: a < b),
        ExprOp.LTE: lambda node, values: _compare(node, values, lambda a, b: a <= b),
        ExprOp.AND: _eval_and,
        ExprOp.OR: _eval_or,
        ExprOp.NOT: _eval_not,
        ExprOp.IF: _eval_if,
        ExprOp.REGEX: _eval_regex,
    }
)

# Every operator must have an evaluator
assert set(_EVALUATORS) == set(ExprOp), "expression evaluator table is incomplete"


def evaluate(node: Any, row_values: Mapping[str, Any]) -> Any:
    """Evaluate an expression node against a row-value map.

    Args:
        node: Expression node (any JSON value is accepted)
        row_values: Field values keyed by bare id and by ``gridId.fieldId``

    Returns:
        The computed value; None for malformed nodes or unknown operators
    """
    if not is_expr_node(node):
        return None
    op = canonical_op(node["op"])
    if op is None:
        return None
    try:
        return _EVALUATORS[op](node, row_values)
    except (RecursionError, OverflowError):
        return None
