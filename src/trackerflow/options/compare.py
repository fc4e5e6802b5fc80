# src/trackerflow/options/compare.py
"""Predicate comparison for filter transforms.

Comparisons are deliberately loose: equality also matches on the plain
string form (so ``"3"`` equals ``3``), and ordering operators only apply
when both sides parse as finite numbers.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any

from trackerflow.contracts.enums import CompareOp
from trackerflow.core.paths import to_plain_string
from trackerflow.engine.expression_evaluator import is_number
from trackerflow.engine.validation import is_empty


def _finite_number(value: Any) -> float | int | None:
    if is_number(value):
        return value if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def _loose_equals(left: Any, right: Any) -> bool:
    if left is right or (type(left) is type(right) and left == right):
        return True
    return to_plain_string(left) == to_plain_string(right)


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, list):
        return expected in actual
    if isinstance(actual, str):
        return to_plain_string(expected) in actual
    return False


def _in_list(actual: Any, expected: Any) -> bool:
    candidates = expected if isinstance(expected, list) else [expected]
    return any(_loose_equals(item, actual) for item in candidates)


def _ordering(check: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def compare(actual: Any, expected: Any) -> bool:
        left = _finite_number(actual)
        right = _finite_number(expected)
        if left is None or right is None:
            return False
        return check(left, right)

    return compare


_COMPARATORS: Mapping[CompareOp, Callable[[Any, Any], bool]] = MappingProxyType(
    {
        CompareOp.EQ: _loose_equals,
        CompareOp.NEQ: lambda actual, expected: not _loose_equals(actual, expected),
        CompareOp.GT: _ordering(lambda a, b: a > b),
        CompareOp.GTE: _ordering(lambda a, b: a >= b),
        CompareOp.LT: _ordering(lambda a, b: a < b),
        CompareOp.LTE: _ordering(lambda a, b: a <= b),
        CompareOp.IN: _in_list,
        CompareOp.NOT_IN: lambda actual, expected: not _in_list(actual, expected),
        CompareOp.CONTAINS: _contains,
        CompareOp.NOT_CONTAINS: lambda actual, expected: not _contains(actual, expected),
        CompareOp.IS_EMPTY: lambda actual, _expected: is_empty(actual),
        CompareOp.NOT_EMPTY: lambda actual, _expected: not is_empty(actual),
        CompareOp.STARTS_WITH: lambda actual, expected: to_plain_string(actual).startswith(to_plain_string(expected)),
        CompareOp.ENDS_WITH: lambda actual, expected: to_plain_string(actual).endswith(to_plain_string(expected)),
    }
)

assert set(_COMPARATORS) == set(CompareOp), "comparison table is incomplete"


def compare_values(actual: Any, op: CompareOp | str, expected: Any) -> bool:
    """Does ``actual`` satisfy ``op`` against ``expected``? Unknown ops never match."""
    try:
        compare_op = CompareOp(op)
    except ValueError:
        return False
    return _COMPARATORS[compare_op](actual, expected)
