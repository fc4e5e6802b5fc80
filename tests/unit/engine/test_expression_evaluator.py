# tests/unit/engine/test_expression_evaluator.py
"""Tests for the total expression evaluator.

evaluate() must never raise: malformed nodes and unknown operators yield
None, numeric operators yield NaN for missing operands, and comparison
operators are False whenever either side is not a number.
"""

import math
from typing import Any

import pytest

from trackerflow.engine.expression_evaluator import evaluate, is_truthy, strict_equals, to_number


def f(field_id: str) -> dict[str, Any]:
    return {"op": "field", "fieldId": field_id}


def c(value: Any) -> dict[str, Any]:
    return {"op": "const", "value": value}


class TestToNumber:
    """Loose numeric coercion of row values."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, 0),
            ("", 0),
            ("   ", 0),
            ("12.5", 12.5),
            (" 3 ", 3.0),
            (7, 7),
            (2.5, 2.5),
            ("1e3", 1000.0),
            ("-2.5E-1", -0.25),
            (".5", 0.5),
            ("5.", 5.0),
            ("+4", 4.0),
            ("0x10", 16.0),
            ("0o17", 15.0),
            ("0b101", 5.0),
            ("Infinity", math.inf),
            ("-Infinity", -math.inf),
        ],
    )
    def test_numeric_values(self, value: Any, expected: float) -> None:
        assert to_number(value) == expected

    @pytest.mark.parametrize(
        "value",
        ["abc", True, False, [], {}, "1,000", "1_000", "inf", "infinity", "nan", "-0x10", "0x", "1e", "."],
    )
    def test_non_numeric_values_are_nan(self, value: Any) -> None:
        assert math.isnan(to_number(value))


class TestArithmetic:
    """add/sub/mul/div over row values."""

    def test_add_is_variadic(self) -> None:
        node = {"op": "add", "args": [f("a"), f("b"), c(3)]}
        assert evaluate(node, {"a": 1, "b": "2"}) == 6

    def test_add_accepts_legacy_left_right(self) -> None:
        node = {"op": "add", "left": f("a"), "right": c(4)}
        assert evaluate(node, {"a": 1}) == 5

    def test_missing_fields_count_as_zero(self) -> None:
        node = {"op": "add", "args": [f("a"), f("missing")]}
        assert evaluate(node, {"a": 5}) == 5

    def test_mul_with_non_numeric_operand_is_nan(self) -> None:
        node = {"op": "mul", "args": [f("a"), c("abc")]}
        assert math.isnan(evaluate(node, {"a": 2}))

    def test_sub_accepts_args_pair(self) -> None:
        node = {"op": "sub", "args": [c(10), c(4)]}
        assert evaluate(node, {}) == 6

    def test_div_by_zero_is_nan(self) -> None:
        node = {"op": "div", "left": c(1), "right": c(0)}
        assert math.isnan(evaluate(node, {}))

    def test_div(self) -> None:
        node = {"op": "div", "left": c(9), "right": c(3)}
        assert evaluate(node, {}) == 3

    def test_empty_add_is_nan(self) -> None:
        assert math.isnan(evaluate({"op": "add", "args": []}, {}))


class TestComparisons:
    """eq/neq are strict; ordering compares numbers only."""

    def test_symbolic_alias_is_accepted(self) -> None:
        node = {"op": ">=", "left": f("qty"), "right": c(10)}
        assert evaluate(node, {"qty": 10}) is True

    def test_ordering_coerces_numeric_strings(self) -> None:
        node = {"op": "lt", "left": c("2"), "right": c(10)}
        assert evaluate(node, {}) is True

    def test_ordering_with_nan_is_false(self) -> None:
        node = {"op": "gt", "left": c("abc"), "right": c(0)}
        assert evaluate(node, {}) is False

    def test_eq_distinguishes_types(self) -> None:
        node = {"op": "eq", "left": c("1"), "right": c(1)}
        assert evaluate(node, {}) is False

    def test_eq_int_and_float(self) -> None:
        node = {"op": "==", "left": c(1), "right": c(1.0)}
        assert evaluate(node, {}) is True

    def test_neq(self) -> None:
        node = {"op": "!=", "left": f("status"), "right": c("done")}
        assert evaluate(node, {"status": "open"}) is True

    def test_strict_equals_nan_equals_nan(self) -> None:
        assert strict_equals(float("nan"), float("nan")) is True


class TestLogic:
    """and/or/not/if."""

    def test_and_or(self) -> None:
        yes, no = c(True), c(False)
        assert evaluate({"op": "and", "args": [yes, yes]}, {}) is True
        assert evaluate({"op": "and", "args": [yes, no]}, {}) is False
        assert evaluate({"op": "or", "args": [no, yes]}, {}) is True

    def test_not(self) -> None:
        assert evaluate({"op": "not", "arg": c(0)}, {}) is True

    def test_if_picks_branch(self) -> None:
        node = {"op": "if", "cond": {"op": "gt", "left": f("qty"), "right": c(5)}, "then": c("bulk"), "else": c("single")}
        assert evaluate(node, {"qty": 6}) == "bulk"
        assert evaluate(node, {"qty": 1}) == "single"

    def test_if_missing_branch_is_none(self) -> None:
        assert evaluate({"op": "if", "cond": c(True), "then": c(1)}, {}) is None

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(None, False), (0, False), (float("nan"), False), ("", False), ("x", True), ([], True), (1, True)],
    )
    def test_truthiness(self, value: Any, expected: bool) -> None:
        assert is_truthy(value) is expected


class TestRegex:
    """regex matches the stringified value."""

    def test_match(self) -> None:
        node = {"op": "regex", "value": f("code"), "pattern": "^[A-Z]{3}$"}
        assert evaluate(node, {"code": "EUR"}) is True
        assert evaluate(node, {"code": "eur"}) is False

    def test_ignore_case_flag(self) -> None:
        node = {"op": "regex", "value": f("code"), "pattern": "^[A-Z]{3}$", "flags": "i"}
        assert evaluate(node, {"code": "eur"}) is True

    def test_invalid_pattern_is_false(self) -> None:
        node = {"op": "regex", "value": c("x"), "pattern": "("}
        assert evaluate(node, {}) is False


class TestMalformedInput:
    """evaluate() never raises."""

    @pytest.mark.parametrize(
        "node",
        [
            None,
            42,
            "add",
            {},
            {"op": 5},
            {"op": "unknown"},
            {"op": "field"},
            {"op": "eq"},
            {"op": "regex", "value": c("x")},
        ],
    )
    def test_malformed_nodes_yield_none(self, node: Any) -> None:
        assert evaluate(node, {}) is None

    def test_field_reads_qualified_key(self) -> None:
        assert evaluate(f("main_grid.amount"), {"main_grid.amount": 3}) == 3
