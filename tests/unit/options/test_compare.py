# tests/unit/options/test_compare.py
"""Tests for filter predicate comparison."""

from typing import Any

import pytest

from trackerflow.contracts.enums import CompareOp
from trackerflow.options.compare import compare_values


class TestCompareValues:
    @pytest.mark.parametrize(
        ("actual", "op", "expected", "result"),
        [
            (3, "eq", "3", True),
            ("EUR", "eq", "eur", False),
            (None, "eq", "", True),
            (3, "neq", 4, True),
            ("10", "gt", 9, True),
            ("abc", "gt", 0, False),
            (float("inf"), "gte", 1, False),
            (2, "lte", "2", True),
            ("USD", "in", ["EUR", "USD"], True),
            ("USD", "in", "USD", True),
            ("JPY", "not_in", ["EUR", "USD"], True),
            ("open items", "contains", "items", True),
            (["a", "b"], "contains", "b", True),
            (42, "contains", 4, False),
            ("", "is_empty", None, True),
            ([], "not_empty", None, False),
            ("main_grid.amount", "starts_with", "main_grid.", True),
            ("main_grid.amount", "ends_with", "amount", True),
        ],
    )
    def test_operators(self, actual: Any, op: str, expected: Any, result: bool) -> None:
        assert compare_values(actual, op, expected) is result

    def test_enum_members_are_accepted(self) -> None:
        assert compare_values(1, CompareOp.LT, 2) is True

    def test_unknown_operator_never_matches(self) -> None:
        assert compare_values(1, "between", [0, 2]) is False
