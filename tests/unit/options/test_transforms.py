# tests/unit/options/test_transforms.py
"""Tests for row transforms and option mapping."""

from typing import Any

import pytest

from trackerflow.contracts.dynamic_options import (
    FilterTransform,
    FlattenPathTransform,
    LimitTransform,
    MapFieldsTransform,
    OutputMapping,
    SortTransform,
    UniqueTransform,
)
from trackerflow.contracts.errors import DefinitionError
from trackerflow.contracts.tracker import TrackerSchema
from trackerflow.options.transforms import (
    apply_filter,
    apply_flatten_path,
    apply_limit,
    apply_map_fields,
    apply_sort,
    apply_transforms,
    apply_unique,
    layout_rows,
    map_rows_to_options,
    normalize_rows,
)

ROWS: list[dict[str, Any]] = [
    {"code": "usd", "rate": "1.0", "region": "NA"},
    {"code": "EUR", "rate": 0.9, "region": "EU"},
    {"code": "GBP", "rate": "n/a", "region": "EU"},
]


class TestNormalizeRows:
    def test_scalars_are_wrapped(self) -> None:
        assert normalize_rows(["a", {"b": 1}]) == [{"value": "a"}, {"b": 1}]

    def test_non_list_is_empty(self) -> None:
        assert normalize_rows({"items": []}) == []


class TestFilter:
    def test_and_predicates(self) -> None:
        spec = FilterTransform.from_dict(
            {"kind": "filter", "predicates": [{"field": "region", "op": "eq", "value": "EU"}, {"field": "rate", "op": "lt", "value": 1}]}
        )
        assert [row["code"] for row in apply_filter(ROWS, spec, {}, {})] == ["EUR"]

    def test_or_predicates(self) -> None:
        spec = FilterTransform.from_dict(
            {
                "kind": "filter",
                "mode": "or",
                "predicates": [{"field": "code", "op": "eq", "value": "usd"}, {"field": "code", "op": "eq", "value": "GBP"}],
            }
        )
        assert [row["code"] for row in apply_filter(ROWS, spec, {}, {})] == ["usd", "GBP"]

    def test_value_from_arg_and_context(self) -> None:
        by_arg = FilterTransform.from_dict({"kind": "filter", "predicates": [{"field": "region", "op": "eq", "valueFromArg": "region"}]})
        assert len(apply_filter(ROWS, by_arg, {"region": "EU"}, {})) == 2
        by_context = FilterTransform.from_dict(
            {"kind": "filter", "predicates": [{"field": "region", "op": "eq", "valueFromContext": "runtime.currentRow.region"}]}
        )
        context = {"runtime": {"currentRow": {"region": "NA"}}}
        assert [row["code"] for row in apply_filter(ROWS, by_context, {}, context)] == ["usd"]

    def test_expression_filter(self) -> None:
        spec = FilterTransform.from_dict(
            {"kind": "filter", "expr": {"op": "gt", "left": {"op": "field", "fieldId": "rate"}, "right": {"op": "const", "value": 0.95}}}
        )
        assert [row["code"] for row in apply_filter(ROWS, spec, {}, {})] == ["usd"]

    def test_no_predicates_keeps_everything(self) -> None:
        assert apply_filter(ROWS, FilterTransform.from_dict({"kind": "filter"}), {}, {}) == ROWS


class TestReshape:
    def test_map_fields_does_not_mutate_input(self) -> None:
        spec = MapFieldsTransform.from_dict(
            {"kind": "map_fields", "mappings": {"label": "code", "source": {"const": "fx"}, "base": {"fromArg": "base"}}}
        )
        mapped = apply_map_fields(ROWS[:1], spec, {"base": "USD"}, {})
        assert mapped == [{**ROWS[0], "label": "usd", "source": "fx", "base": "USD"}]
        assert "label" not in ROWS[0]

    def test_unique_first_wins(self) -> None:
        rows = [{"code": "USD", "n": 1}, {"code": "EUR"}, {"code": "USD", "n": 2}]
        assert apply_unique(rows, UniqueTransform(kind="unique", by="code")) == [{"code": "USD", "n": 1}, {"code": "EUR"}]

    def test_string_sort_is_case_insensitive(self) -> None:
        spec = SortTransform(kind="sort", by="code")
        assert [row["code"] for row in apply_sort(ROWS, spec)] == ["EUR", "GBP", "usd"]

    def test_number_sort_puts_unparseable_first(self) -> None:
        spec = SortTransform(kind="sort", by="rate", value_type="number", direction="asc")
        assert [row["code"] for row in apply_sort(ROWS, spec)] == ["GBP", "EUR", "usd"]

    def test_descending_sort(self) -> None:
        spec = SortTransform(kind="sort", by="rate", value_type="number", direction="desc")
        assert [row["code"] for row in apply_sort(ROWS, spec)] == ["usd", "EUR", "GBP"]

    def test_flatten_object_path(self) -> None:
        spec = FlattenPathTransform(kind="flatten_path", path="data.items")
        assert apply_flatten_path({"data": {"items": ["a", {"b": 1}]}}, spec) == [{"value": "a"}, {"b": 1}]

    def test_flatten_rows(self) -> None:
        spec = FlattenPathTransform(kind="flatten_path", path="tags")
        rows = [{"id": 1, "tags": ["x", "y"]}, {"id": 2}]
        assert apply_flatten_path(rows, spec) == [
            {"id": 1, "tags": "x"},
            {"id": 1, "tags": "y"},
            {"id": 2},
        ]

    def test_pipeline_passes_rows_without_flatten_path(self) -> None:
        specs = [SortTransform(kind="sort", by="code"), FlattenPathTransform(kind="flatten_path", path="missing")]
        assert len(apply_transforms(ROWS, specs, {}, {})) == 3

    def test_limit_keeps_leading_rows(self) -> None:
        spec = LimitTransform.from_dict({"kind": "limit", "count": 2})
        assert [row["code"] for row in apply_limit(ROWS, spec)] == ["usd", "EUR"]

    @pytest.mark.parametrize("count", [0, -1])
    def test_limit_count_must_be_positive(self, count: int) -> None:
        with pytest.raises(DefinitionError):
            LimitTransform.from_dict({"kind": "limit", "count": count})


class TestMapRowsToOptions:
    def test_ids_default_to_stringified_value(self) -> None:
        mapping = OutputMapping.from_dict({"label": "name", "value": "rate"})
        options = map_rows_to_options([{"name": "Euro", "rate": 1.0}], mapping, {}, {})
        assert options[0].to_dict() == {"label": "Euro", "value": 1.0, "id": "1"}

    def test_rows_without_label_or_value_are_skipped(self) -> None:
        mapping = OutputMapping.from_dict({"label": "name", "value": "code"})
        options = map_rows_to_options([{"name": "Euro"}, {"code": "USD"}, {"name": "Pound", "code": "GBP"}], mapping, {}, {})
        assert [option.value for option in options] == ["GBP"]

    def test_explicit_id_and_extra(self) -> None:
        mapping = OutputMapping.from_dict({"label": "name", "value": "code", "id": "num", "extra": {"region": "region"}})
        [option] = map_rows_to_options([{"name": "Euro", "code": "EUR", "num": 978, "region": "EU"}], mapping, {}, {})
        assert option.id == "978"
        assert option.extra == {"region": "EU"}


class TestLayoutRows:
    def test_shared_tab_and_hidden_fields_excluded(self, tracker: TrackerSchema) -> None:
        paths = [row["path"] for row in layout_rows(tracker)]
        assert paths == [
            "main_grid.amount",
            "main_grid.rate",
            "main_grid.tax",
            "main_grid.total",
            "main_grid.status",
            "main_grid.title",
        ]

    def test_include_hidden_and_shared(self, tracker: TrackerSchema) -> None:
        rows = layout_rows(tracker, include_hidden=True, exclude_shared_tab=False)
        assert len(rows) == 8
        assert rows[-1]["tabId"] == "shared_tab"
