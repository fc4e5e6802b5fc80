# src/trackerflow/options/transforms.py
"""Row transforms and output mapping shared by flat pipelines and graphs.

Rows are plain dicts. Every transform returns a new list and never mutates
its input rows, so a source's rows can be shared between pipelines.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any, TypeAlias

from trackerflow.contracts.dynamic_options import (
    ArgSelector,
    ConstSelector,
    ContextSelector,
    FilterPredicate,
    FilterTransform,
    FlattenPathTransform,
    LimitTransform,
    MapFieldsTransform,
    OutputMapping,
    SortTransform,
    UniqueTransform,
    ValueSelector,
)
from trackerflow.contracts.enums import TransformKind
from trackerflow.contracts.results import OptionItem
from trackerflow.contracts.tracker import SHARED_TAB_ID, TrackerSchema
from trackerflow.core.paths import get_by_path, is_record, to_plain_string, to_stable_key
from trackerflow.engine.expression_evaluator import evaluate, is_truthy, to_number
from trackerflow.options.compare import compare_values

Row: TypeAlias = dict[str, Any]


def normalize_rows(value: Any) -> list[Row]:
    """Coerce a node value to rows: non-lists are empty, scalars become ``{"value": x}``."""
    if not isinstance(value, list):
        return []
    return [item if is_record(item) else {"value": item} for item in value]


def read_selector(selector: ValueSelector, row: Mapping[str, Any], args: Mapping[str, Any], context: Any) -> Any:
    if isinstance(selector, str):
        return get_by_path(row, selector)
    if isinstance(selector, ConstSelector):
        return selector.const
    if isinstance(selector, ArgSelector):
        return args.get(selector.from_arg)
    if isinstance(selector, ContextSelector):
        return get_by_path(context, selector.from_context)
    return None


def _expected_value(predicate: FilterPredicate, args: Mapping[str, Any], context: Any) -> Any:
    if predicate.value_from_arg:
        return args.get(predicate.value_from_arg)
    if predicate.value_from_context:
        return get_by_path(context, predicate.value_from_context)
    return predicate.value


def apply_filter(rows: list[Row], spec: FilterTransform, args: Mapping[str, Any], context: Any) -> list[Row]:
    """Keep rows matching the predicates, or the expression when one is set."""
    if spec.expr is not None:
        return [row for row in rows if is_truthy(evaluate(spec.expr, row))]
    if not spec.predicates:
        return list(rows)
    combine = any if spec.mode == "or" else all
    return [
        row
        for row in rows
        if combine(
            compare_values(get_by_path(row, predicate.field), predicate.op, _expected_value(predicate, args, context))
            for predicate in spec.predicates
        )
    ]


def apply_map_fields(rows: list[Row], spec: MapFieldsTransform, args: Mapping[str, Any], context: Any) -> list[Row]:
    mapped_rows = []
    for row in rows:
        mapped = dict(row)
        for key, selector in spec.mappings.items():
            mapped[key] = read_selector(selector, row, args, context)
        mapped_rows.append(mapped)
    return mapped_rows


def apply_unique(rows: list[Row], spec: UniqueTransform) -> list[Row]:
    """De-duplicate by the value at ``by``; the first occurrence wins."""
    seen: set[str] = set()
    unique: list[Row] = []
    for row in rows:
        key = to_stable_key(get_by_path(row, spec.by))
        if key in seen:
            continue
        seen.add(key)
        unique.append(row)
    return unique


def apply_sort(rows: list[Row], spec: SortTransform) -> list[Row]:
    """Stable sort by the value at ``by``.

    Numeric sorts coerce values (missing counts as 0) and order unparseable
    values before every number; string sorts are case-insensitive with a
    case-sensitive tie-break.
    """
    descending = spec.direction == "desc"
    if spec.value_type == "number":

        def number_key(row: Row) -> tuple[int, float]:
            number = to_number(get_by_path(row, spec.by))
            if math.isnan(number):
                return (0, 0.0)
            return (1, float(number))

        return sorted(rows, key=number_key, reverse=descending)

    def string_key(row: Row) -> tuple[str, str]:
        text = to_plain_string(get_by_path(row, spec.by))
        return (text.casefold(), text)

    return sorted(rows, key=string_key, reverse=descending)


def apply_limit(rows: list[Row], spec: LimitTransform) -> list[Row]:
    return rows[: spec.count]


def apply_flatten_path(value: Any, spec: FlattenPathTransform) -> list[Row]:
    """Expand a nested list into rows.

    For a list of rows, each row whose value at ``path`` is a list is
    replaced by one row per child (dict children are merged over the
    parent, scalars stored under the path's last segment); other rows pass
    through. For any other value, the list at ``path`` becomes the rows.
    """
    if isinstance(value, list):
        key = spec.path.split(".")[-1] or "value"
        flattened: list[Row] = []
        for row in normalize_rows(value):
            children = get_by_path(row, spec.path)
            if not isinstance(children, list):
                flattened.append(row)
                continue
            for child in children:
                flattened.append({**row, **child} if is_record(child) else {**row, key: child})
        return flattened
    return normalize_rows(get_by_path(value, spec.path))


TransformHandler: TypeAlias = Callable[[Any, Any, Mapping[str, Any], Any], list[Row]]

_HANDLERS: Mapping[TransformKind, TransformHandler] = MappingProxyType(
    {
        TransformKind.FILTER: lambda value, spec, args, ctx: apply_filter(normalize_rows(value), spec, args, ctx),
        TransformKind.MAP_FIELDS: lambda value, spec, args, ctx: apply_map_fields(normalize_rows(value), spec, args, ctx),
        TransformKind.UNIQUE: lambda value, spec, args, ctx: apply_unique(normalize_rows(value), spec),
        TransformKind.SORT: lambda value, spec, args, ctx: apply_sort(normalize_rows(value), spec),
        TransformKind.LIMIT: lambda value, spec, args, ctx: apply_limit(normalize_rows(value), spec),
        TransformKind.FLATTEN_PATH: lambda value, spec, args, ctx: apply_flatten_path(value, spec),
    }
)

assert set(_HANDLERS) == set(TransformKind), "transform table is incomplete"


def apply_transform(value: Any, spec: Any, args: Mapping[str, Any], context: Any) -> list[Row]:
    """Apply one transform spec (any TransformSpec model) to a node value."""
    return _HANDLERS[TransformKind(spec.kind)](value, spec, args, context)


def apply_transforms(rows: list[Row], specs: list[Any], args: Mapping[str, Any], context: Any) -> list[Row]:
    current: list[Row] = list(rows)
    for spec in specs:
        current = apply_transform(current, spec, args, context)
    return current


def map_rows_to_options(rows: list[Row], mapping: OutputMapping, args: Mapping[str, Any], context: Any) -> list[OptionItem]:
    """Project rows onto option items; rows without a label or value are skipped."""
    options: list[OptionItem] = []
    for row in rows:
        label = read_selector(mapping.label, row, args, context)
        value = read_selector(mapping.value, row, args, context)
        if label is None or value is None:
            continue
        option_id = to_plain_string(value)
        if mapping.id is not None:
            raw_id = read_selector(mapping.id, row, args, context)
            if raw_id is not None:
                option_id = to_plain_string(raw_id)
        extra = None
        if mapping.extra:
            extra = {key: read_selector(selector, row, args, context) for key, selector in mapping.extra.items()}
        options.append(OptionItem(label=to_plain_string(label), value=value, id=option_id, extra=extra))
    return options


def layout_rows(tracker: TrackerSchema, *, include_hidden: bool = False, exclude_shared_tab: bool = True) -> list[Row]:
    """One row per placed field, or per defined field when there is no layout."""
    rows: list[Row] = []
    if not tracker.layout_nodes:
        for field in tracker.fields:
            if field.is_hidden and not include_hidden:
                continue
            rows.append(
                {
                    "fieldId": field.id,
                    "fieldLabel": field.ui.label,
                    "dataType": field.data_type,
                    "isHidden": field.is_hidden,
                }
            )
        return rows

    for node in tracker.layout_nodes:
        grid = tracker.grids_by_id.get(node.grid_id)
        field = tracker.fields_by_id.get(node.field_id)
        if grid is None or field is None:
            continue
        section = tracker.sections_by_id.get(grid.section_id) if grid.section_id else None
        if field.is_hidden and not include_hidden:
            continue
        if exclude_shared_tab and section is not None and section.tab_id == SHARED_TAB_ID:
            continue
        rows.append(
            {
                "gridId": grid.id,
                "gridName": grid.name,
                "sectionId": section.id if section else None,
                "tabId": section.tab_id if section else None,
                "fieldId": field.id,
                "fieldLabel": field.ui.label,
                "dataType": field.data_type,
                "path": f"{grid.id}.{field.id}",
                "isHidden": field.is_hidden,
            }
        )
    return rows
