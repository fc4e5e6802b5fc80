# src/trackerflow/options/builtins.py
"""Builtin option functions.

The table is closed: builtins are answered straight from the tracker
document, never touch ``dynamicOptions`` definitions and never need the
network.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TypeAlias
from types import MappingProxyType

from trackerflow.contracts.enums import CompareOp
from trackerflow.contracts.results import OptionItem
from trackerflow.contracts.tracker import SHARED_TAB_ID, TrackerSchema

BuiltinFunction: TypeAlias = Callable[[TrackerSchema], list[OptionItem]]

ALL_FIELD_PATHS = "all_field_paths"
ALL_FIELD_PATHS_INCLUDING_SHARED = "all_field_paths_including_shared"
ALL_GRIDS = "all_grids"
ALL_OPERATORS = "all_operators"
ALL_ACTIONS = "all_actions"
ALL_RULE_SET_VALUES = "all_rule_set_values"

_ACTIONS = ("isHidden", "isRequired", "isDisabled")


def _field_paths(tracker: TrackerSchema, *, exclude_shared_tab: bool) -> list[OptionItem]:
    shared_sections = {section.id for section in tracker.sections if section.tab_id == SHARED_TAB_ID}
    options: list[OptionItem] = []
    for node in tracker.layout_nodes:
        grid = tracker.grids_by_id.get(node.grid_id)
        field = tracker.fields_by_id.get(node.field_id)
        if grid is None or field is None or field.is_hidden:
            continue
        if exclude_shared_tab and grid.section_id in shared_sections:
            continue
        path = f"{node.grid_id}.{node.field_id}"
        options.append(OptionItem(label=f"{grid.name or grid.id} → {field.label}", value=path, id=path))
    return options


def all_field_paths(tracker: TrackerSchema) -> list[OptionItem]:
    """Every visible ``gridId.fieldId`` in the layout, Shared tab excluded."""
    return _field_paths(tracker, exclude_shared_tab=True)


def all_field_paths_including_shared(tracker: TrackerSchema) -> list[OptionItem]:
    return _field_paths(tracker, exclude_shared_tab=False)


def all_grids(tracker: TrackerSchema) -> list[OptionItem]:
    return [OptionItem(label=grid.name or grid.id, value=grid.id, id=grid.id) for grid in tracker.grids]


def all_operators(tracker: TrackerSchema) -> list[OptionItem]:
    return [OptionItem(label=op.value, value=op.value, id=op.value) for op in CompareOp]


def all_actions(tracker: TrackerSchema) -> list[OptionItem]:
    return [OptionItem(label=action, value=action, id=action) for action in _ACTIONS]


def all_rule_set_values(tracker: TrackerSchema) -> list[OptionItem]:
    return [
        OptionItem(label="True", value="true", id="true"),
        OptionItem(label="False", value="false", id="false"),
    ]


BUILTIN_FUNCTIONS: Mapping[str, BuiltinFunction] = MappingProxyType(
    {
        ALL_FIELD_PATHS: all_field_paths,
        ALL_FIELD_PATHS_INCLUDING_SHARED: all_field_paths_including_shared,
        ALL_GRIDS: all_grids,
        ALL_OPERATORS: all_operators,
        ALL_ACTIONS: all_actions,
        ALL_RULE_SET_VALUES: all_rule_set_values,
    }
)


def is_builtin(function_id: str) -> bool:
    return function_id in BUILTIN_FUNCTIONS


def resolve_builtin(function_id: str, tracker: TrackerSchema) -> list[OptionItem]:
    """Options of a builtin function; unknown ids yield no options."""
    function = BUILTIN_FUNCTIONS.get(function_id)
    if function is None:
        return []
    return function(tracker)
