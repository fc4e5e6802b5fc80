# src/trackerflow/options/context.py
"""Execution context handed to dynamic-options functions.

The context bundles the tracker document, the materialized grid rows and
the runtime position of the field being rendered. Definitions can read
from it by dotted path (``{"fromContext": "runtime.currentRow.status"}``
or ``{{context.runtime.currentGridId}}``); lookup() exposes it in the same
camelCase shape the authoring layer uses.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any

from trackerflow.contracts.dynamic_options import Connector, FunctionDefinition
from trackerflow.contracts.tracker import TrackerSchema
from trackerflow.core.canonical import signature


@dataclass(frozen=True, slots=True)
class RuntimeContext:
    """Where the options are being rendered."""

    current_grid_id: str | None = None
    current_field_id: str | None = None
    row_index: int | None = None
    current_row: Mapping[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "currentGridId": self.current_grid_id,
            "currentFieldId": self.current_field_id,
            "rowIndex": self.row_index,
            "currentRow": dict(self.current_row or {}),
        }


@dataclass(frozen=True)
class OptionsContext:
    """Tracker, grid rows and runtime position for one resolution."""

    tracker: TrackerSchema
    grid_data: Mapping[str, list[Any]] = field(default_factory=dict)
    runtime: RuntimeContext = field(default_factory=RuntimeContext)

    @property
    def functions(self) -> Mapping[str, FunctionDefinition]:
        return self.tracker.dynamic_options.functions

    @property
    def connectors(self) -> Mapping[str, Connector]:
        return self.tracker.dynamic_options.connectors

    def rows_for_grid(self, grid_id: str) -> list[Any]:
        rows = self.grid_data.get(grid_id)
        return rows if isinstance(rows, list) else []

    def with_runtime(self, runtime: RuntimeContext) -> OptionsContext:
        return dataclasses.replace(self, runtime=runtime)

    @cached_property
    def _lookup(self) -> dict[str, Any]:
        tracker = self.tracker.model_dump(by_alias=True, exclude={"dynamic_options", "validations", "calculations"})
        return {
            **tracker,
            "gridData": dict(self.grid_data),
            "runtime": self.runtime.to_dict(),
        }

    def lookup(self) -> dict[str, Any]:
        """The context as a JSON tree for dotted-path reads."""
        return self._lookup

    def version(self) -> str:
        """Signature of everything a local function can observe.

        Two contexts with equal versions produce equal options for the same
        function and args.
        """
        payload = {
            "grids": [grid.id for grid in self.tracker.grids],
            "fields": [f"{f.id}:{f.data_type}" for f in self.tracker.fields],
            "layoutNodes": [f"{node.grid_id}.{node.field_id}" for node in self.tracker.layout_nodes],
            "sections": [f"{section.id}:{section.tab_id}" for section in self.tracker.sections],
            "gridData": dict(self.grid_data),
            "runtime": self.runtime.to_dict(),
        }
        return signature(payload)
