"""Tracker schema document.

Only the parts the computation core reads are modelled; UI-only keys in the
document are ignored. ``validations`` and ``calculations`` are kept as raw
JSON so the schema validator can report malformed rules instead of the
loader rejecting the whole document.
"""

from __future__ import annotations

from functools import cached_property
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from trackerflow.contracts.dynamic_options import DynamicOptionsDefinitions
from trackerflow.contracts.errors import DefinitionError

SHARED_TAB_ID = "shared_tab"


class TrackerModel(BaseModel):
    model_config = ConfigDict(
        extra="ignore",
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class TrackerTab(TrackerModel):
    id: str
    name: str = ""


class TrackerSection(TrackerModel):
    id: str
    name: str = ""
    tab_id: str | None = None


class TrackerGrid(TrackerModel):
    id: str
    name: str = ""
    section_id: str | None = None
    type: str | None = None


class FieldUi(TrackerModel):
    label: str | None = None


class TrackerField(TrackerModel):
    id: str
    data_type: str = "string"
    ui: FieldUi = Field(default_factory=FieldUi)
    config: dict[str, Any] = Field(default_factory=dict)

    @property
    def label(self) -> str:
        return self.ui.label or self.id

    @property
    def is_hidden(self) -> bool:
        return self.config.get("isHidden") is True


class LayoutNode(TrackerModel):
    grid_id: str
    field_id: str
    order: int | None = None


class TrackerSchema(TrackerModel):
    """Declarative tracker document as produced by the authoring layer."""

    tabs: list[TrackerTab] = Field(default_factory=list)
    sections: list[TrackerSection] = Field(default_factory=list)
    grids: list[TrackerGrid] = Field(default_factory=list)
    fields: list[TrackerField] = Field(default_factory=list)
    layout_nodes: list[LayoutNode] = Field(default_factory=list)
    validations: dict[str, Any] = Field(default_factory=dict)
    calculations: dict[str, Any] = Field(default_factory=dict)
    dynamic_options: DynamicOptionsDefinitions = Field(default_factory=DynamicOptionsDefinitions)

    @classmethod
    def from_dict(cls, data: Any) -> Self:
        """Validate a raw tracker document.

        Raises:
            DefinitionError: If the document (including its dynamic-options
                definitions) is malformed.
        """
        if not isinstance(data, dict):
            raise DefinitionError(f"Invalid tracker: expected an object, got {type(data).__name__}.")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise DefinitionError(f"Invalid tracker: {e}") from e

    @cached_property
    def grids_by_id(self) -> dict[str, TrackerGrid]:
        return {grid.id: grid for grid in self.grids}

    @cached_property
    def fields_by_id(self) -> dict[str, TrackerField]:
        return {field.id: field for field in self.fields}

    @cached_property
    def sections_by_id(self) -> dict[str, TrackerSection]:
        return {section.id: section for section in self.sections}

    @cached_property
    def field_paths(self) -> frozenset[str]:
        """``gridId.fieldId`` for every field placed in a grid's layout."""
        return frozenset(f"{node.grid_id}.{node.field_id}" for node in self.layout_nodes)
