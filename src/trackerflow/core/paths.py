# src/trackerflow/core/paths.py
"""Field paths, dotted traversal and value stringification.

A field path identifies a field either by bare id (the current grid is
implied) or as ``gridId.fieldId``. Layout-qualified paths
(``tabId.gridId.fieldId``) are also accepted and reduced to grid/field.

The sentinel pattern distinguishes "key not present" from "value is None"
in row data:

    value = get_by_path(row, "customer.name", default=MISSING)
    if value is MISSING:
        ...
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Final


class MissingSentinel:
    """Sentinel class to distinguish missing keys from None values.

    This is a singleton - use the MISSING instance, not the class directly.
    Comparison should always use `is` identity, never equality.
    """

    __slots__ = ()

    def __repr__(self) -> str:
        return "<MISSING>"

    def __bool__(self) -> bool:
        return False


MISSING: Final[MissingSentinel] = MissingSentinel()


@dataclass(frozen=True, slots=True)
class FieldPath:
    """A parsed field path. ``grid_id`` is None for bare field ids."""

    grid_id: str | None
    field_id: str

    @property
    def qualified(self) -> str:
        if self.grid_id is None:
            return self.field_id
        return f"{self.grid_id}.{self.field_id}"


def parse_field_path(path: Any) -> FieldPath | None:
    """Parse a bare, ``grid.field`` or ``tab.grid.field`` path.

    Returns None for anything else, including empty segments.
    """
    if not isinstance(path, str):
        return None
    parts = path.split(".")
    if any(not part for part in parts):
        return None
    if len(parts) == 1:
        return FieldPath(grid_id=None, field_id=parts[0])
    if len(parts) == 2:
        return FieldPath(grid_id=parts[0], field_id=parts[1])
    if len(parts) == 3:
        return FieldPath(grid_id=parts[1], field_id=parts[2])
    return None


def get_by_path(value: Any, path: str | None, default: Any = None) -> Any:
    """Traverse ``value`` along a dotted path.

    Mapping segments are looked up by key, sequence segments by integer
    index. Empty paths return ``value`` unchanged.

    Examples:
        >>> get_by_path({"data": {"items": [1, 2]}}, "data.items.1")
        2
        >>> get_by_path({"data": {}}, "data.items") is None
        True
    """
    if not path:
        return value
    current = value
    for segment in (part for part in path.split(".") if part):
        if current is None:
            return default
        if isinstance(current, list | tuple):
            if not segment.isdigit():
                return default
            index = int(segment)
            if index >= len(current):
                return default
            current = current[index]
            continue
        if not isinstance(current, dict):
            return default
        if segment not in current:
            return default
        current = current[segment]
    return current


def is_record(value: Any) -> bool:
    return isinstance(value, dict)


def to_plain_string(value: Any) -> str:
    """Stringify a JSON value the way option labels and ids expect.

    None becomes "", booleans are lower-case, and integral floats drop the
    trailing ``.0`` so ``3.0`` and ``3`` produce the same id.
    """
    if value is None or value is MISSING:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
    if isinstance(value, dict | list):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def to_stable_key(value: Any) -> str:
    """Deterministic identity key for de-duplicating rows by value."""
    if value is None or value is MISSING:
        return ""
    if isinstance(value, str | bool | int | float):
        return to_plain_string(value)
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
