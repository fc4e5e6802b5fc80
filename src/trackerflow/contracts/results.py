"""Operation outcomes and results.

These types answer: "What did a compile/apply/resolve call produce?"

IMPORTANT:
- Runtime data problems are reported through ``warnings``/``issues`` fields,
  never raised. Callers render partial results.
- CalculationResult.row is the caller's original row object when nothing
  changed, so ``result.row is row`` is a valid "no re-render" signal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from trackerflow.contracts.enums import ResolutionSource


@dataclass(frozen=True, slots=True)
class CalculationResult:
    """Outcome of applying a calculation plan to one row.

    Fields:
        row: Row with recomputed targets (the input object if unchanged)
        updated_field_ids: Targets whose value actually changed, in evaluation order
        skipped_cyclic_targets: Impacted targets excluded because they sit on a cycle
    """

    row: dict[str, Any]
    updated_field_ids: tuple[str, ...] = ()
    skipped_cyclic_targets: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.updated_field_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row,
            "updatedFieldIds": list(self.updated_field_ids),
            "skippedCyclicTargets": list(self.skipped_cyclic_targets),
        }


@dataclass(frozen=True, slots=True)
class OptionItem:
    """A single selectable option."""

    label: str
    value: Any
    id: str
    extra: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"label": self.label, "value": self.value, "id": self.id}
        if self.extra:
            data["extra"] = dict(self.extra)
        return data


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Raw outcome of executing one dynamic-options definition."""

    options: tuple[OptionItem, ...] = ()
    requires_remote: bool = False
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ResolutionMeta:
    """Provenance of a resolved option list.

    Fields:
        source: builtin, local_custom or remote
        function_id: Requested function id ("" when the request carried none)
        from_cache: True when served from the result cache
        fetched_at: When the options were produced (UTC)
        duration_ms: Wall time spent producing them (0 for cache hits)
        expires_at: Cache expiry, None when the result was not cached
    """

    source: ResolutionSource
    function_id: str
    from_cache: bool = False
    fetched_at: datetime | None = None
    duration_ms: float = 0.0
    expires_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "functionId": self.function_id,
            "fromCache": self.from_cache,
            "fetchedAt": self.fetched_at.isoformat() if self.fetched_at else None,
            "durationMs": self.duration_ms,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass(frozen=True, slots=True)
class ResolutionResult:
    """Options plus provenance and any warnings, as handed to field renderers."""

    options: tuple[OptionItem, ...]
    meta: ResolutionMeta
    warnings: tuple[str, ...] = ()

    @property
    def values(self) -> list[Any]:
        return [option.value for option in self.options]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "options": [option.to_dict() for option in self.options],
            "meta": self.meta.to_dict(),
        }
        if self.warnings:
            data["warnings"] = list(self.warnings)
        return data


@dataclass(frozen=True, slots=True)
class CompileIssue:
    """A structural problem found while compiling a ``graph_v1`` definition."""

    message: str
    node_id: str | None = None
    edge_id: str | None = None

    def __str__(self) -> str:
        if self.node_id is not None:
            return f"[node {self.node_id}] {self.message}"
        if self.edge_id is not None:
            return f"[edge {self.edge_id}] {self.message}"
        return self.message


@dataclass(frozen=True, slots=True)
class ValidationReport:
    """Authoring-time validation outcome for a tracker document."""

    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.errors

    def merge(self, other: ValidationReport) -> ValidationReport:
        return ValidationReport(
            errors=self.errors + other.errors,
            warnings=self.warnings + other.warnings,
        )


@dataclass(slots=True)
class IssueCollector:
    """Mutable accumulator used while a validator walks a document."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def error(self, message: str) -> None:
        self.errors.append(message)

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def report(self) -> ValidationReport:
        return ValidationReport(errors=tuple(self.errors), warnings=tuple(self.warnings))
