# src/trackerflow/engine/calculation.py
"""Field calculation engine.

Calculation rules are authored per target field path (``gridId.fieldId``)
and read other fields of the same row. compile() builds, for one grid, the
dependency graph between targets as plain adjacency maps; apply() then
recomputes only the targets affected by an edit, dependencies first.

Plan structure:
- rules_by_target: target field id -> expression node
- depends_on_targets: target -> targets it reads (edges between targets only)
- reverse_deps: any referenced field -> targets that read it

Edges never cross grid boundaries: a reference to another grid's field is
not a dependency and is dropped at compile time.

Cycles are contained rather than rejected: targets on a cycle are skipped
and reported, everything downstream of them still computes against the
value the cyclic field currently holds.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

import structlog

from trackerflow.contracts.expressions import ExprNode, is_expr_node
from trackerflow.contracts.results import CalculationResult
from trackerflow.core.cache import BoundedCache, CacheStats
from trackerflow.core.config import TrackerflowSettings
from trackerflow.core.paths import parse_field_path
from trackerflow.engine.expression_evaluator import evaluate, is_nan, is_number
from trackerflow.engine.expression_normalizer import extract_field_refs, is_well_formed

logger = structlog.get_logger(__name__)

DEFAULT_PLAN_CACHE_LIMIT = 100


@dataclass(frozen=True, slots=True)
class CalculationPlan:
    """Compiled dependency graph of one grid's calculation rules."""

    grid_id: str
    rules_by_target: Mapping[str, ExprNode]
    depends_on_targets: Mapping[str, tuple[str, ...]]
    reverse_deps: Mapping[str, tuple[str, ...]]

    @property
    def targets(self) -> tuple[str, ...]:
        return tuple(self.rules_by_target)


def local_field_id(ref: Any, grid_id: str) -> str | None:
    """Reduce a field reference to a bare id within ``grid_id``.

    Bare ids pass through; ``gridId.fieldId`` references to another grid
    (and unparseable references) yield None.
    """
    if not isinstance(ref, str) or not ref.strip():
        return None
    if "." not in ref:
        return ref
    parsed = parse_field_path(ref)
    if parsed is None or parsed.grid_id != grid_id:
        return None
    return parsed.field_id


def _target_rules(grid_id: str, calculations: Mapping[str, Any] | None) -> dict[str, ExprNode]:
    rules: dict[str, ExprNode] = {}
    for path, rule in (calculations or {}).items():
        if not isinstance(rule, Mapping) or not is_expr_node(rule.get("expr")):
            continue
        parsed = parse_field_path(path)
        if parsed is None or parsed.grid_id != grid_id:
            continue
        expr = rule["expr"]
        if not is_well_formed(expr):
            # Malformed rules keep the field's current value
            logger.warning("calculation_rule_skipped", grid_id=grid_id, target=parsed.field_id, reason="malformed")
            continue
        rules[parsed.field_id] = expr
    return rules


def build_plan(grid_id: str, calculations: Mapping[str, Any] | None) -> CalculationPlan:
    """Compile a grid's rules into a plan without caching."""
    rules = _target_rules(grid_id, calculations)
    depends_on: dict[str, tuple[str, ...]] = {}
    reverse: dict[str, list[str]] = {}

    for target, expr in rules.items():
        deps: list[str] = []
        for ref in extract_field_refs(expr):
            field_id = local_field_id(ref, grid_id)
            if field_id is None:
                continue
            dependents = reverse.setdefault(field_id, [])
            if target not in dependents:
                dependents.append(target)
            if field_id in rules and field_id not in deps:
                deps.append(field_id)
        depends_on[target] = tuple(deps)

    return CalculationPlan(
        grid_id=grid_id,
        rules_by_target=MappingProxyType(rules),
        depends_on_targets=MappingProxyType(depends_on),
        reverse_deps=MappingProxyType({field_id: tuple(targets) for field_id, targets in reverse.items()}),
    )


def impacted_targets(plan: CalculationPlan, changed_field_ids: Iterable[str] | None) -> list[str]:
    """Targets transitively affected by the changed fields, in discovery order.

    No changes (None or empty) means a full recompute.
    """
    changed = _normalize_changed(plan.grid_id, changed_field_ids)
    if not changed:
        return list(plan.rules_by_target)

    impacted: dict[str, None] = {}
    queue: deque[str] = deque()
    for field_id in changed:
        if field_id in plan.rules_by_target and field_id not in impacted:
            impacted[field_id] = None
            queue.append(field_id)
        for target in plan.reverse_deps.get(field_id, ()):
            if target not in impacted:
                impacted[target] = None
                queue.append(target)

    while queue:
        source = queue.popleft()
        for target in plan.reverse_deps.get(source, ()):
            if target not in impacted:
                impacted[target] = None
                queue.append(target)

    return list(impacted)


def _normalize_changed(grid_id: str, changed_field_ids: Iterable[str] | None) -> list[str]:
    if not changed_field_ids:
        return []
    normalized: dict[str, None] = {}
    for field_id in changed_field_ids:
        normalized[local_field_id(field_id, grid_id) or field_id] = None
    return list(normalized)


def evaluation_order(plan: CalculationPlan, impacted: list[str]) -> tuple[list[str], list[str]]:
    """Dependency-first order over the impacted targets.

    Depth-first over ``depends_on_targets`` restricted to the impacted set.
    A back-edge to a target still on the stack marks every target from that
    point of the stack as cyclic; cyclic targets are left out of the order.

    Returns:
        (order, cyclic_targets)
    """
    impacted_set = set(impacted)
    order: list[str] = []
    cyclic: dict[str, None] = {}
    visited: set[str] = set()

    for root in impacted:
        if root in visited:
            continue
        # Explicit stack of (target, remaining deps); the targets on it are the current path
        stack: list[tuple[str, Iterator[str]]] = [(root, iter(plan.depends_on_targets.get(root, ())))]
        path: list[str] = [root]
        on_path: set[str] = {root}
        while stack:
            target, deps = stack[-1]
            dep = next((d for d in deps if d in impacted_set and d not in visited), None)
            if dep is not None:
                if dep in on_path:
                    for node in path[path.index(dep) :]:
                        cyclic[node] = None
                    continue
                stack.append((dep, iter(plan.depends_on_targets.get(dep, ()))))
                path.append(dep)
                on_path.add(dep)
                continue
            stack.pop()
            path.pop()
            on_path.discard(target)
            visited.add(target)
            if target not in cyclic:
                order.append(target)

    return order, list(cyclic)


def same_value(previous: Any, current: Any) -> bool:
    """Change detection for computed values.

    Numbers compare by value (NaN equals NaN), strings, booleans and None by
    value, everything else by identity.
    """
    if previous is current:
        return True
    if is_number(previous) and is_number(current):
        if is_nan(previous) and is_nan(current):
            return True
        return bool(previous == current)
    if type(previous) is type(current) and isinstance(previous, str | bool):
        return previous == current
    return False


def apply_plan(
    plan: CalculationPlan,
    row: dict[str, Any],
    changed_field_ids: Iterable[str] | None = None,
) -> CalculationResult:
    """Recompute the targets affected by ``changed_field_ids`` on one row.

    The caller's row is never mutated. When no target changes value the
    returned result carries the original row object.
    """
    if not plan.rules_by_target:
        return CalculationResult(row=row)

    impacted = impacted_targets(plan, changed_field_ids)
    if not impacted:
        return CalculationResult(row=row)

    order, cyclic = evaluation_order(plan, impacted)
    if cyclic:
        logger.warning("calculation_cycle_skipped", grid_id=plan.grid_id, targets=cyclic)

    next_row = dict(row)
    values = dict(row)
    for field_id, value in row.items():
        values[f"{plan.grid_id}.{field_id}"] = value

    updated: list[str] = []
    for target in order:
        value = evaluate(plan.rules_by_target[target], values)
        if same_value(next_row.get(target), value):
            continue
        next_row[target] = value
        values[target] = value
        values[f"{plan.grid_id}.{target}"] = value
        updated.append(target)

    return CalculationResult(
        row=next_row if updated else row,
        updated_field_ids=tuple(updated),
        skipped_cyclic_targets=tuple(cyclic),
    )


class CalculationEngine:
    """Compiles and applies calculation plans.

    Plans are cached per grid and per calculations object: compiling the
    same rule-set object again is a cache hit, while an edited (new) object
    compiles fresh. The cache holds a reference to each rule-set it keys on.
    """

    def __init__(self, cache: BoundedCache[tuple[str, int], tuple[Any, CalculationPlan]] | None = None) -> None:
        self._cache = cache if cache is not None else BoundedCache(DEFAULT_PLAN_CACHE_LIMIT, name="calculation_plans")

    @classmethod
    def from_settings(cls, settings: TrackerflowSettings) -> CalculationEngine:
        """Engine whose cache is bounded by ``cache.calculation_plan_limit``."""
        return cls(BoundedCache(settings.cache.calculation_plan_limit, name="calculation_plans"))

    def compile(self, grid_id: str, calculations: Mapping[str, Any] | None) -> CalculationPlan:
        if calculations is None:
            return build_plan(grid_id, None)
        key = (grid_id, id(calculations))
        cached = self._cache.get(key)
        if cached is not None and cached[0] is calculations:
            return cached[1]
        plan = build_plan(grid_id, calculations)
        self._cache.put(key, (calculations, plan))
        logger.debug("calculation_plan_compiled", grid_id=grid_id, targets=len(plan.rules_by_target))
        return plan

    def apply(
        self,
        plan: CalculationPlan,
        row: dict[str, Any],
        changed_field_ids: Iterable[str] | None = None,
    ) -> CalculationResult:
        return apply_plan(plan, row, changed_field_ids)

    def apply_calculations(
        self,
        grid_id: str,
        row: dict[str, Any],
        calculations: Mapping[str, Any] | None,
        changed_field_ids: Iterable[str] | None = None,
    ) -> CalculationResult:
        """Compile (cached) and apply in one call."""
        return apply_plan(self.compile(grid_id, calculations), row, changed_field_ids)

    def stats(self) -> CacheStats:
        return self._cache.stats()

    def clear(self) -> None:
        self._cache.clear()
