# src/trackerflow/engine/validation.py
"""Field validation planner.

A field's effective rule list is the rules synthesized from its config
flags (isRequired, min, max, minLength, maxLength) followed by its explicit
rules. compile() turns that list into a ValidationPlan, cached by a
structural signature of the inputs; check() runs a plan against a value and
returns the first failing rule's message, or None.

Evaluation order:
1. Hidden or disabled fields always pass
2. Rules in order, first failure wins
3. Numeric field types reject unparseable non-empty values

Example:
    planner = ValidationPlanner()
    plan = planner.compile("qty", "number", config={"min": 1})
    planner.check(plan, 0)  # "Must be at least 1"
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from trackerflow.contracts.enums import ValidationRuleType
from trackerflow.contracts.tracker import TrackerSchema
from trackerflow.core.cache import BoundedCache, CacheStats
from trackerflow.core.canonical import signature
from trackerflow.core.config import TrackerflowSettings
from trackerflow.engine.expression_evaluator import NAN, evaluate, is_number, is_truthy, parse_numeric_string

logger = structlog.get_logger(__name__)

STRING_TYPES: frozenset[str] = frozenset({"string", "text", "link"})
NUMBER_TYPES: frozenset[str] = frozenset({"number", "currency", "percentage"})

DEFAULT_PLAN_CACHE_LIMIT = 2000
INVALID_NUMBER_MESSAGE = "Enter a valid number"

# Config keys that synthesize a rule, in synthesis order
_CONFIG_RULE_KEYS: tuple[tuple[str, ValidationRuleType], ...] = (
    ("min", ValidationRuleType.MIN),
    ("max", ValidationRuleType.MAX),
    ("minLength", ValidationRuleType.MIN_LENGTH),
    ("maxLength", ValidationRuleType.MAX_LENGTH),
)


def is_empty(value: Any) -> bool:
    """Canonical emptiness: None, "" or an empty sequence."""
    if value is None or value == "":
        return True
    return isinstance(value, list | tuple) and len(value) == 0


def parse_number(value: Any) -> float | int:
    """Parse a candidate value as a number, NaN when it is not one."""
    if is_number(value):
        return value
    if isinstance(value, str) and value.strip():
        return parse_numeric_string(value)
    return NAN


def default_message(rule: Mapping[str, Any]) -> str:
    rule_type = rule.get("type")
    value = rule.get("value")
    if rule_type == ValidationRuleType.REQUIRED:
        return "Required"
    if rule_type == ValidationRuleType.MIN:
        return f"Must be at least {_format_bound(value)}"
    if rule_type == ValidationRuleType.MAX:
        return f"Must be at most {_format_bound(value)}"
    if rule_type == ValidationRuleType.MIN_LENGTH:
        return f"At least {_format_bound(value)} characters"
    if rule_type == ValidationRuleType.MAX_LENGTH:
        return f"At most {_format_bound(value)} characters"
    return "Invalid value"


def _format_bound(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _message(rule: Mapping[str, Any]) -> str:
    message = rule.get("message")
    return message if isinstance(message, str) and message else default_message(rule)


def config_rules(config: Mapping[str, Any] | None) -> list[dict[str, Any]]:
    """Rules implied by a field's config flags."""
    if not config:
        return []
    rules: list[dict[str, Any]] = []
    if config.get("isRequired") is True:
        rules.append({"type": ValidationRuleType.REQUIRED.value})
    for key, rule_type in _CONFIG_RULE_KEYS:
        bound = config.get(key)
        if is_number(bound) and not math.isnan(bound):
            rules.append({"type": rule_type.value, "value": bound})
    return rules


@dataclass(frozen=True, slots=True)
class ValidationPlan:
    """Compiled, reusable validation pipeline for one field.

    Attributes:
        field_id: Key under which the candidate value is merged into row values
        field_type: Field data type (drives string/number specific checks)
        rules: Config-synthesized rules followed by explicit rules
        skip: True when the field is hidden or disabled
        is_string_type: minLength/maxLength apply
        is_number_type: The numeric fallback applies
    """

    field_id: str
    field_type: str
    rules: tuple[Mapping[str, Any], ...]
    skip: bool
    is_string_type: bool
    is_number_type: bool


def build_plan(
    field_id: str,
    field_type: str,
    config: Mapping[str, Any] | None = None,
    rules: Sequence[Mapping[str, Any]] | None = None,
) -> ValidationPlan:
    """Compile a plan without caching."""
    config = config or {}
    combined = [*config_rules(config), *(rule for rule in (rules or ()) if isinstance(rule, Mapping))]
    return ValidationPlan(
        field_id=field_id,
        field_type=field_type,
        rules=tuple(combined),
        skip=config.get("isHidden") is True or config.get("isDisabled") is True,
        is_string_type=field_type in STRING_TYPES,
        is_number_type=field_type in NUMBER_TYPES,
    )


def _check_expr(rule: Mapping[str, Any], plan: ValidationPlan, value: Any, row_values: Mapping[str, Any] | None) -> str | None:
    merged = dict(row_values or {})
    if plan.field_id:
        merged[plan.field_id] = value
    result = evaluate(rule.get("expr"), merged)
    if isinstance(result, bool):
        return None if result else _message(rule)
    if isinstance(result, str):
        # A non-empty string result is the error message itself
        return result or _message(rule)
    if result is None:
        return _message(rule)
    return None if is_truthy(result) else _message(rule)


def check_plan(plan: ValidationPlan, value: Any, row_values: Mapping[str, Any] | None = None) -> str | None:
    """Run a compiled plan against a candidate value.

    Returns:
        The first failing rule's message, or None when the value is valid
    """
    if plan.skip:
        return None

    for rule in plan.rules:
        rule_type = rule.get("type")

        if rule_type == ValidationRuleType.REQUIRED:
            if is_empty(value):
                return _message(rule)
            continue

        if rule_type in (ValidationRuleType.MIN, ValidationRuleType.MAX):
            if is_empty(value):
                continue
            number = parse_number(value)
            if math.isnan(number):
                message = rule.get("message")
                return message if isinstance(message, str) and message else INVALID_NUMBER_MESSAGE
            bound = rule.get("value")
            if not is_number(bound):
                continue
            if rule_type == ValidationRuleType.MIN and number < bound:
                return _message(rule)
            if rule_type == ValidationRuleType.MAX and number > bound:
                return _message(rule)
            continue

        if rule_type in (ValidationRuleType.MIN_LENGTH, ValidationRuleType.MAX_LENGTH):
            if not plan.is_string_type:
                continue
            text = value if isinstance(value, str) else ("" if value is None else str(value))
            bound = rule.get("value")
            if not is_number(bound):
                continue
            if rule_type == ValidationRuleType.MIN_LENGTH and len(text) < bound:
                return _message(rule)
            if rule_type == ValidationRuleType.MAX_LENGTH and len(text) > bound:
                return _message(rule)
            continue

        if rule_type == ValidationRuleType.EXPR:
            error = _check_expr(rule, plan, value, row_values)
            if error is not None:
                return error

    if plan.is_number_type and not is_empty(value) and math.isnan(parse_number(value)):
        return INVALID_NUMBER_MESSAGE

    return None


class ValidationPlanner:
    """Compiles and caches validation plans.

    The cache is owned by the planner instance (or passed in by the caller
    so several planners can share one).
    """

    def __init__(self, cache: BoundedCache[str, ValidationPlan] | None = None) -> None:
        self._cache = cache if cache is not None else BoundedCache(DEFAULT_PLAN_CACHE_LIMIT, name="validation_plans")

    @classmethod
    def from_settings(cls, settings: TrackerflowSettings) -> ValidationPlanner:
        """Planner whose cache is bounded by ``cache.validation_plan_limit``."""
        return cls(BoundedCache(settings.cache.validation_plan_limit, name="validation_plans"))

    def compile(
        self,
        field_id: str,
        field_type: str,
        config: Mapping[str, Any] | None = None,
        rules: Sequence[Mapping[str, Any]] | None = None,
    ) -> ValidationPlan:
        key = signature([field_id, field_type, dict(config or {}), list(rules or [])])
        plan = self._cache.get(key)
        if plan is None:
            plan = build_plan(field_id, field_type, config, rules)
            self._cache.put(key, plan)
        return plan

    def check(self, plan: ValidationPlan, value: Any, row_values: Mapping[str, Any] | None = None) -> str | None:
        return check_plan(plan, value, row_values)

    def get_validation_error(
        self,
        *,
        value: Any,
        field_id: str,
        field_type: str,
        config: Mapping[str, Any] | None = None,
        rules: Sequence[Mapping[str, Any]] | None = None,
        row_values: Mapping[str, Any] | None = None,
    ) -> str | None:
        """Compile (cached) and check in one call."""
        plan = self.compile(field_id, field_type, config, rules)
        return check_plan(plan, value, row_values)

    def compile_for_field(self, tracker: TrackerSchema, grid_id: str, field_id: str) -> ValidationPlan:
        """Plan for a field placed in a grid, using the tracker's config and rules.

        Rules keyed ``gridId.fieldId`` take precedence over rules keyed by the
        bare field id.

        Raises:
            KeyError: If the field is not defined in the tracker
        """
        field = tracker.fields_by_id[field_id]
        rules = tracker.validations.get(f"{grid_id}.{field_id}")
        if rules is None:
            rules = tracker.validations.get(field_id)
        if not isinstance(rules, list):
            if rules is not None:
                logger.warning("validation_rules_ignored", grid_id=grid_id, field_id=field_id, reason="not a list")
            rules = []
        return self.compile(field_id, field.data_type, field.config, rules)

    def stats(self) -> CacheStats:
        return self._cache.stats()

    def clear(self) -> None:
        self._cache.clear()
