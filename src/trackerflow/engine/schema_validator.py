# src/trackerflow/engine/schema_validator.py
"""Authoring-time validation of a tracker document.

The runtime engines tolerate bad rules (they skip them or yield None);
this module is where those problems are reported to the author instead.
Every validator appends human-readable messages to an IssueCollector and
never raises.

validate_tracker() runs:
1. Layout references (layout nodes, sections, grids)
2. Calculations: target keys, expression shape, same-grid references,
   self references and dependency cycles
3. Validations: keys, rule types and expression shape
4. Dynamic options: graph compilation, grid/connector/builtin references
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any, TypeAlias

import networkx as nx
import structlog

from trackerflow.contracts.dynamic_options import (
    BuiltinRefSource,
    FunctionDefinition,
    GridRowsSource,
    HttpGetSource,
)
from trackerflow.contracts.enums import ExprOp, GraphNodeKind, ValidationRuleType
from trackerflow.contracts.errors import DefinitionError
from trackerflow.contracts.expressions import BINARY_OPS, BOOLEAN_OPS, VARIADIC_OPS, binary_operands, canonical_op, is_expr_node
from trackerflow.contracts.results import IssueCollector, ValidationReport
from trackerflow.contracts.tracker import TrackerSchema
from trackerflow.core.paths import parse_field_path
from trackerflow.engine.expression_evaluator import is_nan, is_number, regex_flags
from trackerflow.engine.expression_normalizer import extract_field_refs
from trackerflow.options.builtins import is_builtin
from trackerflow.options.graph import compile_graph

logger = structlog.get_logger(__name__)

_NUMERIC_RULE_TYPES: frozenset[ValidationRuleType] = frozenset(
    {
        ValidationRuleType.MIN,
        ValidationRuleType.MAX,
        ValidationRuleType.MIN_LENGTH,
        ValidationRuleType.MAX_LENGTH,
    }
)

# Reports problems with a ``field`` node's fieldId; returns messages
FieldRefCheck: TypeAlias = Callable[[str, str], list[str]]


def _check_expr(node: dict[str, Any], path: str, check_field: FieldRefCheck, issues: IssueCollector) -> None:
    """Walk one expression node, reporting shape and reference problems."""
    op = canonical_op(node["op"])
    if op is None:
        issues.error(f"{path}.op is not a supported operator")
        return
    if op is ExprOp.CONST:
        return

    if op is ExprOp.FIELD:
        ref = node.get("fieldId")
        if not isinstance(ref, str) or not ref.strip():
            issues.error(f"{path}.fieldId must be a non-empty string")
            return
        for message in check_field(ref, path):
            issues.error(message)
        return

    if op in VARIADIC_OPS or op in BOOLEAN_OPS:
        args = node.get("args")
        if op in VARIADIC_OPS and not isinstance(args, list):
            pair = binary_operands(node)
            args = list(pair) if pair is not None else None
        if not isinstance(args, list) or not args:
            issues.error(f"{path}.args must be a non-empty array")
            return
        for index, arg in enumerate(args):
            if not is_expr_node(arg):
                issues.error(f"{path}.args[{index}] is not a valid expression node")
                continue
            _check_expr(arg, f"{path}.args[{index}]", check_field, issues)
        return

    if op in BINARY_OPS:
        pair = binary_operands(node)
        if pair is None:
            issues.error(f"{path} must have .left and .right, or .args with two expression nodes")
            return
        for operand, side, index in ((pair[0], "left", 0), (pair[1], "right", 1)):
            if not is_expr_node(operand):
                issues.error(f"{path}.{side} (or .args[{index}]) is not a valid expression node")
                continue
            _check_expr(operand, f"{path}.{side}", check_field, issues)
        return

    if op is ExprOp.NOT:
        _check_child(node, "arg", path, check_field, issues)
    elif op is ExprOp.IF:
        for key in ("cond", "then", "else"):
            _check_child(node, key, path, check_field, issues)
    elif op is ExprOp.REGEX:
        _check_child(node, "value", path, check_field, issues)
        pattern = node.get("pattern")
        flags = node.get("flags")
        if not isinstance(pattern, str):
            issues.error(f"{path}.pattern must be a string")
        else:
            try:
                re.compile(pattern, regex_flags(flags))
            except re.error:
                issues.error(f"{path}.pattern is not a valid regex")
        if flags is not None and not isinstance(flags, str):
            issues.error(f"{path}.flags must be a string when provided")


def _check_child(node: dict[str, Any], key: str, path: str, check_field: FieldRefCheck, issues: IssueCollector) -> None:
    child = node.get(key)
    if not is_expr_node(child):
        issues.error(f"{path}.{key} is not a valid expression node")
        return
    _check_expr(child, f"{path}.{key}", check_field, issues)


def _qualified_key(key: str) -> tuple[str, str] | None:
    if "." not in key:
        return None
    parsed = parse_field_path(key)
    if parsed is None or parsed.grid_id is None:
        return None
    return parsed.grid_id, parsed.field_id


def validate_layout(tracker: TrackerSchema) -> ValidationReport:
    issues = IssueCollector()
    tab_ids = {tab.id for tab in tracker.tabs}
    for node in tracker.layout_nodes:
        if node.grid_id not in tracker.grids_by_id:
            issues.error(f'layoutNode references missing gridId "{node.grid_id}"')
        if node.field_id not in tracker.fields_by_id:
            issues.error(f'layoutNode references missing fieldId "{node.field_id}"')
    for section in tracker.sections:
        if section.tab_id is not None and section.tab_id not in tab_ids:
            issues.error(f'section "{section.id}" references missing tabId "{section.tab_id}"')
    for grid in tracker.grids:
        if grid.section_id is not None and grid.section_id not in tracker.sections_by_id:
            issues.error(f'grid "{grid.id}" references missing sectionId "{grid.section_id}"')
    return issues.report()


def _dependency_cycles(dependencies: Mapping[str, set[str]]) -> list[list[str]]:
    graph: nx.DiGraph[str] = nx.DiGraph()
    for target, deps in dependencies.items():
        graph.add_node(target)
        graph.add_edges_from((target, dep) for dep in deps)
    cycles = []
    for cycle in nx.simple_cycles(graph):
        start = cycle.index(min(cycle))
        cycles.append(cycle[start:] + cycle[:start])
    return sorted(cycles)


def validate_calculations(tracker: TrackerSchema) -> ValidationReport:
    """Check calculation rules.

    Keys must be ``gridId.fieldId`` paths placed in the layout, and every
    field reference in a rule must be a qualified path inside the target's
    grid.
    """
    issues = IssueCollector()
    calculations = tracker.calculations
    field_paths = tracker.field_paths
    dependencies: dict[str, set[str]] = {}

    for key, rule in calculations.items():
        parsed = _qualified_key(key)
        if parsed is None:
            issues.error(f'calculations key "{key}" must be "gridId.fieldId" (e.g. main_grid.amount), like bindings')
            continue
        grid_id = parsed[0]
        if grid_id not in tracker.grids_by_id:
            issues.error(f'calculations key "{key}": grid "{grid_id}" not found')
            continue
        if key not in field_paths:
            issues.error(
                f'calculations key "{key}": field path "{key}" not found (field must be placed in layout for that grid)'
            )
            continue
        if not isinstance(rule, dict):
            issues.error(f"calculations.{key} must be an object")
            continue
        expr = rule.get("expr")
        if not is_expr_node(expr):
            issues.error(f"calculations.{key}.expr must be a valid expression node")
            continue

        def check_field(ref: str, path: str, target_grid: str = grid_id) -> list[str]:
            if "." not in ref:
                return [f'{path}.fieldId must be "gridId.fieldId" (e.g. main_grid.rate), not bare fieldId']
            ref_path = parse_field_path(ref)
            if ref_path is None or ref_path.grid_id is None:
                return [f'{path}.fieldId "{ref}" is not a valid field path']
            if ref not in field_paths:
                return [f'{path}.fieldId references missing field path "{ref}"']
            if ref_path.grid_id != target_grid:
                return [f'{path}.fieldId "{ref}" must stay within target grid "{target_grid}"']
            return []

        _check_expr(expr, f"calculations.{key}.expr", check_field, issues)

        deps: set[str] = set()
        for ref in extract_field_refs(expr):
            if ref == key:
                issues.error(f"calculations.{key}.expr must not reference itself")
            if ref in calculations:
                deps.add(ref)
        dependencies[key] = deps

    for cycle in _dependency_cycles(dependencies):
        issues.error(f"calculations contain a dependency cycle: {' -> '.join(cycle)}")
    return issues.report()


def validate_validations(tracker: TrackerSchema) -> ValidationReport:
    """Check validation rules.

    Keys are ``gridId.fieldId`` paths or legacy bare field ids. Expression
    rules may reference fields either way, as long as they exist.
    """
    issues = IssueCollector()
    field_paths = tracker.field_paths

    def check_field(ref: str, path: str) -> list[str]:
        if "." in ref:
            if ref not in field_paths:
                return [f'{path}.fieldId references missing field path "{ref}" (use gridId.fieldId)']
        elif ref not in tracker.fields_by_id:
            return [f'{path}.fieldId references missing field "{ref}"']
        return []

    for key, rules in tracker.validations.items():
        if "." in key:
            parsed = _qualified_key(key)
            if parsed is None:
                issues.error(f'validations key "{key}" must be "gridId.fieldId" or a single fieldId')
                continue
            if parsed[0] not in tracker.grids_by_id:
                issues.error(f'validations key "{key}": grid "{parsed[0]}" not found')
                continue
            if key not in field_paths:
                issues.error(
                    f'validations key "{key}": field path "{key}" not found (field must be placed in layout for that grid)'
                )
                continue
        elif not key:
            issues.error(f'validations key "{key}" must be "gridId.fieldId" or a single fieldId')
            continue
        elif key not in tracker.fields_by_id:
            issues.error(f'validations key "{key}": field "{key}" not found')
            continue

        if not isinstance(rules, list):
            issues.error(f"validations.{key} must be an array")
            continue

        for index, rule in enumerate(rules):
            path = f"validations.{key}[{index}]"
            if not isinstance(rule, dict) or not isinstance(rule.get("type"), str):
                issues.error(f"{path}.type is required")
                continue
            try:
                rule_type = ValidationRuleType(rule["type"])
            except ValueError:
                issues.error(f'{path}.type "{rule["type"]}" is not supported')
                continue
            if rule_type in _NUMERIC_RULE_TYPES:
                value = rule.get("value")
                if not is_number(value) or is_nan(value):
                    issues.error(f"{path}.value must be a number")
            elif rule_type is ValidationRuleType.EXPR:
                expr = rule.get("expr")
                if not is_expr_node(expr):
                    issues.error(f"{path}.expr must be a valid expression node")
                    continue
                _check_expr(expr, f"{path}.expr", check_field, issues)
    return issues.report()


def _check_function(
    function_key: str, definition: FunctionDefinition, tracker: TrackerSchema, issues: IssueCollector
) -> None:
    prefix = f'dynamicOptions function "{function_key}"'
    connectors = tracker.dynamic_options.connectors
    if definition.id != function_key:
        issues.warn(f'{prefix}: key does not match function id "{definition.id}"')

    if definition.is_graph:
        compiled = compile_graph(definition, connectors.keys())
        for issue in compiled.issues:
            issues.error(f"{prefix}: {issue}")
        if not connectors and definition.graph is not None:
            for node in definition.graph.nodes:
                connector_id = (node.config or {}).get("connectorId")
                if node.kind == GraphNodeKind.HTTP_GET and connector_id:
                    issues.error(f'{prefix}: [node {node.id}] source.http_get references missing connector "{connector_id}"')
        return

    source = definition.source
    if isinstance(source, GridRowsSource) and source.grid_id not in tracker.grids_by_id:
        issues.error(f'{prefix}: grid_rows source references missing grid "{source.grid_id}"')
    elif isinstance(source, HttpGetSource) and source.connector_id not in connectors:
        issues.error(f'{prefix}: http_get source references missing connector "{source.connector_id}"')
    elif isinstance(source, BuiltinRefSource) and not is_builtin(source.function_id):
        issues.error(f'{prefix}: builtin_ref references unknown builtin "{source.function_id}"')


def validate_dynamic_options(tracker: TrackerSchema) -> ValidationReport:
    issues = IssueCollector()
    for key, connector in tracker.dynamic_options.connectors.items():
        if connector.id != key:
            issues.warn(f'dynamicOptions connector "{key}": key does not match connector id "{connector.id}"')
    for key, definition in tracker.dynamic_options.functions.items():
        if is_builtin(key):
            issues.warn(f'dynamicOptions function "{key}" is shadowed by the builtin of the same id')
        _check_function(key, definition, tracker, issues)
    return issues.report()


def validate_tracker(tracker: TrackerSchema) -> ValidationReport:
    """Run every validator and merge their reports."""
    report = ValidationReport()
    for validator in (validate_layout, validate_calculations, validate_validations, validate_dynamic_options):
        report = report.merge(validator(tracker))
    if report.errors:
        logger.info("tracker_invalid", errors=len(report.errors), warnings=len(report.warnings))
    return report


def validate_tracker_document(data: Any) -> ValidationReport:
    """Validate a raw JSON document, reporting load failures as errors.

    Dynamic-options definitions are parsed strictly when the document is
    loaded, so a malformed definition surfaces here as a single error.
    """
    try:
        tracker = TrackerSchema.from_dict(data)
    except DefinitionError as e:
        return ValidationReport(errors=(str(e),))
    return validate_tracker(tracker)
