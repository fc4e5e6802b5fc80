# src/trackerflow/engine/expression_normalizer.py
"""Canonical shapes for expression nodes.

Expressions produced by the AI layer or by older tracker documents use
symbolic operators (``==``, ``>=``), legacy ``{left, right}`` operands on
variadic ops, and ``args`` pairs on binary ops. normalize() rewrites them
into one canonical form so downstream code only sees:

- named operators (``eq``, ``gte`` ...)
- ``add``/``mul`` as ``{op, args}`` with nested same-op nodes flattened
- binary ops as ``{op, left, right}``

normalize() is idempotent: ``normalize(normalize(n)) == normalize(n)``.
"""

from __future__ import annotations

from typing import Any

from trackerflow.contracts.enums import ExprOp
from trackerflow.contracts.expressions import (
    BINARY_OPS,
    BOOLEAN_OPS,
    VARIADIC_OPS,
    binary_operands,
    canonical_op,
    child_nodes,
    is_expr_node,
    variadic_operands,
)


def normalize_op(op: Any) -> Any:
    """Map an alias to its named operator; unknown values pass through."""
    canonical = canonical_op(op)
    return canonical.value if canonical is not None else op


def normalize(node: Any) -> Any:
    """Return the canonical form of an expression node.

    Non-node values and nodes with unknown operators are returned unchanged.
    The input is never mutated.
    """
    if not is_expr_node(node):
        return node
    op = canonical_op(node["op"])
    if op is None:
        return node

    if op in (ExprOp.CONST, ExprOp.FIELD):
        return node if node["op"] == op.value else {**node, "op": op.value}

    if op in VARIADIC_OPS:
        args: list[Any] = []
        for operand in variadic_operands(node):
            child = normalize(operand)
            # Empty nested nodes evaluate to NaN, so they are kept as operands
            if is_expr_node(child) and child["op"] == op.value and child["args"]:
                args.extend(child["args"])
            else:
                args.append(child)
        return {"op": op.value, "args": args}

    if op in BINARY_OPS:
        pair = binary_operands(node)
        if pair is None:
            return {**node, "op": op.value}
        return {"op": op.value, "left": normalize(pair[0]), "right": normalize(pair[1])}

    result = {**node, "op": op.value}
    if op in BOOLEAN_OPS:
        if isinstance(node.get("args"), list):
            result["args"] = [normalize(arg) for arg in node["args"]]
    elif op is ExprOp.NOT:
        if "arg" in node:
            result["arg"] = normalize(node["arg"])
    elif op is ExprOp.IF:
        for key in ("cond", "then", "else"):
            if key in node:
                result[key] = normalize(node[key])
    elif op is ExprOp.REGEX:
        if "value" in node:
            result["value"] = normalize(node["value"])
    return result


def extract_field_refs(node: Any) -> list[str]:
    """Every ``field`` reference in an expression, in first-seen order."""
    refs: dict[str, None] = {}
    _collect_refs(node, refs)
    return list(refs)


def _collect_refs(node: Any, refs: dict[str, None]) -> None:
    if not is_expr_node(node):
        return
    if canonical_op(node["op"]) is ExprOp.FIELD:
        field_id = node.get("fieldId")
        if isinstance(field_id, str) and field_id:
            refs.setdefault(field_id, None)
        return
    for child in child_nodes(node):
        _collect_refs(child, refs)


def is_well_formed(node: Any) -> bool:
    """True when every node in the tree has a known op and its required operands."""
    if not is_expr_node(node):
        return False
    op = canonical_op(node["op"])
    if op is None:
        return False
    if op is ExprOp.CONST:
        return True
    if op is ExprOp.FIELD:
        field_id = node.get("fieldId")
        return isinstance(field_id, str) and bool(field_id.strip())
    if op in VARIADIC_OPS:
        operands = variadic_operands(node)
        return bool(operands) and all(is_well_formed(operand) for operand in operands)
    if op in BINARY_OPS:
        pair = binary_operands(node)
        return pair is not None and is_well_formed(pair[0]) and is_well_formed(pair[1])
    if op is ExprOp.REGEX and not isinstance(node.get("pattern"), str):
        return False
    children = child_nodes(node)
    return bool(children) and all(is_well_formed(child) for child in children)
