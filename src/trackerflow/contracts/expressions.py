"""Expression node vocabulary and shape helpers.

Expression nodes are plain JSON dicts (they arrive from AI output and from
stored tracker documents), so this module works on ``dict`` rather than on
a class hierarchy. Everything here is shape inspection only; evaluation
lives in ``trackerflow.engine.expression_evaluator``.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, TypeAlias, TypeGuard

from trackerflow.contracts.enums import ExprOp

ExprNode: TypeAlias = dict[str, Any]

OP_ALIASES: Mapping[str, ExprOp] = MappingProxyType(
    {
        "=": ExprOp.EQ,
        "==": ExprOp.EQ,
        "===": ExprOp.EQ,
        "!=": ExprOp.NEQ,
        "!==": ExprOp.NEQ,
        ">": ExprOp.GT,
        ">=": ExprOp.GTE,
        "<": ExprOp.LT,
        "<=": ExprOp.LTE,
    }
)

VARIADIC_OPS: frozenset[ExprOp] = frozenset({ExprOp.ADD, ExprOp.MUL})
BINARY_OPS: frozenset[ExprOp] = frozenset(
    {
        ExprOp.SUB,
        ExprOp.DIV,
        ExprOp.EQ,
        ExprOp.NEQ,
        ExprOp.GT,
        ExprOp.GTE,
        ExprOp.LT,
        ExprOp.LTE,
    }
)
BOOLEAN_OPS: frozenset[ExprOp] = frozenset({ExprOp.AND, ExprOp.OR})

_CANONICAL_OPS: Mapping[str, ExprOp] = MappingProxyType({op.value: op for op in ExprOp})


def is_expr_node(value: Any) -> TypeGuard[ExprNode]:
    """True when value is a dict carrying a string ``op``."""
    return isinstance(value, dict) and isinstance(value.get("op"), str)


def canonical_op(op: Any) -> ExprOp | None:
    """Map an op string (canonical or alias) to its ExprOp, None if unknown."""
    if not isinstance(op, str):
        return None
    if op in _CANONICAL_OPS:
        return _CANONICAL_OPS[op]
    return OP_ALIASES.get(op)


def binary_operands(node: ExprNode) -> tuple[Any, Any] | None:
    """Return the (left, right) pair of a binary node.

    Accepts both ``{left, right}`` and a two-element ``args`` list. Returns
    None when neither shape is present.
    """
    left = node.get("left")
    right = node.get("right")
    if left is not None and right is not None:
        return left, right
    args = node.get("args")
    if isinstance(args, list) and len(args) >= 2 and args[0] is not None and args[1] is not None:
        return args[0], args[1]
    return None


def variadic_operands(node: ExprNode) -> list[Any]:
    """Return the operand list of an ``add``/``mul`` node (legacy pair accepted)."""
    args = node.get("args")
    if isinstance(args, list):
        return args
    pair = binary_operands(node)
    if pair is not None:
        return list(pair)
    return []


def child_nodes(node: ExprNode) -> list[Any]:
    """Every direct child expression of a node, in source order."""
    op = canonical_op(node.get("op"))
    if op is ExprOp.NOT:
        return [node.get("arg")]
    if op is ExprOp.IF:
        return [node.get("cond"), node.get("then"), node.get("else")]
    if op is ExprOp.REGEX:
        return [node.get("value")]
    if op in VARIADIC_OPS:
        return list(variadic_operands(node))
    if op in BOOLEAN_OPS:
        args = node.get("args")
        return list(args) if isinstance(args, list) else []
    if op in BINARY_OPS:
        pair = binary_operands(node)
        return list(pair) if pair is not None else []
    return []
