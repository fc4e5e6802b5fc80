"""Shared contracts: enums, results, definition models and errors.

Everything that crosses a subsystem boundary lives here so the engine and
options packages never import each other for type definitions.
"""

from trackerflow.contracts.dynamic_options import (
    Connector,
    DynamicOptionsDefinitions,
    FunctionDefinition,
    GraphEdge,
    GraphNode,
    GraphSpec,
    OutputMapping,
)
from trackerflow.contracts.enums import (
    CompareOp,
    ExprOp,
    GraphNodeKind,
    OptionsEngine,
    PortType,
    ResolutionSource,
    SourceKind,
    TransformKind,
    ValidationRuleType,
)
from trackerflow.contracts.errors import DefinitionError, SettingsError, TrackerflowError
from trackerflow.contracts.expressions import ExprNode, is_expr_node
from trackerflow.contracts.results import (
    CalculationResult,
    CompileIssue,
    ExecutionResult,
    OptionItem,
    ResolutionMeta,
    ResolutionResult,
    ValidationReport,
)
from trackerflow.contracts.tracker import (
    LayoutNode,
    TrackerField,
    TrackerGrid,
    TrackerSchema,
    TrackerSection,
)

__all__ = [
    "CalculationResult",
    "CompareOp",
    "CompileIssue",
    "Connector",
    "DefinitionError",
    "DynamicOptionsDefinitions",
    "ExecutionResult",
    "ExprNode",
    "ExprOp",
    "FunctionDefinition",
    "GraphEdge",
    "GraphNode",
    "GraphNodeKind",
    "GraphSpec",
    "LayoutNode",
    "OptionItem",
    "OptionsEngine",
    "OutputMapping",
    "PortType",
    "ResolutionMeta",
    "ResolutionResult",
    "ResolutionSource",
    "SettingsError",
    "SourceKind",
    "TrackerField",
    "TrackerGrid",
    "TrackerSchema",
    "TrackerSection",
    "TrackerflowError",
    "TransformKind",
    "ValidationReport",
    "ValidationRuleType",
    "is_expr_node",
]
