# src/trackerflow/options/graph.py
"""Static compiler for ``graph_v1`` dynamic-options definitions.

compile_graph() validates a node/edge graph without executing anything and
produces a CompiledGraphPlan the executor can walk in order. All problems
are collected as CompileIssue entries rather than raised, so an authoring
UI can show every issue at once.

Checks:
1. Node ids are unique and edges reference existing nodes
2. The entry node is a ``control.start`` with no incoming and at least one
   outgoing edge; the return node is the single ``output.options`` node
3. Each node's config matches its kind, and ``source.http_get`` connectors
   exist when a connector set is supplied
4. Every non-start node has exactly one incoming edge of a compatible type
5. The graph is acyclic and the return node is reachable from the entry
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

import networkx as nx
import structlog
from networkx import MultiDiGraph
from pydantic import BaseModel, ValidationError

from trackerflow.contracts.dynamic_options import (
    AiExtractConfig,
    CurrentContextConfig,
    FilterTransform,
    FlattenPathTransform,
    FunctionDefinition,
    GridRowsSource,
    HttpGetSource,
    LayoutFieldsSource,
    LimitTransform,
    MapFieldsTransform,
    OutputNodeConfig,
    SortTransform,
    StartConfig,
    UniqueTransform,
)
from trackerflow.contracts.enums import GraphNodeKind, PortType
from trackerflow.contracts.results import CompileIssue
from trackerflow.core.cache import BoundedCache
from trackerflow.core.canonical import signature

logger = structlog.get_logger(__name__)

DEFAULT_PLAN_CACHE_LIMIT = 1000

REMOTE_NODE_KINDS: frozenset[GraphNodeKind] = frozenset({GraphNodeKind.HTTP_GET, GraphNodeKind.AI_EXTRACT})

_OUTPUT_TYPES: Mapping[GraphNodeKind, PortType] = MappingProxyType(
    {
        GraphNodeKind.START: PortType.OBJECT,
        GraphNodeKind.GRID_ROWS: PortType.ROWS,
        GraphNodeKind.CURRENT_CONTEXT: PortType.OBJECT,
        GraphNodeKind.LAYOUT_FIELDS: PortType.ROWS,
        # Shape depends on the remote payload and its responsePath
        GraphNodeKind.HTTP_GET: PortType.ANY,
        GraphNodeKind.FILTER: PortType.ROWS,
        GraphNodeKind.MAP_FIELDS: PortType.ROWS,
        GraphNodeKind.UNIQUE: PortType.ROWS,
        GraphNodeKind.SORT: PortType.ROWS,
        GraphNodeKind.LIMIT: PortType.ROWS,
        GraphNodeKind.FLATTEN_PATH: PortType.ROWS,
        GraphNodeKind.AI_EXTRACT: PortType.ROWS,
        GraphNodeKind.OUTPUT: PortType.OPTIONS,
    }
)

# None means the node takes no input
_INPUT_TYPES: Mapping[GraphNodeKind, PortType | None] = MappingProxyType(
    {
        GraphNodeKind.START: None,
        GraphNodeKind.GRID_ROWS: PortType.OBJECT,
        GraphNodeKind.CURRENT_CONTEXT: PortType.OBJECT,
        GraphNodeKind.LAYOUT_FIELDS: PortType.OBJECT,
        GraphNodeKind.HTTP_GET: PortType.OBJECT,
        GraphNodeKind.FILTER: PortType.ROWS,
        GraphNodeKind.MAP_FIELDS: PortType.ROWS,
        GraphNodeKind.UNIQUE: PortType.ROWS,
        GraphNodeKind.SORT: PortType.ROWS,
        GraphNodeKind.LIMIT: PortType.ROWS,
        GraphNodeKind.FLATTEN_PATH: PortType.ANY,
        GraphNodeKind.AI_EXTRACT: PortType.ANY,
        GraphNodeKind.OUTPUT: PortType.ROWS,
    }
)


class HttpGetNodeConfig(HttpGetSource):
    """Graph nodes must spell out the request path."""

    path: str


# Config model per kind, with the ``kind`` tag injected for models shared
# with flat pipelines
_CONFIG_MODELS: Mapping[GraphNodeKind, tuple[type[BaseModel], str | None]] = MappingProxyType(
    {
        GraphNodeKind.START: (StartConfig, None),
        GraphNodeKind.GRID_ROWS: (GridRowsSource, "grid_rows"),
        GraphNodeKind.CURRENT_CONTEXT: (CurrentContextConfig, None),
        GraphNodeKind.LAYOUT_FIELDS: (LayoutFieldsSource, "layout_fields"),
        GraphNodeKind.HTTP_GET: (HttpGetNodeConfig, "http_get"),
        GraphNodeKind.FILTER: (FilterTransform, "filter"),
        GraphNodeKind.MAP_FIELDS: (MapFieldsTransform, "map_fields"),
        GraphNodeKind.UNIQUE: (UniqueTransform, "unique"),
        GraphNodeKind.SORT: (SortTransform, "sort"),
        GraphNodeKind.LIMIT: (LimitTransform, "limit"),
        GraphNodeKind.FLATTEN_PATH: (FlattenPathTransform, "flatten_path"),
        GraphNodeKind.AI_EXTRACT: (AiExtractConfig, None),
        GraphNodeKind.OUTPUT: (OutputNodeConfig, None),
    }
)

assert set(_OUTPUT_TYPES) == set(_INPUT_TYPES) == set(_CONFIG_MODELS) == set(GraphNodeKind), "graph tables are incomplete"


@dataclass(frozen=True, slots=True)
class CompiledNode:
    id: str
    kind: GraphNodeKind
    config: Any


@dataclass(frozen=True, slots=True)
class CompiledGraphPlan:
    """Executable form of a valid graph.

    Attributes:
        function_id: Definition the plan was compiled from
        execution_order: Nodes on a path from entry to return, topologically sorted
        nodes_by_id: Typed node configs
        incoming: Node id -> upstream node id (one per non-start node)
        requires_remote: An executed node needs the network or an AI extractor
        uses_runtime_row: An executed node reads the runtime row
    """

    function_id: str
    execution_order: tuple[str, ...]
    nodes_by_id: Mapping[str, CompiledNode]
    incoming: Mapping[str, str]
    return_node_id: str
    requires_remote: bool
    uses_runtime_row: bool


@dataclass(frozen=True, slots=True)
class GraphCompileResult:
    plan: CompiledGraphPlan | None
    issues: tuple[CompileIssue, ...] = ()

    @property
    def ok(self) -> bool:
        return self.plan is not None and not self.issues

    @property
    def messages(self) -> list[str]:
        return [issue.message for issue in self.issues]


def _port_compatible(source: PortType, target: PortType) -> bool:
    return PortType.ANY in (source, target) or source == target


def _parse_config(kind: GraphNodeKind, raw: Mapping[str, Any] | None) -> tuple[Any, list[str]]:
    model, tag = _CONFIG_MODELS[kind]
    data = dict(raw or {})
    if tag is not None:
        data["kind"] = tag
    try:
        return model.model_validate(data), []
    except ValidationError as e:
        errors = []
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"])
            prefix = f"{kind} config"
            errors.append(f"{prefix} {location}: {error['msg']}" if location else f"{prefix}: {error['msg']}")
        return None, errors


def graph_signature(definition: FunctionDefinition, connector_ids: Iterable[str] | None = None) -> str:
    graph = definition.graph.model_dump(by_alias=True) if definition.graph is not None else None
    return signature([definition.id, definition.version, graph, sorted(connector_ids or ())])


def compile_graph(
    definition: FunctionDefinition,
    connector_ids: Iterable[str] | None = None,
    *,
    cache: BoundedCache[str, CompiledGraphPlan] | None = None,
) -> GraphCompileResult:
    """Validate a ``graph_v1`` definition and build its execution plan.

    Args:
        definition: Function definition (must use the graph_v1 engine)
        connector_ids: Known connector ids; when given (and non-empty),
            http nodes must reference one of them
        cache: Optional plan cache keyed by the graph's structural signature

    Returns:
        GraphCompileResult with a plan when the graph is valid, issues otherwise
    """
    if not definition.is_graph or definition.graph is None:
        return GraphCompileResult(plan=None, issues=(CompileIssue("Function is not a graph_v1 definition"),))

    connectors = frozenset(connector_ids or ())
    key = graph_signature(definition, connectors)
    if cache is not None:
        cached = cache.get(key)
        if cached is not None:
            return GraphCompileResult(plan=cached)

    graph = definition.graph
    issues: list[CompileIssue] = []
    nodes: dict[str, CompiledNode] = {}
    digraph: MultiDiGraph[str] = nx.MultiDiGraph()

    for node in graph.nodes:
        if node.id in nodes:
            issues.append(CompileIssue(f'Duplicate node id "{node.id}"', node_id=node.id))
            continue
        try:
            kind = GraphNodeKind(node.kind)
        except ValueError:
            issues.append(CompileIssue(f'Unknown node kind "{node.kind}"', node_id=node.id))
            continue
        config, config_errors = _parse_config(kind, node.config)
        issues.extend(CompileIssue(message, node_id=node.id) for message in config_errors)
        nodes[node.id] = CompiledNode(id=node.id, kind=kind, config=config)
        digraph.add_node(node.id)

    for edge in graph.edges:
        if edge.source not in nodes or edge.target not in nodes:
            issues.append(CompileIssue(f'Edge "{edge.id}" references a missing node', edge_id=edge.id))
            continue
        digraph.add_edge(edge.source, edge.target, key=edge.id)

    entry = nodes.get(graph.entry_node_id)
    if entry is None:
        issues.append(CompileIssue(f'entryNodeId "{graph.entry_node_id}" does not exist'))
    elif entry.kind is not GraphNodeKind.START:
        issues.append(CompileIssue("entryNodeId must reference a control.start node", node_id=entry.id))
    elif digraph.out_degree(entry.id) == 0:
        issues.append(CompileIssue("control.start must have at least one outgoing connection", node_id=entry.id))

    ret = nodes.get(graph.return_node_id)
    if ret is None:
        issues.append(CompileIssue(f'returnNodeId "{graph.return_node_id}" does not exist'))
    elif ret.kind is not GraphNodeKind.OUTPUT:
        issues.append(CompileIssue("returnNodeId must reference an output.options node", node_id=ret.id))

    if sum(1 for node in nodes.values() if node.kind is GraphNodeKind.OUTPUT) != 1:
        issues.append(CompileIssue("Graph must contain exactly one output.options node"))

    if connectors:
        for node in nodes.values():
            if node.kind is GraphNodeKind.HTTP_GET and node.config is not None and node.config.connector_id not in connectors:
                issues.append(
                    CompileIssue(f'source.http_get references missing connector "{node.config.connector_id}"', node_id=node.id)
                )

    incoming: dict[str, str] = {}
    for node in nodes.values():
        input_type = _INPUT_TYPES[node.kind]
        in_edges = list(digraph.in_edges(node.id, keys=True))
        if input_type is None:
            if in_edges:
                issues.append(CompileIssue(f"{node.kind} should not have incoming edges", node_id=node.id))
            continue
        if not in_edges:
            issues.append(CompileIssue(f"{node.kind} requires an incoming connection", node_id=node.id))
            continue
        if len(in_edges) > 1:
            issues.append(CompileIssue(f"{node.kind} accepts only one incoming connection in v1", node_id=node.id))
        for source_id, _, edge_id in in_edges:
            source_type = _OUTPUT_TYPES[nodes[source_id].kind]
            if not _port_compatible(source_type, input_type):
                issues.append(
                    CompileIssue(
                        f"Type mismatch: {nodes[source_id].kind} ({source_type}) -> {node.kind} ({input_type})",
                        node_id=node.id,
                        edge_id=edge_id,
                    )
                )
        incoming[node.id] = in_edges[0][0]

    acyclic = nx.is_directed_acyclic_graph(digraph)
    if not acyclic:
        issues.append(CompileIssue("Graph contains a cycle"))

    reachable: set[str] = set()
    if entry is not None:
        reachable = nx.descendants(digraph, entry.id) | {entry.id}
    if ret is not None and ret.id not in reachable:
        issues.append(CompileIssue("Return node is not reachable from entry node", node_id=ret.id))

    if issues or ret is None or entry is None:
        logger.debug("graph_compile_failed", function_id=definition.id, issues=len(issues))
        return GraphCompileResult(plan=None, issues=tuple(issues))

    on_return_path = nx.ancestors(digraph, ret.id) | {ret.id}
    order = tuple(node_id for node_id in nx.topological_sort(digraph) if node_id in reachable and node_id in on_return_path)
    executed = [nodes[node_id] for node_id in order]

    plan = CompiledGraphPlan(
        function_id=definition.id,
        execution_order=order,
        nodes_by_id=MappingProxyType(nodes),
        incoming=MappingProxyType(incoming),
        return_node_id=ret.id,
        requires_remote=any(node.kind in REMOTE_NODE_KINDS for node in executed),
        uses_runtime_row=any(node.kind is GraphNodeKind.CURRENT_CONTEXT for node in executed),
    )
    if cache is not None:
        cache.put(key, plan)
    return GraphCompileResult(plan=plan)
