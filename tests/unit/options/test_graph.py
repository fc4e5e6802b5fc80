# tests/unit/options/test_graph.py
"""Tests for the graph_v1 compiler.

compile_graph() never raises for a bad graph: every structural problem is
reported as a CompileIssue, and a plan is produced only when there are none.
"""

from typing import Any

from trackerflow.contracts.dynamic_options import FunctionDefinition
from trackerflow.core.cache import BoundedCache
from trackerflow.options.graph import compile_graph

START = {"id": "start", "kind": "control.start"}
ROWS = {"id": "rows", "kind": "source.grid_rows", "config": {"gridId": "currency_grid"}}
UNIQUE = {"id": "unique", "kind": "transform.unique", "config": {"by": "code"}}
SORT = {"id": "sort", "kind": "transform.sort", "config": {"by": "code"}}
OUT = {"id": "out", "kind": "output.options", "config": {"mapping": {"label": "code", "value": "code"}}}


def edge(source: str, target: str) -> dict[str, Any]:
    return {"id": f"{source}->{target}", "source": source, "target": target}


def chain(*node_ids: str) -> list[dict[str, Any]]:
    return [edge(source, target) for source, target in zip(node_ids, node_ids[1:], strict=False)]


def definition(nodes: list[dict[str, Any]], edges: list[dict[str, Any]], entry: str = "start", ret: str = "out") -> FunctionDefinition:
    return FunctionDefinition.from_dict(
        {
            "id": "fn",
            "name": "Fn",
            "engine": "graph_v1",
            "graph": {"nodes": nodes, "edges": edges, "entryNodeId": entry, "returnNodeId": ret},
        }
    )


def messages(nodes: list[dict[str, Any]], edges: list[dict[str, Any]], **kwargs: Any) -> list[str]:
    result = compile_graph(definition(nodes, edges, **kwargs.pop("ends", {})), **kwargs)
    assert result.plan is None
    return [str(issue) for issue in result.issues]


class TestValidGraph:
    def test_plan(self) -> None:
        result = compile_graph(definition([START, ROWS, UNIQUE, SORT, OUT], chain("start", "rows", "unique", "sort", "out")))
        assert result.ok
        plan = result.plan
        assert plan is not None
        assert plan.execution_order == ("start", "rows", "unique", "sort", "out")
        assert plan.incoming["out"] == "sort"
        assert "start" not in plan.incoming
        assert plan.requires_remote is False
        assert plan.uses_runtime_row is False

    def test_nodes_off_the_return_path_are_not_executed(self) -> None:
        http = {"id": "http", "kind": "source.http_get", "config": {"connectorId": "fx", "path": "rates"}}
        edges = [*chain("start", "rows", "out"), edge("start", "http")]
        plan = compile_graph(definition([START, ROWS, OUT, http], edges)).plan
        assert plan is not None
        assert "http" not in plan.execution_order
        assert plan.requires_remote is False

    def test_remote_and_runtime_flags(self) -> None:
        http = {"id": "http", "kind": "source.http_get", "config": {"connectorId": "fx", "path": "rates"}}
        plan = compile_graph(definition([START, http, OUT], chain("start", "http", "out")), ["fx"]).plan
        assert plan is not None
        assert plan.requires_remote is True

        context = {"id": "ctx", "kind": "source.current_context"}
        flatten = {"id": "flat", "kind": "transform.flatten_path", "config": {"path": "fields"}}
        plan = compile_graph(definition([START, context, flatten, OUT], chain("start", "ctx", "flat", "out"))).plan
        assert plan is not None
        assert plan.uses_runtime_row is True

    def test_plan_cache(self) -> None:
        cache: BoundedCache[str, Any] = BoundedCache(10)
        fn = definition([START, ROWS, OUT], chain("start", "rows", "out"))
        first = compile_graph(fn, cache=cache).plan
        second = compile_graph(fn, cache=cache).plan
        assert first is second
        assert cache.stats().hits == 1


class TestCompileIssues:
    def test_flat_definition_is_rejected(self) -> None:
        fn = FunctionDefinition.from_dict(
            {"id": "fn", "name": "Fn", "source": {"kind": "grid_rows", "gridId": "g"}, "output": {"label": "a", "value": "a"}}
        )
        result = compile_graph(fn)
        assert result.messages == ["Function is not a graph_v1 definition"]

    def test_unknown_kind_and_duplicate_id(self) -> None:
        nodes = [START, ROWS, {"id": "rows", "kind": "source.grid_rows", "config": {"gridId": "x"}}, {"id": "odd", "kind": "magic"}, OUT]
        found = messages(nodes, chain("start", "rows", "out"))
        assert '[node rows] Duplicate node id "rows"' in found
        assert '[node odd] Unknown node kind "magic"' in found

    def test_edge_to_missing_node(self) -> None:
        found = messages([START, ROWS, OUT], [*chain("start", "rows", "out"), edge("rows", "ghost")])
        assert '[edge rows->ghost] Edge "rows->ghost" references a missing node' in found

    def test_entry_and_return_must_exist(self) -> None:
        found = messages([START, ROWS, OUT], chain("start", "rows", "out"), ends={"entry": "nope", "ret": "gone"})
        assert 'entryNodeId "nope" does not exist' in found
        assert 'returnNodeId "gone" does not exist' in found

    def test_entry_and_return_kinds(self) -> None:
        found = messages([START, ROWS, OUT], chain("start", "rows", "out"), ends={"entry": "rows", "ret": "rows"})
        assert "[node rows] entryNodeId must reference a control.start node" in found
        assert "[node rows] returnNodeId must reference an output.options node" in found

    def test_start_needs_an_outgoing_edge(self) -> None:
        found = messages([START, OUT], [])
        assert "[node start] control.start must have at least one outgoing connection" in found
        assert "[node out] output.options requires an incoming connection" in found
        assert "[node out] Return node is not reachable from entry node" in found

    def test_exactly_one_output(self) -> None:
        second = {**OUT, "id": "out2"}
        found = messages([START, ROWS, OUT, second], [*chain("start", "rows", "out"), edge("rows", "out2")])
        assert "Graph must contain exactly one output.options node" in found

    def test_single_incoming_edge(self) -> None:
        found = messages([START, ROWS, SORT, OUT], [*chain("start", "rows", "sort", "out"), edge("rows", "out")])
        assert "[node out] output.options accepts only one incoming connection in v1" in found

    def test_port_type_mismatch(self) -> None:
        found = messages([START, SORT, OUT], chain("start", "sort", "out"))
        assert "[node sort] Type mismatch: control.start (object) -> transform.sort (rows)" in found

    def test_start_takes_no_input(self) -> None:
        found = messages([START, ROWS, OUT], [*chain("start", "rows", "out"), edge("rows", "start")])
        assert "[node start] control.start should not have incoming edges" in found

    def test_cycle(self) -> None:
        other = {**SORT, "id": "sort2"}
        edges = [*chain("start", "rows", "sort", "sort2", "out"), edge("sort2", "sort")]
        assert "Graph contains a cycle" in messages([START, ROWS, SORT, other, OUT], edges)

    def test_config_validation(self) -> None:
        rows = {"id": "rows", "kind": "source.grid_rows", "config": {}}
        http = {"id": "http", "kind": "source.http_get", "config": {"connectorId": "fx"}}
        found = messages([START, rows, http, OUT], [*chain("start", "rows", "out"), edge("start", "http")])
        assert any(message.startswith("[node rows] source.grid_rows config gridId") for message in found)
        assert any(message.startswith("[node http] source.http_get config path") for message in found)

    def test_missing_connector(self) -> None:
        http = {"id": "http", "kind": "source.http_get", "config": {"connectorId": "ghost", "path": "x"}}
        found = messages([START, http, OUT], chain("start", "http", "out"), connector_ids=["fx"])
        assert found == ['[node http] source.http_get references missing connector "ghost"']

    def test_connectors_unchecked_without_a_connector_set(self) -> None:
        http = {"id": "http", "kind": "source.http_get", "config": {"connectorId": "ghost", "path": "x"}}
        assert compile_graph(definition([START, http, OUT], chain("start", "http", "out"))).ok
