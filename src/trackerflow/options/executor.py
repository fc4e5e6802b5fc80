# src/trackerflow/options/executor.py
"""Execution engine for dynamic-options functions.

execute_function() interprets either a flat ``source -> transforms ->
output`` definition or a compiled ``graph_v1`` plan and returns the mapped
option list. Network access is opt-in: without ``allow_http_get`` a
definition that needs the network reports ``requires_remote`` instead of
calling out, so the same code can run where remote calls must be deferred
to a trusted server.

Runtime problems (missing grid, missing connector, remote failures, graph
compile issues) become warnings on an empty or partial result; the
executor never raises for them.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeAlias

import structlog

from trackerflow.contracts.dynamic_options import (
    AiExtractConfig,
    BuiltinRefSource,
    Connector,
    CurrentContextConfig,
    FunctionDefinition,
    GridRowsSource,
    HttpGetSource,
    LayoutFieldsSource,
    OutputNodeConfig,
)
from trackerflow.contracts.enums import GraphNodeKind
from trackerflow.contracts.results import ExecutionResult, OptionItem
from trackerflow.core.cache import BoundedCache
from trackerflow.core.config import TrackerflowSettings
from trackerflow.core.paths import get_by_path
from trackerflow.options.builtins import is_builtin, resolve_builtin
from trackerflow.options.context import OptionsContext
from trackerflow.options.graph import CompiledGraphPlan, CompiledNode, compile_graph
from trackerflow.options.http import Fetcher, HttpxFetcher, fetch_json
from trackerflow.options.secrets import SecretResolver
from trackerflow.options.transforms import (
    Row,
    apply_transform,
    apply_transforms,
    layout_rows,
    map_rows_to_options,
    normalize_rows,
)

logger = structlog.get_logger(__name__)

AiExtractor: TypeAlias = Callable[[dict[str, Any]], Awaitable[list[Any]] | list[Any]]


def requires_server_message(function_id: str) -> str:
    return f'Function "{function_id}" requires server execution'


def _grid_rows(context: OptionsContext, grid_id: str, warnings: list[str]) -> list[Row]:
    if grid_id not in context.tracker.grids_by_id and grid_id not in context.grid_data:
        warnings.append(f'Grid "{grid_id}" not found')
        return []
    return normalize_rows(context.rows_for_grid(grid_id))


def _current_context(config: CurrentContextConfig, context: OptionsContext) -> dict[str, Any]:
    runtime = context.runtime
    value: dict[str, Any] = {
        "gridId": runtime.current_grid_id,
        "fieldId": runtime.current_field_id,
        "rowIndex": runtime.row_index,
    }
    if config.include_row_values:
        value["row"] = dict(runtime.current_row or {})
    if config.include_field_metadata:
        value["fields"] = [
            {"id": field.id, "label": field.label, "dataType": field.data_type, "config": dict(field.config)}
            for field in context.tracker.fields
        ]
    if config.include_layout_metadata:
        value["layout"] = [{"gridId": node.grid_id, "fieldId": node.field_id} for node in context.tracker.layout_nodes]
    return value


class _Execution:
    """State of one execute_function call."""

    def __init__(
        self,
        definition: FunctionDefinition,
        context: OptionsContext,
        *,
        args: Mapping[str, Any],
        connectors: Mapping[str, Connector],
        fetcher: Fetcher,
        secret_resolver: SecretResolver | None,
        ai_extractor: AiExtractor | None,
        settings: TrackerflowSettings,
    ) -> None:
        self.definition = definition
        self.context = context
        self.args = args
        self.connectors = connectors
        self.fetcher = fetcher
        self.secret_resolver = secret_resolver
        self.ai_extractor = ai_extractor
        self.settings = settings
        self.lookup = context.lookup()
        self.warnings: list[str] = []

    async def http_get(self, source: HttpGetSource) -> Any:
        return await fetch_json(
            source,
            self.connectors,
            args=self.args,
            context=self.lookup,
            fetcher=self.fetcher,
            secret_resolver=self.secret_resolver,
            settings=self.settings.http,
            warnings=self.warnings,
        )

    async def flat(self) -> list[OptionItem]:
        definition = self.definition
        source = definition.source
        rows: list[Row] = []
        if isinstance(source, BuiltinRefSource):
            if not is_builtin(source.function_id):
                self.warnings.append(f'Builtin function "{source.function_id}" was not found')
            rows = [option.to_dict() for option in resolve_builtin(source.function_id, self.context.tracker)]
        elif isinstance(source, GridRowsSource):
            rows = _grid_rows(self.context, source.grid_id, self.warnings)
        elif isinstance(source, LayoutFieldsSource):
            rows = layout_rows(
                self.context.tracker,
                include_hidden=source.include_hidden,
                exclude_shared_tab=source.exclude_shared_tab,
            )
        elif isinstance(source, HttpGetSource):
            payload = await self.http_get(source)
            if payload is not None and not isinstance(payload, list):
                self.warnings.append("HTTP response did not resolve to a list")
            rows = normalize_rows(payload)

        rows = apply_transforms(rows, definition.transforms, self.args, self.lookup)
        if definition.output is None:
            return []
        return map_rows_to_options(rows, definition.output, self.args, self.lookup)

    async def graph(self, plan: CompiledGraphPlan) -> list[OptionItem]:
        values: dict[str, Any] = {}
        for node_id in plan.execution_order:
            node = plan.nodes_by_id[node_id]
            upstream = plan.incoming.get(node_id)
            value = values.get(upstream) if upstream is not None else None
            values[node_id] = await self.run_node(node, value)

        result = values.get(plan.return_node_id)
        if not isinstance(result, list):
            return []
        return [item for item in result if isinstance(item, OptionItem)]

    async def run_node(self, node: CompiledNode, value: Any) -> Any:
        config = node.config
        match node.kind:
            case GraphNodeKind.START:
                return {"args": dict(self.args), "runtime": self.context.runtime.to_dict()}
            case GraphNodeKind.GRID_ROWS:
                return _grid_rows(self.context, config.grid_id, self.warnings)
            case GraphNodeKind.CURRENT_CONTEXT:
                return _current_context(config, self.context)
            case GraphNodeKind.LAYOUT_FIELDS:
                return layout_rows(
                    self.context.tracker,
                    include_hidden=config.include_hidden,
                    exclude_shared_tab=config.exclude_shared_tab,
                )
            case GraphNodeKind.HTTP_GET:
                return await self.http_get(config)
            case (
                GraphNodeKind.FILTER
                | GraphNodeKind.MAP_FIELDS
                | GraphNodeKind.UNIQUE
                | GraphNodeKind.SORT
                | GraphNodeKind.LIMIT
                | GraphNodeKind.FLATTEN_PATH
            ):
                return apply_transform(value, config, self.args, self.lookup)
            case GraphNodeKind.AI_EXTRACT:
                return await self.ai_extract(config, value)
            case GraphNodeKind.OUTPUT:
                return self.output(config, value)

    async def ai_extract(self, config: AiExtractConfig, value: Any) -> list[Row]:
        if self.ai_extractor is None:
            self.warnings.append("AI extractor is not configured for ai.extract_options node")
            return []
        extracted = self.ai_extractor(
            {
                "prompt": config.prompt,
                "input": get_by_path(value, config.input_path) if config.input_path else value,
                "maxRows": config.max_rows or self.settings.options.ai_max_rows,
            }
        )
        if inspect.isawaitable(extracted):
            extracted = await extracted
        return normalize_rows(extracted)

    def output(self, config: OutputNodeConfig, value: Any) -> list[OptionItem]:
        return map_rows_to_options(normalize_rows(value), config.mapping, self.args, self.lookup)


async def execute_function(
    definition: FunctionDefinition,
    context: OptionsContext,
    *,
    args: Mapping[str, Any] | None = None,
    allow_http_get: bool = False,
    connectors: Mapping[str, Connector] | None = None,
    fetcher: Fetcher | None = None,
    secret_resolver: SecretResolver | None = None,
    ai_extractor: AiExtractor | None = None,
    settings: TrackerflowSettings | None = None,
    plan_cache: BoundedCache[str, CompiledGraphPlan] | None = None,
) -> ExecutionResult:
    """Execute one dynamic-options definition.

    Args:
        definition: Flat or graph_v1 function definition
        context: Tracker, grid rows and runtime position
        args: Call arguments for ``fromArg`` selectors and ``{{arg.x}}``
        allow_http_get: Permit network access; otherwise remote definitions
            return ``requires_remote``
        connectors: Extra connectors, overriding the tracker's by id
        fetcher: Performs HTTP GETs (defaults to an httpx-backed fetcher)
        secret_resolver: Resolves connector secret refs
        ai_extractor: Backs ``ai.extract_options`` nodes
        settings: Limits and timeouts (defaults to TrackerflowSettings())
        plan_cache: Cache for compiled graph plans

    Returns:
        ExecutionResult with options capped at ``settings.options.max_items``
    """
    settings = settings or TrackerflowSettings()
    args = dict(args or {})

    if not definition.enabled:
        return ExecutionResult(warnings=(f'Function "{definition.id}" is disabled',))

    merged_connectors = {**context.connectors, **(connectors or {})}
    execution = _Execution(
        definition,
        context,
        args=args,
        connectors=merged_connectors,
        fetcher=fetcher or HttpxFetcher(user_agent=settings.http.user_agent),
        secret_resolver=secret_resolver,
        ai_extractor=ai_extractor,
        settings=settings,
    )

    if definition.is_graph:
        compiled = compile_graph(definition, merged_connectors.keys(), cache=plan_cache)
        if compiled.plan is None:
            logger.info("options_graph_invalid", function_id=definition.id, issues=compiled.messages)
            return ExecutionResult(warnings=tuple(compiled.messages))
        if compiled.plan.requires_remote and not allow_http_get:
            return ExecutionResult(requires_remote=True, warnings=(requires_server_message(definition.id),))
        options = await execution.graph(compiled.plan)
    else:
        if isinstance(definition.source, HttpGetSource) and not allow_http_get:
            return ExecutionResult(requires_remote=True, warnings=(requires_server_message(definition.id),))
        options = await execution.flat()

    if execution.warnings:
        logger.info("options_executed_with_warnings", function_id=definition.id, warnings=execution.warnings)
    return ExecutionResult(
        options=tuple(options[: settings.options.max_items]),
        warnings=tuple(execution.warnings),
    )
