"""Typed definitions for dynamic-options functions and connectors.

Definitions arrive as camelCase JSON (authored by hand or emitted by the AI
layer). Every model accepts both the camelCase alias and the snake_case
field name, rejects unknown keys, and is frozen after validation.

Example usage:
    definition = FunctionDefinition.from_dict(raw)
    if definition.is_graph:
        ...
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveInt,
    StringConstraints,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from trackerflow.contracts.enums import CompareOp, OptionsEngine
from trackerflow.contracts.errors import DefinitionError

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class DefinitionModel(BaseModel):
    """Base class for dynamic-options definition models."""

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @classmethod
    def from_dict(cls, data: Any) -> Self:
        """Validate a raw JSON mapping.

        Raises:
            DefinitionError: If the mapping does not describe a valid instance.
        """
        if not isinstance(data, dict):
            raise DefinitionError(f"Invalid {cls.__name__}: expected an object, got {type(data).__name__}.")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise DefinitionError(f"Invalid {cls.__name__}: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# === Value selectors ===


class ConstSelector(DefinitionModel):
    const: Any


class ArgSelector(DefinitionModel):
    from_arg: NonEmptyStr


class ContextSelector(DefinitionModel):
    from_context: NonEmptyStr


# A bare string is a dotted path read off the current row.
ValueSelector = str | ConstSelector | ArgSelector | ContextSelector


class OutputMapping(DefinitionModel):
    """Projection of a row onto an option item."""

    label: ValueSelector
    value: ValueSelector
    id: ValueSelector | None = None
    extra: dict[str, ValueSelector] | None = None


# === Sources ===


class BuiltinRefSource(DefinitionModel):
    kind: Literal["builtin_ref"]
    function_id: NonEmptyStr


class GridRowsSource(DefinitionModel):
    kind: Literal["grid_rows"]
    grid_id: NonEmptyStr


class LayoutFieldsSource(DefinitionModel):
    kind: Literal["layout_fields"]
    include_hidden: bool = False
    exclude_shared_tab: bool = True


class HttpGetSource(DefinitionModel):
    """GET request through a named connector.

    ``query`` and ``headers`` values may contain ``{{arg.x}}`` and
    ``{{context.x}}`` placeholders.
    """

    kind: Literal["http_get"]
    connector_id: NonEmptyStr
    path: str = ""
    query: dict[str, str] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    response_path: str | None = None


SourceSpec = Annotated[
    BuiltinRefSource | GridRowsSource | LayoutFieldsSource | HttpGetSource,
    Field(discriminator="kind"),
]


# === Transforms ===


class FilterPredicate(DefinitionModel):
    field: NonEmptyStr
    op: CompareOp
    value: Any = None
    value_from_arg: NonEmptyStr | None = None
    value_from_context: NonEmptyStr | None = None


class FilterTransform(DefinitionModel):
    """Keep rows matching all (``and``) or any (``or``) predicates.

    When ``expr`` is set it takes precedence and is evaluated against each
    row as an expression node.
    """

    kind: Literal["filter"]
    mode: Literal["and", "or"] = "and"
    predicates: list[FilterPredicate] = Field(default_factory=list)
    expr: dict[str, Any] | None = None


class MapFieldsTransform(DefinitionModel):
    kind: Literal["map_fields"]
    mappings: dict[str, ValueSelector]


class UniqueTransform(DefinitionModel):
    kind: Literal["unique"]
    by: NonEmptyStr


class SortTransform(DefinitionModel):
    kind: Literal["sort"]
    by: NonEmptyStr
    direction: Literal["asc", "desc"] = "asc"
    value_type: Literal["string", "number"] = "string"


class LimitTransform(DefinitionModel):
    kind: Literal["limit"]
    count: PositiveInt


class FlattenPathTransform(DefinitionModel):
    kind: Literal["flatten_path"]
    path: NonEmptyStr


TransformSpec = Annotated[
    FilterTransform | MapFieldsTransform | UniqueTransform | SortTransform | LimitTransform | FlattenPathTransform,
    Field(discriminator="kind"),
]


# === Graph (graph_v1) ===


class GraphPosition(DefinitionModel):
    x: float
    y: float


class GraphNode(DefinitionModel):
    """A graph node as authored.

    ``kind`` and ``config`` stay loosely typed here; the graph compiler
    checks them per kind and reports problems as compile issues.
    """

    id: NonEmptyStr
    kind: NonEmptyStr
    position: GraphPosition | None = None
    config: dict[str, Any] | None = None


class GraphEdge(DefinitionModel):
    id: NonEmptyStr
    source: NonEmptyStr
    target: NonEmptyStr
    source_handle: str | None = None
    target_handle: str | None = None


class GraphSpec(DefinitionModel):
    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)
    entry_node_id: NonEmptyStr
    return_node_id: NonEmptyStr


class CurrentContextConfig(DefinitionModel):
    include_row_values: bool = True
    include_field_metadata: bool = True
    include_layout_metadata: bool = True


class StartConfig(DefinitionModel):
    pass


class AiExtractConfig(DefinitionModel):
    prompt: NonEmptyStr
    input_path: str | None = None
    max_rows: PositiveInt | None = None


class OutputNodeConfig(DefinitionModel):
    mapping: OutputMapping


# === Functions and connectors ===


class CacheSpec(DefinitionModel):
    ttl_seconds: PositiveInt | None = None
    strategy: Literal["ttl"] | None = None


class FunctionDefinition(DefinitionModel):
    """A tracker-local dynamic-options function.

    Flat (``dsl_v1``) definitions carry ``source``/``transforms``/``output``;
    ``graph_v1`` definitions carry ``graph``. The two shapes are exclusive.
    """

    id: NonEmptyStr
    name: NonEmptyStr
    description: str | None = None
    version: PositiveInt = 1
    cache: CacheSpec | None = None
    enabled: bool = True
    engine: OptionsEngine | None = None
    source: SourceSpec | None = None
    transforms: list[TransformSpec] = Field(default_factory=list)
    output: OutputMapping | None = None
    graph: GraphSpec | None = None

    @model_validator(mode="after")
    def validate_shape(self) -> FunctionDefinition:
        if self.engine is OptionsEngine.GRAPH_V1:
            if self.graph is None:
                raise ValueError("graph_v1 functions require 'graph'")
            if self.source is not None or self.output is not None or self.transforms:
                raise ValueError("graph_v1 functions cannot declare source, transforms or output")
            return self
        if self.graph is not None:
            raise ValueError("'graph' requires engine 'graph_v1'")
        if self.source is None or self.output is None:
            raise ValueError("flat functions require both 'source' and 'output'")
        return self

    @property
    def is_graph(self) -> bool:
        return self.engine is OptionsEngine.GRAPH_V1


class NoAuth(DefinitionModel):
    type: Literal["none"]


class SecretRefAuth(DefinitionModel):
    type: Literal["secret_ref"]
    secret_ref_id: NonEmptyStr


class Connector(DefinitionModel):
    """Named description of an external REST API."""

    id: NonEmptyStr
    name: str | None = None
    type: Literal["rest"] = "rest"
    base_url: NonEmptyStr
    auth: Annotated[NoAuth | SecretRefAuth, Field(discriminator="type")] = NoAuth(type="none")
    default_headers: dict[str, str] = Field(default_factory=dict)
    allow_hosts: list[NonEmptyStr] | None = None

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"baseUrl must be an absolute http(s) URL, got {v!r}")
        return v


class DynamicOptionsDefinitions(DefinitionModel):
    functions: dict[str, FunctionDefinition] = Field(default_factory=dict)
    connectors: dict[str, Connector] = Field(default_factory=dict)
