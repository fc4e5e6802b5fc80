"""Closed vocabularies shared across subsystem boundaries.

Every tagged variant in the tracker data model (expression operators,
validation rule types, pipeline transforms, graph node kinds) is declared
here once. Dispatch tables elsewhere are keyed by these enums so adding a
member without a handler is caught at import time.
"""

from enum import StrEnum


class ExprOp(StrEnum):
    """Canonical expression operators.

    Symbolic aliases (``==``, ``>=`` ...) are folded into these by the
    normalizer and by the evaluator's op lookup.
    """

    CONST = "const"
    FIELD = "field"
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    AND = "and"
    OR = "or"
    NOT = "not"
    IF = "if"
    REGEX = "regex"


class ValidationRuleType(StrEnum):
    """Field validation rule types."""

    REQUIRED = "required"
    MIN = "min"
    MAX = "max"
    MIN_LENGTH = "minLength"
    MAX_LENGTH = "maxLength"
    EXPR = "expr"


class CompareOp(StrEnum):
    """Operators usable in filter predicates and rule conditions."""

    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IS_EMPTY = "is_empty"
    NOT_EMPTY = "not_empty"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"


class SourceKind(StrEnum):
    """Row sources of a flat dynamic-options pipeline."""

    GRID_ROWS = "grid_rows"
    HTTP_GET = "http_get"
    LAYOUT_FIELDS = "layout_fields"
    BUILTIN_REF = "builtin_ref"


class TransformKind(StrEnum):
    """Row transforms shared by flat pipelines and graph nodes."""

    FILTER = "filter"
    MAP_FIELDS = "map_fields"
    UNIQUE = "unique"
    SORT = "sort"
    LIMIT = "limit"
    FLATTEN_PATH = "flatten_path"


class GraphNodeKind(StrEnum):
    """Node kinds of a ``graph_v1`` dynamic-options definition."""

    START = "control.start"
    GRID_ROWS = "source.grid_rows"
    CURRENT_CONTEXT = "source.current_context"
    LAYOUT_FIELDS = "source.layout_fields"
    HTTP_GET = "source.http_get"
    FILTER = "transform.filter"
    MAP_FIELDS = "transform.map_fields"
    UNIQUE = "transform.unique"
    SORT = "transform.sort"
    LIMIT = "transform.limit"
    FLATTEN_PATH = "transform.flatten_path"
    AI_EXTRACT = "ai.extract_options"
    OUTPUT = "output.options"


class PortType(StrEnum):
    """Data carried along a graph edge."""

    OBJECT = "object"
    ROWS = "rows"
    OPTIONS = "options"
    ANY = "any"


class OptionsEngine(StrEnum):
    """Execution engine of a dynamic-options function."""

    DSL_V1 = "dsl_v1"
    GRAPH_V1 = "graph_v1"


class ResolutionSource(StrEnum):
    """Where a resolved option list came from."""

    BUILTIN = "builtin"
    LOCAL_CUSTOM = "local_custom"
    REMOTE = "remote"
    UNKNOWN = "unknown"
