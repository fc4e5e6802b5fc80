"""Dynamic select options: builtins, flat pipelines and graph_v1 functions."""

from trackerflow.options.builtins import BUILTIN_FUNCTIONS, is_builtin, resolve_builtin
from trackerflow.options.context import OptionsContext, RuntimeContext
from trackerflow.options.executor import execute_function
from trackerflow.options.graph import CompiledGraphPlan, GraphCompileResult, compile_graph
from trackerflow.options.http import HttpxFetcher
from trackerflow.options.resolver import DynamicOptionsResolver, RemoteRequest
from trackerflow.options.secrets import EnvSecretResolver, env_secret_resolver

__all__ = [
    "BUILTIN_FUNCTIONS",
    "CompiledGraphPlan",
    "DynamicOptionsResolver",
    "EnvSecretResolver",
    "GraphCompileResult",
    "HttpxFetcher",
    "OptionsContext",
    "RemoteRequest",
    "RuntimeContext",
    "compile_graph",
    "env_secret_resolver",
    "execute_function",
    "is_builtin",
    "resolve_builtin",
]
