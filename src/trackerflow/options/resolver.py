# src/trackerflow/options/resolver.py
"""Resolve a dynamic-options function id to an option list.

Resolution order:
1. Builtin functions (always local, never cached)
2. Tracker-local definitions, executed by execute_function()
3. Definitions that need the network, delegated to a remote resolver when
   one is configured

Local and remote results without warnings are cached in a TtlCache keyed by
function id, canonical args and the context version.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import Any, TypeAlias

import structlog

from trackerflow.contracts.enums import ResolutionSource
from trackerflow.contracts.results import OptionItem, ResolutionMeta, ResolutionResult
from trackerflow.core.cache import BoundedCache, CacheStats, TtlCache
from trackerflow.core.canonical import signature
from trackerflow.core.config import TrackerflowSettings
from trackerflow.options.builtins import is_builtin, resolve_builtin
from trackerflow.options.context import OptionsContext, RuntimeContext
from trackerflow.options.executor import AiExtractor, execute_function
from trackerflow.options.graph import CompiledGraphPlan
from trackerflow.options.http import Fetcher
from trackerflow.options.secrets import SecretResolver

logger = structlog.get_logger(__name__)

# Hard cap applied to every resolved list, independent of settings
MAX_RESOLVED_OPTIONS = 500

MISSING_FUNCTION_ID_MESSAGE = "Missing dynamic options function id"


@dataclass(frozen=True, slots=True)
class RemoteRequest:
    """What a remote resolver receives for a function that must run server-side."""

    function_id: str
    context: OptionsContext
    args: Mapping[str, Any]
    force_refresh: bool = False
    ttl_override: int | None = None


RemoteResolver: TypeAlias = Callable[[RemoteRequest], Awaitable[ResolutionResult]]


def _now() -> datetime:
    return datetime.now(UTC)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


class DynamicOptionsResolver:
    """Resolves option lists for field renderers.

    Example:
        resolver = DynamicOptionsResolver(allow_http_get=True, secret_resolver=env_secret_resolver())
        result = await resolver.resolve("currencies", OptionsContext(tracker))
        result.values  # ["EUR", "USD"]
    """

    def __init__(
        self,
        settings: TrackerflowSettings | None = None,
        *,
        fetcher: Fetcher | None = None,
        secret_resolver: SecretResolver | None = None,
        remote_resolver: RemoteResolver | None = None,
        ai_extractor: AiExtractor | None = None,
        allow_http_get: bool = False,
        result_cache: TtlCache[str, ResolutionResult] | None = None,
        plan_cache: BoundedCache[str, CompiledGraphPlan] | None = None,
    ) -> None:
        self._settings = settings or TrackerflowSettings()
        self._fetcher = fetcher
        self._secret_resolver = secret_resolver
        self._remote_resolver = remote_resolver
        self._ai_extractor = ai_extractor
        self._allow_http_get = allow_http_get
        if result_cache is None:
            result_cache = TtlCache(
                self._settings.cache.result_limit,
                default_ttl_seconds=self._settings.cache.result_ttl_seconds,
                name="options_results",
            )
        if plan_cache is None:
            plan_cache = BoundedCache(self._settings.cache.graph_plan_limit, name="options_graph_plans")
        self._results: TtlCache[str, ResolutionResult] = result_cache
        self._plans: BoundedCache[str, CompiledGraphPlan] = plan_cache

    async def resolve(
        self,
        function_id: str | None,
        context: OptionsContext,
        args: Mapping[str, Any] | None = None,
        *,
        runtime: RuntimeContext | None = None,
        force_refresh: bool = False,
        ttl_override: int | None = None,
    ) -> ResolutionResult:
        """Resolve one function.

        Args:
            function_id: Builtin or tracker-local function id
            context: Tracker, grid rows and runtime position
            args: Call arguments
            runtime: Replaces the context's runtime position for this call
            force_refresh: Skip the cache lookup (the fresh result is still stored)
            ttl_override: Cache TTL in seconds, overriding the definition's

        Returns:
            ResolutionResult; problems are reported as warnings, never raised
        """
        started = time.perf_counter()
        fetched_at = _now()
        if runtime is not None:
            context = context.with_runtime(runtime)
        args = dict(args or {})

        if not function_id:
            return ResolutionResult(
                options=(),
                meta=ResolutionMeta(source=ResolutionSource.UNKNOWN, function_id="", fetched_at=fetched_at),
                warnings=(MISSING_FUNCTION_ID_MESSAGE,),
            )

        if is_builtin(function_id):
            options = resolve_builtin(function_id, context.tracker)
            return ResolutionResult(
                options=tuple(options),
                meta=ResolutionMeta(
                    source=ResolutionSource.BUILTIN,
                    function_id=function_id,
                    fetched_at=fetched_at,
                    duration_ms=_elapsed_ms(started),
                ),
            )

        definition = context.functions.get(function_id)
        if definition is None:
            return ResolutionResult(
                options=(),
                meta=ResolutionMeta(
                    source=ResolutionSource.UNKNOWN,
                    function_id=function_id,
                    fetched_at=fetched_at,
                    duration_ms=_elapsed_ms(started),
                ),
                warnings=(f'Dynamic options function "{function_id}" was not found',),
            )

        ttl = ttl_override or (definition.cache.ttl_seconds if definition.cache else None) or self._settings.cache.result_ttl_seconds
        cache_key = signature([function_id, args, context.version()])

        if not force_refresh:
            cached = self._results.get(cache_key)
            if cached is not None:
                logger.debug("options_cache_hit", function_id=function_id)
                return replace(cached, meta=replace(cached.meta, from_cache=True, duration_ms=_elapsed_ms(started)))

        executed = await execute_function(
            definition,
            context,
            args=args,
            allow_http_get=self._allow_http_get,
            fetcher=self._fetcher,
            secret_resolver=self._secret_resolver,
            ai_extractor=self._ai_extractor,
            settings=self._settings,
            plan_cache=self._plans,
        )

        if executed.requires_remote:
            if self._remote_resolver is None:
                logger.info("options_remote_unavailable", function_id=function_id)
                return ResolutionResult(
                    options=(),
                    meta=ResolutionMeta(
                        source=ResolutionSource.REMOTE,
                        function_id=function_id,
                        fetched_at=fetched_at,
                        duration_ms=_elapsed_ms(started),
                    ),
                    warnings=(f'Function "{function_id}" requires server execution but no remote resolver is configured',),
                )
            remote = await self._remote_resolver(
                RemoteRequest(
                    function_id=function_id,
                    context=context,
                    args=args,
                    force_refresh=force_refresh,
                    ttl_override=ttl_override,
                )
            )
            options: tuple[OptionItem, ...] = tuple(remote.options[:MAX_RESOLVED_OPTIONS])
            warnings = tuple(remote.warnings)
            source = ResolutionSource.REMOTE
        else:
            options = executed.options[:MAX_RESOLVED_OPTIONS]
            warnings = executed.warnings
            source = ResolutionSource.LOCAL_CUSTOM

        meta = ResolutionMeta(
            source=source,
            function_id=function_id,
            fetched_at=fetched_at,
            duration_ms=_elapsed_ms(started),
        )
        if warnings:
            return ResolutionResult(options=options, meta=meta, warnings=warnings)

        result = ResolutionResult(options=options, meta=replace(meta, expires_at=fetched_at + timedelta(seconds=ttl)))
        self._results.put(cache_key, result, ttl)
        return result

    def resolve_sync(self, function_id: str, context: OptionsContext) -> ResolutionResult:
        """Resolve builtins without awaiting; anything else needs resolve()."""
        started = time.perf_counter()
        fetched_at = _now()
        if is_builtin(function_id):
            return ResolutionResult(
                options=tuple(resolve_builtin(function_id, context.tracker)),
                meta=ResolutionMeta(
                    source=ResolutionSource.BUILTIN,
                    function_id=function_id,
                    fetched_at=fetched_at,
                    duration_ms=_elapsed_ms(started),
                ),
            )
        return ResolutionResult(
            options=(),
            meta=ResolutionMeta(source=ResolutionSource.UNKNOWN, function_id=function_id, fetched_at=fetched_at),
            warnings=(f'Function "{function_id}" needs async resolution',),
        )

    def cache_stats(self) -> CacheStats:
        return self._results.stats()

    def clear_cache(self) -> None:
        self._results.clear()
        self._plans.clear()
