# src/trackerflow/options/http.py
"""HTTP source for dynamic options.

Performs the single GET behind an ``http_get`` source: builds the URL from
the connector's base URL, interpolates ``{{arg.x}}``/``{{context.x}}``
placeholders, enforces the connector's host allowlist, attaches auth from
a secret ref and parses the body as strict JSON.

Every failure is reported as a warning string and a None payload; nothing
here raises for remote data problems. Cancellation (asyncio.CancelledError)
propagates to the caller untouched.
"""

from __future__ import annotations

import inspect
import json
import math
import re
from collections.abc import Awaitable, Callable, Mapping
from json import JSONDecodeError
from typing import Any, TypeAlias
from urllib.parse import urljoin

import httpx
import structlog

from trackerflow.contracts.dynamic_options import Connector, HttpGetSource, SecretRefAuth
from trackerflow.core.config import HttpSettings
from trackerflow.core.paths import get_by_path, to_plain_string
from trackerflow.options.secrets import SecretResolver

logger = structlog.get_logger(__name__)

Fetcher: TypeAlias = Callable[[str, Mapping[str, str], float], Awaitable[httpx.Response]]

_TEMPLATE_PATTERN = re.compile(r"\{\{\s*(arg|context)\.([^\s{}]+)\s*\}\}")

# Exact header names that carry credentials (case-insensitive)
_SENSITIVE_HEADERS_EXACT = frozenset(
    {
        "authorization",
        "proxy-authorization",
        "cookie",
        "x-api-key",
        "api-key",
        "x-auth-token",
        "x-access-token",
    }
)

# Delimiter-separated words that mark a header as sensitive
_SENSITIVE_HEADER_WORDS = frozenset({"auth", "apikey", "key", "secret", "token", "password", "credential"})


def is_sensitive_header(header_name: str) -> bool:
    """True if a header name likely carries a credential.

    Word matching avoids false positives like "X-Author" or "Monkey".
    """
    lower_name = header_name.lower()
    if lower_name in _SENSITIVE_HEADERS_EXACT:
        return True
    segments = [seg for seg in re.split(r"[^a-z0-9]+", lower_name) if seg]
    return any(seg in _SENSITIVE_HEADER_WORDS for seg in segments)


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {k: ("<redacted>" if is_sensitive_header(k) else v) for k, v in headers.items()}


def _contains_non_finite(obj: Any) -> bool:
    if isinstance(obj, float):
        return math.isnan(obj) or math.isinf(obj)
    if isinstance(obj, dict):
        return any(_contains_non_finite(v) for v in obj.values())
    if isinstance(obj, list):
        return any(_contains_non_finite(v) for v in obj)
    return False


def parse_json_strict(text: str) -> tuple[Any, str | None]:
    """Parse JSON, rejecting NaN and Infinity.

    Returns:
        (parsed, None) on success, (None, error_message) on failure
    """
    try:
        parsed = json.loads(text)
    except JSONDecodeError as e:
        return None, str(e)
    if _contains_non_finite(parsed):
        return None, "JSON contains non-finite values (NaN or Infinity)"
    return parsed, None


def interpolate_template(template: str, args: Mapping[str, Any], context: Any) -> str:
    """Replace ``{{arg.name}}`` and ``{{context.dotted.path}}`` placeholders.

    Missing values interpolate as the empty string.
    """

    def replace(match: re.Match[str]) -> str:
        namespace, path = match.group(1), match.group(2)
        if namespace == "arg":
            return to_plain_string(args.get(path))
        return to_plain_string(get_by_path(context, path))

    return _TEMPLATE_PATTERN.sub(replace, template)


def host_of(url: httpx.URL) -> str:
    """Host with explicit non-default port, as compared against allowHosts."""
    return f"{url.host}:{url.port}" if url.port is not None else url.host


class HttpxFetcher:
    """Default fetcher backed by httpx.AsyncClient.

    Redirects are not followed so a redirect cannot escape the connector's
    host allowlist. Pass a shared client to reuse connections; otherwise a
    client is opened per request.
    """

    def __init__(self, client: httpx.AsyncClient | None = None, *, user_agent: str | None = None) -> None:
        self._client = client
        self._user_agent = user_agent

    async def __call__(self, url: str, headers: Mapping[str, str], timeout: float) -> httpx.Response:
        request_headers = dict(headers)
        if self._user_agent and not any(k.lower() == "user-agent" for k in request_headers):
            request_headers["User-Agent"] = self._user_agent
        if self._client is not None:
            return await self._client.get(url, headers=request_headers, timeout=timeout, follow_redirects=False)
        async with httpx.AsyncClient(follow_redirects=False) as client:
            return await client.get(url, headers=request_headers, timeout=timeout)


async def _resolve_secret(resolver: SecretResolver, secret_ref_id: str) -> str | None:
    value = resolver(secret_ref_id)
    if inspect.isawaitable(value):
        value = await value
    return value if isinstance(value, str) and value else None


async def fetch_json(
    source: HttpGetSource,
    connectors: Mapping[str, Connector],
    *,
    args: Mapping[str, Any],
    context: Any,
    fetcher: Fetcher,
    secret_resolver: SecretResolver | None,
    settings: HttpSettings,
    warnings: list[str],
) -> Any:
    """Run one http_get source and return its (response-path) payload.

    Args:
        source: The http_get source or graph node config
        connectors: Connector definitions by id
        args: Call arguments for ``{{arg.x}}`` placeholders
        context: Context lookup tree for ``{{context.x}}`` placeholders
        fetcher: Performs the GET
        secret_resolver: Resolves ``secret_ref`` auth; may be None
        settings: Timeout and response size limit
        warnings: Receives a message for every problem

    Returns:
        The parsed payload (after responsePath), or None on failure
    """
    connector = connectors.get(source.connector_id)
    if connector is None:
        warnings.append(f'Connector "{source.connector_id}" not found')
        return None

    try:
        url = httpx.URL(urljoin(connector.base_url, source.path or ""))
        for key, value in source.query.items():
            url = url.copy_set_param(key, interpolate_template(value, args, context))
        host = host_of(url)
    except (ValueError, httpx.InvalidURL) as e:
        logger.warning("http_get_invalid_url", connector_id=connector.id, error=str(e))
        warnings.append(f'Connector "{connector.id}" produced an invalid URL')
        return None

    if connector.allow_hosts and host not in connector.allow_hosts:
        warnings.append(f'Host "{host}" is not allowlisted for connector "{connector.id}"')
        return None

    headers = dict(connector.default_headers)
    for key, value in source.headers.items():
        headers[key] = interpolate_template(value, args, context)

    if isinstance(connector.auth, SecretRefAuth):
        secret_ref_id = connector.auth.secret_ref_id
        secret: str | None = None
        if secret_resolver is not None:
            try:
                secret = await _resolve_secret(secret_resolver, secret_ref_id)
            except Exception as e:
                logger.warning("secret_resolution_failed", connector_id=connector.id, error_type=type(e).__name__)
        if secret is None:
            warnings.append(f'Secret "{secret_ref_id}" could not be resolved; request sent without Authorization')
        elif not any(k.lower() == "authorization" for k in headers):
            headers["Authorization"] = f"Bearer {secret}"

    logger.debug(
        "http_get_request",
        connector_id=connector.id,
        url=str(url),
        headers=redact_headers(headers),
    )

    try:
        response = await fetcher(str(url), headers, settings.timeout_seconds)
    except Exception as e:
        # asyncio.CancelledError is a BaseException and propagates
        logger.warning("http_get_failed", connector_id=connector.id, host=host, error_type=type(e).__name__)
        warnings.append(f"HTTP request failed: {type(e).__name__}")
        return None

    if not response.is_success:
        warnings.append(f"HTTP source failed with status {response.status_code}")
        return None

    if len(response.content) > settings.max_response_bytes:
        warnings.append("HTTP response exceeded max size")
        return None

    payload, error = parse_json_strict(response.text)
    if error is not None:
        logger.debug("http_get_invalid_json", connector_id=connector.id, error=error)
        warnings.append("HTTP response is not valid JSON")
        return None

    if source.response_path:
        payload = get_by_path(payload, source.response_path)
        if not isinstance(payload, list):
            warnings.append(f'HTTP response path "{source.response_path}" did not resolve to a list')
            return None

    return payload
