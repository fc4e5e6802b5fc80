# tests/unit/options/test_http.py
"""Tests for the http_get source.

Requests go through a real HttpxFetcher; respx intercepts them at the
transport so the URL, headers and response handling are exercised end to end.
"""

import asyncio
from collections.abc import Mapping
from typing import Any

import httpx
import pytest
import respx

from trackerflow.contracts.dynamic_options import Connector, HttpGetSource
from trackerflow.core.config import HttpSettings
from trackerflow.options.http import (
    HttpxFetcher,
    fetch_json,
    interpolate_template,
    is_sensitive_header,
    parse_json_strict,
    redact_headers,
)

CURRENCIES_URL = "https://fx.example.com/api/currencies"


def make_connector(**overrides: Any) -> Connector:
    data: dict[str, Any] = {
        "id": "fx",
        "baseUrl": "https://fx.example.com/api/",
        "auth": {"type": "secret_ref", "secretRefId": "fx-api"},
        "allowHosts": ["fx.example.com"],
    }
    data.update(overrides)
    return Connector.from_dict(data)


def make_source(**overrides: Any) -> HttpGetSource:
    data: dict[str, Any] = {"kind": "http_get", "connectorId": "fx", "path": "currencies"}
    data.update(overrides)
    return HttpGetSource.from_dict(data)


async def run_fetch(
    source: HttpGetSource,
    connector: Connector | None = None,
    *,
    args: dict[str, Any] | None = None,
    secrets: dict[str, str] | None = None,
    settings: HttpSettings | None = None,
    fetcher: Any = None,
    secret_resolver: Any = None,
) -> tuple[Any, list[str]]:
    warnings: list[str] = []
    connectors = {"fx": connector or make_connector()}
    payload = await fetch_json(
        source,
        connectors,
        args=args or {},
        context={"runtime": {"currentGridId": "main_grid"}},
        fetcher=fetcher or HttpxFetcher(),
        secret_resolver=secret_resolver or (secrets or {"fx-api": "s3cret"}).get,
        settings=settings or HttpSettings(),
        warnings=warnings,
    )
    return payload, warnings


class TestTemplates:
    def test_interpolates_args_and_context(self) -> None:
        context = {"runtime": {"currentGridId": "main_grid"}}
        result = interpolate_template("{{arg.base}}/{{ context.runtime.currentGridId }}", {"base": "EUR"}, context)
        assert result == "EUR/main_grid"

    def test_missing_values_are_empty(self) -> None:
        assert interpolate_template("x={{arg.missing}}", {}, {}) == "x="


class TestStrictJson:
    def test_rejects_non_finite(self) -> None:
        payload, error = parse_json_strict('{"rate": NaN}')
        assert payload is None
        assert error is not None

    def test_reports_decode_errors(self) -> None:
        assert parse_json_strict("{")[1] is not None


class TestHeaderRedaction:
    @pytest.mark.parametrize("name", ["Authorization", "X-API-Key", "x-auth-token", "Session-Token"])
    def test_sensitive(self, name: str) -> None:
        assert is_sensitive_header(name)

    @pytest.mark.parametrize("name", ["Accept", "X-Author", "Monkey"])
    def test_not_sensitive(self, name: str) -> None:
        assert not is_sensitive_header(name)

    def test_redact(self) -> None:
        assert redact_headers({"Authorization": "Bearer x", "Accept": "json"}) == {"Authorization": "<redacted>", "Accept": "json"}


class TestFetchJson:
    """Request building and response handling."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_success_with_query_auth_and_response_path(self) -> None:
        route = respx.get(CURRENCIES_URL).mock(
            return_value=httpx.Response(200, json={"data": {"items": [{"code": "USD"}, {"code": "EUR"}]}})
        )
        payload, warnings = await run_fetch(make_source(query={"base": "{{arg.base}}"}, responsePath="data.items"), args={"base": "GBP"})
        assert payload == [{"code": "USD"}, {"code": "EUR"}]
        assert warnings == []
        request = route.calls.last.request
        assert request.url.params["base"] == "GBP"
        assert request.headers["Authorization"] == "Bearer s3cret"
        assert request.headers["User-Agent"] == "python-httpx/" + httpx.__version__

    @pytest.mark.asyncio
    @respx.mock
    async def test_explicit_authorization_header_is_kept(self) -> None:
        route = respx.get(CURRENCIES_URL).mock(return_value=httpx.Response(200, json=[]))
        connector = make_connector(defaultHeaders={"Authorization": "Token abc"})
        await run_fetch(make_source(), connector)
        assert route.calls.last.request.headers["Authorization"] == "Token abc"

    @pytest.mark.asyncio
    @respx.mock
    async def test_missing_secret_sends_anonymous_request(self) -> None:
        route = respx.get(CURRENCIES_URL).mock(return_value=httpx.Response(200, json=["USD"]))
        payload, warnings = await run_fetch(make_source(), secrets={"other": "x"})
        assert payload == ["USD"]
        assert warnings == ['Secret "fx-api" could not be resolved; request sent without Authorization']
        assert "Authorization" not in route.calls.last.request.headers

    @pytest.mark.asyncio
    @respx.mock
    async def test_host_outside_allowlist_is_rejected(self) -> None:
        route = respx.get(url__startswith="https://").mock(return_value=httpx.Response(200, json=[]))
        connector = make_connector(allowHosts=["api.example.com"])
        payload, warnings = await run_fetch(make_source(), connector)
        assert payload is None
        assert warnings == ['Host "fx.example.com" is not allowlisted for connector "fx"']
        assert not route.called

    @pytest.mark.asyncio
    async def test_unknown_connector(self) -> None:
        payload, warnings = await run_fetch(make_source(connectorId="ghost"))
        assert payload is None
        assert warnings == ['Connector "ghost" not found']

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_success_status(self) -> None:
        respx.get(CURRENCIES_URL).mock(return_value=httpx.Response(503, text="down"))
        payload, warnings = await run_fetch(make_source())
        assert payload is None
        assert warnings == ["HTTP source failed with status 503"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_oversized_response(self) -> None:
        respx.get(CURRENCIES_URL).mock(return_value=httpx.Response(200, json=["x" * 100]))
        payload, warnings = await run_fetch(make_source(), settings=HttpSettings(max_response_bytes=10))
        assert payload is None
        assert warnings == ["HTTP response exceeded max size"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_invalid_json(self) -> None:
        respx.get(CURRENCIES_URL).mock(return_value=httpx.Response(200, text="<html>"))
        payload, warnings = await run_fetch(make_source())
        assert payload is None
        assert warnings == ["HTTP response is not valid JSON"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_response_path_must_resolve_to_list(self) -> None:
        respx.get(CURRENCIES_URL).mock(return_value=httpx.Response(200, json={"data": {"items": {"code": "USD"}}}))
        payload, warnings = await run_fetch(make_source(responsePath="data.items"))
        assert payload is None
        assert warnings == ['HTTP response path "data.items" did not resolve to a list']

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_error(self) -> None:
        respx.get(CURRENCIES_URL).mock(side_effect=httpx.ConnectError("Connection refused"))
        payload, warnings = await run_fetch(make_source())
        assert payload is None
        assert warnings == ["HTTP request failed: ConnectError"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_redirects_are_not_followed(self) -> None:
        respx.get(CURRENCIES_URL).mock(return_value=httpx.Response(302, headers={"Location": "https://evil.example.com/"}))
        payload, warnings = await run_fetch(make_source())
        assert payload is None
        assert warnings == ["HTTP source failed with status 302"]

    @pytest.mark.asyncio
    async def test_fetcher_exceptions_become_warnings(self) -> None:
        async def refusing(url: str, headers: Mapping[str, str], timeout: float) -> httpx.Response:
            raise ConnectionError("refused")

        payload, warnings = await run_fetch(make_source(), fetcher=refusing)
        assert payload is None
        assert warnings == ["HTTP request failed: ConnectionError"]

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self) -> None:
        async def cancelled(url: str, headers: Mapping[str, str], timeout: float) -> httpx.Response:
            raise asyncio.CancelledError

        with pytest.raises(asyncio.CancelledError):
            await run_fetch(make_source(), fetcher=cancelled)

    @pytest.mark.asyncio
    async def test_malformed_base_url(self) -> None:
        payload, warnings = await run_fetch(make_source(), make_connector(baseUrl="https://[::1", allowHosts=None))
        assert payload is None
        assert warnings == ['Connector "fx" produced an invalid URL']

    @pytest.mark.asyncio
    @respx.mock
    async def test_failing_secret_resolver_sends_anonymous_request(self) -> None:
        def broken(secret_ref_id: str) -> str:
            raise RuntimeError("vault unavailable")

        route = respx.get(CURRENCIES_URL).mock(return_value=httpx.Response(200, json=["USD"]))
        payload, warnings = await run_fetch(make_source(), secret_resolver=broken)
        assert payload == ["USD"]
        assert warnings == ['Secret "fx-api" could not be resolved; request sent without Authorization']
        assert "Authorization" not in route.calls.last.request.headers


class TestHttpxFetcher:
    @pytest.mark.asyncio
    @respx.mock
    async def test_user_agent_is_added(self) -> None:
        route = respx.get(CURRENCIES_URL).mock(return_value=httpx.Response(200, json=[]))
        await HttpxFetcher(user_agent="trackerflow-test")(CURRENCIES_URL, {}, 5.0)
        assert route.calls.last.request.headers["User-Agent"] == "trackerflow-test"

    @pytest.mark.asyncio
    @respx.mock
    async def test_shared_client_is_used(self) -> None:
        respx.get(CURRENCIES_URL).mock(return_value=httpx.Response(200, json=["USD"]))
        async with httpx.AsyncClient() as client:
            response = await HttpxFetcher(client)(CURRENCIES_URL, {"Accept": "application/json"}, 5.0)
        assert response.json() == ["USD"]
