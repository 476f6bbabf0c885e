import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from erp_mcp.errors import UpstreamAuthFailure, UpstreamClientError, UpstreamServerError, UpstreamTimeout
from erp_mcp.services.http import create_http_client
from erp_mcp.services.orders import OrderClient
from erp_mcp.services.retry import RetryPolicy

pytestmark = pytest.mark.anyio

URL = "https://erp.example.com/functions/v1/verify-order"

FOUND = {
    "zamowienieIstnieje": True,
    "daneZamowienia": {
        "id_zamowienia": "9f1c2d",
        "numer_zamowienia": "ZAM-2024-001",
        "status": "zrealizowane",
        "wartosc_calkowita": 1299.5,
        "klient": {"imie": "Anna", "nazwisko": "Nowak", "email": "anna.nowak@example.com"},
    },
}


def _client(handler: Callable[[httpx.Request], httpx.Response], max_attempts: int = 3) -> OrderClient:
    def factory(**kwargs: Any) -> httpx.AsyncClient:
        return create_http_client(transport=httpx.MockTransport(handler), **kwargs)

    return OrderClient(
        URL,
        "service-token-123",
        timeout=1.0,
        retry_policy=RetryPolicy(max_attempts=max_attempts, backoff_base=0.0),
        http_client_factory=factory,
    )


async def test_found_order():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=FOUND)

    lookup = await _client(handler).verify("  ZAM-2024-001 ")

    assert lookup.exists
    assert lookup.details is not None
    assert lookup.details.klient.email == "anna.nowak@example.com"
    assert json.loads(seen[0].content) == {"numer_zamowienia": "ZAM-2024-001"}
    assert seen[0].headers["authorization"] == "Bearer service-token-123"


async def test_missing_order_is_not_an_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"zamowienieIstnieje": False})

    lookup = await _client(handler).verify("ZAM-0000")

    assert not lookup.exists
    assert lookup.details is None


async def test_caller_token_overrides_configured_token():
    tokens: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        tokens.append(request.headers["authorization"])
        return httpx.Response(200, json={"zamowienieIstnieje": False})

    await _client(handler).verify("ZAM-1", auth_token="user-jwt")

    assert tokens == ["Bearer user-jwt"]


@pytest.mark.parametrize("order_number", ["", "   ", "Z" * 51])
async def test_input_guard_skips_the_call(order_number: str):
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json=FOUND)

    with pytest.raises(UpstreamClientError):
        await _client(handler).verify(order_number)
    assert calls == 0


async def test_server_errors_are_retried_then_succeed():
    statuses = iter([503, 500, 200])

    def handler(request: httpx.Request) -> httpx.Response:
        status = next(statuses)
        return httpx.Response(status, json=FOUND if status == 200 else {"error": "down"})

    lookup = await _client(handler).verify("ZAM-2024-001")
    assert lookup.exists


async def test_server_errors_exhaust_attempts():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(502, text="bad gateway")

    with pytest.raises(UpstreamServerError) as exc_info:
        await _client(handler).verify("ZAM-1")

    assert calls == 3
    assert exc_info.value.status_code == 502


async def test_auth_failure_is_not_retried():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(401, json={"message": "invalid JWT"})

    with pytest.raises(UpstreamAuthFailure) as exc_info:
        await _client(handler).verify("ZAM-1")

    assert calls == 1
    assert exc_info.value.details == {"message": "invalid JWT"}


async def test_client_timeout_maps_to_upstream_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(UpstreamTimeout):
        await _client(handler, max_attempts=1).verify("ZAM-1")


async def test_network_failure_maps_to_server_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(UpstreamServerError):
        await _client(handler, max_attempts=1).verify("ZAM-1")


@pytest.mark.parametrize(
    "body",
    [
        {"zamowienieIstnieje": True},
        {"daneZamowienia": None},
        {"zamowienieIstnieje": True, "daneZamowienia": {"numer_zamowienia": "ZAM-1"}},
    ],
)
async def test_malformed_payload(body: dict[str, Any]):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    with pytest.raises(UpstreamServerError, match="Invalid response format"):
        await _client(handler, max_attempts=1).verify("ZAM-1")


async def test_non_json_payload():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>")

    with pytest.raises(UpstreamServerError):
        await _client(handler, max_attempts=1).verify("ZAM-1")
