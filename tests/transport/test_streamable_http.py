"""End-to-end tests for the stateful Streamable HTTP transport.

Exercised through httpx's ASGI transport. ASGITransport buffers whole
responses, so event-stream tests end the stream by terminating the session
from the test before reading the body.
"""

import json
from collections.abc import AsyncIterator
from typing import Any

import anyio
import httpx
import pytest
from starlette.applications import Starlette
from starlette.routing import Route

from erp_mcp.app import create_app
from erp_mcp.gateway import Gateway
from erp_mcp.transport.streamable_http import StreamableHTTPASGIApp, StreamableHTTPSessionManager
from erp_mcp.types import INVALID_REQUEST, METHOD_NOT_FOUND, PARSE_ERROR, SESSION_NOT_FOUND, UNKNOWN_TOOL
from tests.helpers import FakeOrderService, init_request, initialized_notification, request, tool_call

pytestmark = pytest.mark.anyio

STREAM_HEADERS = {"accept": "text/event-stream"}


@pytest.fixture
async def client(gateway: Gateway) -> AsyncIterator[httpx.AsyncClient]:
    app = create_app(gateway)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client


async def _do_init(client: httpx.AsyncClient) -> str:
    """Perform init handshake, return session_id."""
    resp = await client.post("/mcp", json=init_request())
    assert resp.status_code == 200
    session_id = resp.headers["mcp-session-id"]

    resp = await client.post("/mcp", json=initialized_notification(), headers={"mcp-session-id": session_id})
    assert resp.status_code == 202
    return session_id


def _events(body: str) -> list[tuple[str | None, dict[str, Any]]]:
    events: list[tuple[str | None, dict[str, Any]]] = []
    event_id = None
    for line in body.splitlines():
        if line.startswith("id:"):
            event_id = line[3:].strip()
        elif line.startswith("data:"):
            events.append((event_id, json.loads(line[5:].strip())))
    return events


async def test_initialize_returns_session_header(client: httpx.AsyncClient, gateway: Gateway):
    resp = await client.post("/mcp", json=init_request())

    assert resp.status_code == 200
    session_id = resp.headers["mcp-session-id"]
    assert gateway.resolve(session_id).is_active
    data = resp.json()
    assert data["id"] == 1
    assert data["result"]["serverInfo"]["name"] == "express-erp-mcp"


async def test_list_and_call_tools(client: httpx.AsyncClient, orders: FakeOrderService):
    session_id = await _do_init(client)
    headers = {"mcp-session-id": session_id}

    listed = await client.post("/mcp", json=request(2, "tools/list"), headers=headers)
    assert listed.status_code == 200
    assert [tool["name"] for tool in listed.json()["result"]["tools"]] == [
        "verify_order",
        "get_database_schema",
        "execute_sql_limited",
    ]

    called = await client.post(
        "/mcp",
        json=tool_call(3, "verify_order", {"numer_zamowienia": "OP1001"}),
        headers={**headers, "x-supabase-token": "user-jwt"},
    )
    assert called.status_code == 200
    assert called.headers["mcp-session-id"] == session_id
    assert called.json()["result"]["structuredContent"]["zamowienieIstnieje"] is True
    assert orders.calls == [("OP1001", "user-jwt")]


async def test_tool_call_errors_are_200(client: httpx.AsyncClient):
    session_id = await _do_init(client)
    headers = {"mcp-session-id": session_id}

    unknown = await client.post("/mcp", json=tool_call(4, "nope"), headers=headers)
    assert unknown.status_code == 200
    assert unknown.json()["error"]["code"] == UNKNOWN_TOOL

    invalid = await client.post(
        "/mcp", json=tool_call(5, "verify_order", {"numer_zamowienia": "Z" * 51}), headers=headers
    )
    assert invalid.status_code == 200
    assert invalid.json()["error"]["data"] == {"field": "numer_zamowienia"}


async def test_protocol_errors_are_400(client: httpx.AsyncClient):
    session_id = await _do_init(client)
    headers = {"mcp-session-id": session_id}

    unknown_method = await client.post("/mcp", json=request(6, "prompts/list"), headers=headers)
    assert unknown_method.status_code == 400
    assert unknown_method.json()["error"]["code"] == METHOD_NOT_FOUND

    reinit = await client.post("/mcp", json=init_request(7), headers=headers)
    assert reinit.status_code == 400
    assert reinit.json()["error"]["code"] == INVALID_REQUEST


async def test_unknown_session_is_rejected_without_creating_one(client: httpx.AsyncClient, gateway: Gateway):
    resp = await client.post("/mcp", json=request(1, "tools/list"), headers={"mcp-session-id": "deadbeef"})

    assert resp.status_code == 400
    body = resp.json()
    assert body["id"] == 1
    assert body["error"]["code"] == SESSION_NOT_FOUND
    assert len(gateway.registry) == 0


async def test_non_initialize_without_session_is_rejected(client: httpx.AsyncClient, gateway: Gateway):
    resp = await client.post("/mcp", json=request(1, "tools/list"))

    assert resp.status_code == 400
    assert "No valid session ID" in resp.json()["error"]["message"]
    assert len(gateway.registry) == 0


async def test_parse_error(client: httpx.AsyncClient):
    resp = await client.post("/mcp", content=b"{oops", headers={"content-type": "application/json"})

    assert resp.status_code == 400
    body = resp.json()
    assert body["id"] is None
    assert body["error"]["code"] == PARSE_ERROR


async def test_content_type_and_method_checks(client: httpx.AsyncClient):
    resp = await client.post("/mcp", content=b"{}", headers={"content-type": "text/plain"})
    assert resp.status_code == 415

    resp = await client.put("/mcp", json={})
    assert resp.status_code == 405


async def test_body_size_limit(gateway: Gateway):
    manager = StreamableHTTPSessionManager(gateway, max_message_size=64)
    app = Starlette(routes=[Route("/mcp", endpoint=StreamableHTTPASGIApp(manager))])

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        resp = await client.post("/mcp", json=init_request())

    assert resp.status_code == 413
    assert len(gateway.registry) == 0


async def test_delete_twice(client: httpx.AsyncClient, gateway: Gateway):
    session_id = await _do_init(client)

    first = await client.delete("/mcp", headers={"mcp-session-id": session_id})
    second = await client.delete("/mcp", headers={"mcp-session-id": session_id})

    assert first.status_code == 200
    assert second.status_code == 400
    assert second.json()["error"]["code"] == SESSION_NOT_FOUND
    assert session_id not in gateway.registry

    after = await client.post("/mcp", json=request(9, "ping"), headers={"mcp-session-id": session_id})
    assert after.status_code == 400


async def test_get_requires_known_session_and_event_stream(client: httpx.AsyncClient):
    resp = await client.get("/mcp", headers={**STREAM_HEADERS, "mcp-session-id": "deadbeef"})
    assert resp.status_code == 400

    session_id = await _do_init(client)
    resp = await client.get("/mcp", headers={"accept": "application/json", "mcp-session-id": session_id})
    assert resp.status_code == 406


async def test_get_replays_after_last_event_id(client: httpx.AsyncClient, gateway: Gateway):
    session_id = await _do_init(client)
    headers = {"mcp-session-id": session_id}
    await client.post("/mcp", json=request(2, "tools/list"), headers=headers)
    await client.post("/mcp", json=request(3, "ping"), headers=headers)

    responses: list[httpx.Response] = []

    async def open_stream() -> None:
        responses.append(await client.get("/mcp", headers={**headers, **STREAM_HEADERS, "last-event-id": "1"}))

    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            tg.start_soon(open_stream)
            await anyio.wait_all_tasks_blocked()
            gateway.handle_termination(session_id)

    assert responses[0].status_code == 200
    events = _events(responses[0].text)
    assert [event_id for event_id, _ in events] == ["2", "3"]
    assert [message["id"] for _, message in events] == [2, 3]


async def test_unknown_last_event_id_replays_full_window(client: httpx.AsyncClient, gateway: Gateway):
    session_id = await _do_init(client)
    headers = {"mcp-session-id": session_id}
    await client.post("/mcp", json=request(2, "ping"), headers=headers)

    responses: list[httpx.Response] = []

    async def open_stream() -> None:
        responses.append(await client.get("/mcp", headers={**headers, **STREAM_HEADERS, "last-event-id": "999"}))

    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            tg.start_soon(open_stream)
            await anyio.wait_all_tasks_blocked()
            gateway.handle_termination(session_id)

    assert [event_id for event_id, _ in _events(responses[0].text)] == ["1", "2"]


async def test_stream_receives_live_events_and_allows_one_listener(client: httpx.AsyncClient, gateway: Gateway):
    session_id = await _do_init(client)
    headers = {"mcp-session-id": session_id}

    responses: list[httpx.Response] = []

    async def open_stream() -> None:
        responses.append(await client.get("/mcp", headers={**headers, **STREAM_HEADERS}))

    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            tg.start_soon(open_stream)
            await anyio.wait_all_tasks_blocked()

            conflict = await client.get("/mcp", headers={**headers, **STREAM_HEADERS})
            assert conflict.status_code == 409

            await client.post("/mcp", json=request(2, "ping"), headers=headers)
            await anyio.wait_all_tasks_blocked()

            deleted = await client.delete("/mcp", headers=headers)
            assert deleted.status_code == 200

    events = _events(responses[0].text)
    assert [event_id for event_id, _ in events] == ["1", "2"]
    assert events[1][1] == {"jsonrpc": "2.0", "id": 2, "result": {}}


async def test_shutdown_terminates_http_sessions(gateway: Gateway):
    manager = StreamableHTTPSessionManager(gateway)
    app = Starlette(routes=[Route("/mcp", endpoint=StreamableHTTPASGIApp(manager))])

    async with manager.run():
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
            await _do_init(client)
            await _do_init(client)
        assert len(gateway.registry) == 2

    assert len(gateway.registry) == 0


async def test_delete_during_tool_call_leaves_no_events(
    client: httpx.AsyncClient, gateway: Gateway, orders: FakeOrderService
):
    session_id = await _do_init(client)
    headers = {"mcp-session-id": session_id}
    orders.delay = 0.3

    responses: list[httpx.Response] = []

    async def call_tool() -> None:
        frame = tool_call(2, "verify_order", {"numer_zamowienia": "OP1001"})
        responses.append(await client.post("/mcp", json=frame, headers=headers))

    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            tg.start_soon(call_tool)
            await anyio.wait_all_tasks_blocked()

            deleted = await client.delete("/mcp", headers=headers)
            assert deleted.status_code == 200

    assert responses[0].status_code == 200
    assert responses[0].json()["id"] == 2
    assert "mcp-session-id" not in responses[0].headers
    assert session_id not in gateway.registry
    assert gateway.event_log.replay_since(session_id) == []
    assert len(gateway.event_log) == 0


async def test_concurrent_tool_calls_keep_their_ids(
    client: httpx.AsyncClient, gateway: Gateway, orders: FakeOrderService
):
    session_id = await _do_init(client)
    headers = {"mcp-session-id": session_id}
    orders.delay = 0.2

    results: dict[int, httpx.Response] = {}
    finished: list[int] = []

    async def post(frame: dict[str, Any]) -> None:
        resp = await client.post("/mcp", json=frame, headers=headers)
        results[frame["id"]] = resp
        finished.append(frame["id"])

    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            tg.start_soon(post, tool_call(2, "verify_order", {"numer_zamowienia": "OP1001"}))
            await anyio.wait_all_tasks_blocked()
            tg.start_soon(post, tool_call(3, "execute_sql_limited", {"query": "SELECT id FROM zamowienia"}))

    assert finished == [3, 2]
    assert results[2].json()["id"] == 2
    assert results[2].json()["result"]["structuredContent"]["zamowienieIstnieje"] is True
    assert results[3].json()["id"] == 3
    assert results[3].json()["result"]["structuredContent"]["count"] == 2

    streamed: list[httpx.Response] = []

    async def open_stream() -> None:
        streamed.append(await client.get("/mcp", headers={**headers, **STREAM_HEADERS, "last-event-id": "1"}))

    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            tg.start_soon(open_stream)
            await anyio.wait_all_tasks_blocked()
            gateway.handle_termination(session_id)

    events = _events(streamed[0].text)
    assert [event_id for event_id, _ in events] == ["2", "3"]
    assert [message["id"] for _, message in events] == [3, 2]
