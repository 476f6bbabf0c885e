"""Frame builders and in-memory collaborators shared by the tests."""

from typing import Any

import anyio

from erp_mcp.services.database import QueryResult, SchemaDescription, TableInfo
from erp_mcp.services.orders import Customer, OrderDetails, OrderLookup

ORDER = OrderDetails(
    id_zamowienia="9f1c2d",
    numer_zamowienia="ZAM-2024-001",
    status="zrealizowane",
    wartosc_calkowita=1299.5,
    klient=Customer(imie="Anna", nazwisko="Nowak", email="anna.nowak@example.com"),
)


def init_request(request_id: int | str = 1, protocol_version: str = "2025-06-18") -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "initialize",
        "params": {
            "protocolVersion": protocol_version,
            "capabilities": {},
            "clientInfo": {"name": "test-client", "version": "1.0"},
        },
    }


def initialized_notification() -> dict[str, Any]:
    return {"jsonrpc": "2.0", "method": "notifications/initialized"}


def request(request_id: int | str, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    frame: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        frame["params"] = params
    return frame


def tool_call(request_id: int | str, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
    return request(request_id, "tools/call", {"name": name, "arguments": arguments or {}})


class FakeOrderService:
    """Records calls; answers with ``lookup`` or raises ``error``."""

    def __init__(self, lookup: OrderLookup | None = None):
        self.lookup = lookup or OrderLookup(exists=True, details=ORDER)
        self.error: Exception | None = None
        self.delay = 0.0
        self.calls: list[tuple[str, str | None]] = []

    async def verify(self, order_number: str, auth_token: str | None = None) -> OrderLookup:
        self.calls.append((order_number, auth_token))
        if self.delay:
            await anyio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.lookup


class FakeDatabase:
    def __init__(self) -> None:
        self.schema = SchemaDescription(
            schema="public",
            tables=[
                TableInfo(
                    table_name="zamowienia",
                    table_schema="public",
                    columns=[
                        {"column_name": "id", "data_type": "uuid", "is_nullable": "NO"},
                        {"column_name": "numer_zamowienia", "data_type": "text", "is_nullable": "NO"},
                    ],
                    foreign_keys=[],
                    indexes=[{"index_name": "zamowienia_pkey", "column_name": "id", "is_primary": True}],
                )
            ],
        )
        self.rows: list[dict[str, Any]] = [{"id": 1}, {"id": 2}]
        self.error: Exception | None = None
        self.calls: list[tuple[Any, ...]] = []

    async def describe_schema(
        self,
        schema: str = "public",
        *,
        include_relations: bool = True,
        include_indexes: bool = True,
        auth_token: str | None = None,
    ) -> SchemaDescription:
        self.calls.append(("describe_schema", schema, include_relations, include_indexes, auth_token))
        if self.error is not None:
            raise self.error
        return self.schema

    async def run_query(
        self,
        sql: str,
        limit: int | None = None,
        offset: int = 0,
        *,
        auth_token: str | None = None,
    ) -> QueryResult:
        self.calls.append(("run_query", sql, limit, offset, auth_token))
        if self.error is not None:
            raise self.error
        return QueryResult(rows=self.rows, limited=False, offset=offset)
