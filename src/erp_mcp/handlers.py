"""The ERP tools: argument models, handlers and the dispatch table that binds them."""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field

from erp_mcp.context import RequestContext
from erp_mcp.services.database import SchemaDescription, SchemaQueryService
from erp_mcp.services.orders import OrderLookup, OrderLookupService
from erp_mcp.services.query import MAX_QUERY_LIMIT
from erp_mcp.tools import ToolDescriptor, ToolDispatchTable
from erp_mcp.types import CallToolResult

logger = logging.getLogger(__name__)


class VerifyOrderArguments(BaseModel):
    numer_zamowienia: Annotated[
        str,
        Field(min_length=1, max_length=50, description="Order number to verify (e.g. ZAM-2024-001)"),
    ]


class SchemaArguments(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    include_relations: Annotated[bool, Field(description="Include foreign key relations")] = True
    include_indexes: Annotated[bool, Field(description="Include index information")] = True
    schema_name: Annotated[
        str,
        Field(
            alias="schema",
            min_length=1,
            max_length=63,
            pattern=r"^[A-Za-z_][A-Za-z0-9_]*$",
            description="Database schema name",
        ),
    ] = "public"


class SqlArguments(BaseModel):
    query: Annotated[str, Field(min_length=10, description="SELECT query to execute")]
    limit: Annotated[
        int | None,
        Field(ge=1, le=MAX_QUERY_LIMIT, description="Maximum number of rows (defaults to the configured limit)"),
    ] = None
    offset: Annotated[int, Field(ge=0, description="Number of rows to skip")] = 0


def format_order(lookup: OrderLookup, order_number: str) -> str:
    if not lookup.exists or lookup.details is None:
        return f"Order {order_number} was not found in the system."

    order = lookup.details
    customer = order.klient
    return (
        f"Order {order.numer_zamowienia} exists.\n\n"
        f"Order ID: {order.id_zamowienia}\n"
        f"Status: {order.status}\n"
        f"Total value: {order.wartosc_calkowita:.2f} PLN\n\n"
        f"Customer: {customer.imie} {customer.nazwisko}\n"
        f"Email: {customer.email}"
    )


def format_schema(description: SchemaDescription) -> str:
    if not description.tables:
        return f"No tables found in schema '{description.schema}'."

    lines = [f"Schema '{description.schema}': {description.total_tables} table(s)", ""]
    for table in description.tables:
        lines.append(f"Table {table.table_name} ({len(table.columns)} columns)")
        for column in table.columns:
            nullable = "NULL" if column.get("is_nullable") == "YES" else "NOT NULL"
            lines.append(f"  - {column.get('column_name')}: {column.get('data_type')} {nullable}")
        if table.foreign_keys:
            lines.append("  Foreign keys:")
            for fk in table.foreign_keys:
                lines.append(
                    f"    {fk.get('column_name')} -> {fk.get('foreign_table_name')}.{fk.get('foreign_column_name')}"
                )
        if table.indexes:
            lines.append("  Indexes:")
            for index in table.indexes:
                flags = " (primary)" if index.get("is_primary") else " (unique)" if index.get("is_unique") else ""
                lines.append(f"    {index.get('index_name')} on {index.get('column_name')}{flags}")
        lines.append("")
    return "\n".join(lines).rstrip()


def _schema_payload(description: SchemaDescription) -> dict[str, Any]:
    return {
        "schema": description.schema,
        "total_tables": description.total_tables,
        "tables": [
            {
                "table_name": table.table_name,
                "table_schema": table.table_schema,
                "columns": table.columns,
                "foreign_keys": table.foreign_keys,
                "indexes": table.indexes,
            }
            for table in description.tables
        ],
    }


def build_tool_table(orders: OrderLookupService, database: SchemaQueryService) -> ToolDispatchTable:
    """Bind the ERP tools to their collaborators."""

    async def verify_order(ctx: RequestContext, args: VerifyOrderArguments) -> CallToolResult:
        lookup = await orders.verify(args.numer_zamowienia, auth_token=ctx.auth_token)
        structured: dict[str, Any] = {"zamowienieIstnieje": lookup.exists}
        if lookup.details is not None:
            structured["daneZamowienia"] = lookup.details.model_dump()
        return CallToolResult.text(format_order(lookup, args.numer_zamowienia), structured_content=structured)

    async def get_database_schema(ctx: RequestContext, args: SchemaArguments) -> CallToolResult:
        description = await database.describe_schema(
            args.schema_name,
            include_relations=args.include_relations,
            include_indexes=args.include_indexes,
            auth_token=ctx.auth_token,
        )
        return CallToolResult.text(format_schema(description), structured_content=_schema_payload(description))

    async def execute_sql_limited(ctx: RequestContext, args: SqlArguments) -> CallToolResult:
        result = await database.run_query(args.query, args.limit, args.offset, auth_token=ctx.auth_token)
        summary = f"Query returned {result.count} row(s)"
        if result.limited:
            summary += " (result limited)"
        text = f"{summary}.\n\n{json.dumps(result.rows, indent=2, ensure_ascii=False, default=str)}"
        return CallToolResult.text(
            text,
            structured_content={
                "rows": result.rows,
                "count": result.count,
                "limited": result.limited,
                "offset": result.offset,
            },
        )

    return ToolDispatchTable(
        [
            ToolDescriptor(
                name="verify_order",
                title="Verify order",
                description="Check whether an order with the given number exists in the ERP and return its details.",
                arguments=VerifyOrderArguments,
                handler=verify_order,
            ),
            ToolDescriptor(
                name="get_database_schema",
                title="Database schema",
                description="Describe the tables, columns, foreign keys and indexes of a database schema.",
                arguments=SchemaArguments,
                handler=get_database_schema,
            ),
            ToolDescriptor(
                name="execute_sql_limited",
                title="Run read-only SQL",
                description="Run a single SELECT query with a row limit. Write statements are rejected.",
                arguments=SqlArguments,
                handler=execute_sql_limited,
            ),
        ]
    )
