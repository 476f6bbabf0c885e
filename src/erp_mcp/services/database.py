"""Schema/query collaborator backed by the Supabase ``exec_sql`` RPC.

All statements go through PostgREST with the caller's bearer token, so Row
Level Security decides what is visible. The RPC function must exist in the
database; it takes a single ``query`` text argument and returns rows as JSON.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from erp_mcp.errors import UpstreamServerError
from erp_mcp.services.http import HttpClientFactory, create_http_client, parse_json, send_upstream
from erp_mcp.services.query import DEFAULT_QUERY_LIMIT, prepare_select

logger = logging.getLogger(__name__)

Row = dict[str, Any]


@dataclass
class TableInfo:
    table_name: str
    table_schema: str
    columns: list[Row] = field(default_factory=list)
    foreign_keys: list[Row] | None = None
    indexes: list[Row] | None = None


@dataclass
class SchemaDescription:
    schema: str
    tables: list[TableInfo]

    @property
    def total_tables(self) -> int:
        return len(self.tables)


@dataclass
class QueryResult:
    rows: list[Row]
    limited: bool
    offset: int = 0

    @property
    def count(self) -> int:
        return len(self.rows)


class SchemaQueryService(Protocol):
    async def describe_schema(
        self,
        schema: str = "public",
        *,
        include_relations: bool = True,
        include_indexes: bool = True,
        auth_token: str | None = None,
    ) -> SchemaDescription: ...

    async def run_query(
        self,
        sql: str,
        limit: int | None = None,
        offset: int = 0,
        *,
        auth_token: str | None = None,
    ) -> QueryResult: ...


def _literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


TABLES_SQL = """
SELECT table_name, table_schema
FROM information_schema.tables
WHERE table_schema = {schema} AND table_type = 'BASE TABLE'
ORDER BY table_name
"""

COLUMNS_SQL = """
SELECT column_name, data_type, is_nullable, column_default, character_maximum_length
FROM information_schema.columns
WHERE table_schema = {schema} AND table_name = {table}
ORDER BY ordinal_position
"""

FOREIGN_KEYS_SQL = """
SELECT
  tc.constraint_name,
  tc.table_name,
  kcu.column_name,
  ccu.table_name AS foreign_table_name,
  ccu.column_name AS foreign_column_name
FROM information_schema.table_constraints AS tc
JOIN information_schema.key_column_usage AS kcu
  ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema
JOIN information_schema.constraint_column_usage AS ccu
  ON ccu.constraint_name = tc.constraint_name AND ccu.table_schema = tc.table_schema
WHERE tc.constraint_type = 'FOREIGN KEY' AND tc.table_schema = {schema} AND tc.table_name = {table}
"""

INDEXES_SQL = """
SELECT
  i.relname AS index_name,
  t.relname AS table_name,
  a.attname AS column_name,
  ix.indisunique AS is_unique,
  ix.indisprimary AS is_primary
FROM pg_class t
JOIN pg_index ix ON t.oid = ix.indrelid
JOIN pg_class i ON i.oid = ix.indexrelid
JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = ANY(ix.indkey)
JOIN pg_namespace n ON n.oid = t.relnamespace
WHERE t.relkind = 'r' AND n.nspname = {schema} AND t.relname = {table}
ORDER BY i.relname
"""


class DatabaseClient:
    def __init__(
        self,
        project_url: str,
        bearer_token: str,
        *,
        timeout: float = 5.0,
        default_limit: int = DEFAULT_QUERY_LIMIT,
        rpc_function: str = "exec_sql",
        http_client_factory: HttpClientFactory = create_http_client,
    ) -> None:
        self.rpc_url = f"{project_url.rstrip('/')}/rest/v1/rpc/{rpc_function}"
        self.bearer_token = bearer_token
        self.timeout = timeout
        self.default_limit = default_limit
        self._http_client_factory = http_client_factory

    async def describe_schema(
        self,
        schema: str = "public",
        *,
        include_relations: bool = True,
        include_indexes: bool = True,
        auth_token: str | None = None,
    ) -> SchemaDescription:
        params = {"schema": _literal(schema)}
        table_rows = await self._execute(TABLES_SQL.format(**params), auth_token)

        tables: list[TableInfo] = []
        for row in table_rows:
            name = str(row["table_name"])
            params["table"] = _literal(name)
            table = TableInfo(
                table_name=name,
                table_schema=schema,
                columns=await self._execute(COLUMNS_SQL.format(**params), auth_token),
            )
            if include_relations:
                table.foreign_keys = await self._execute(FOREIGN_KEYS_SQL.format(**params), auth_token)
            if include_indexes:
                table.indexes = await self._execute(INDEXES_SQL.format(**params), auth_token)
            tables.append(table)

        return SchemaDescription(schema=schema, tables=tables)

    async def run_query(
        self,
        sql: str,
        limit: int | None = None,
        offset: int = 0,
        *,
        auth_token: str | None = None,
    ) -> QueryResult:
        prepared = prepare_select(sql, limit, offset, default_limit=self.default_limit)
        rows = await self._execute(prepared.sql, auth_token)
        limited = prepared.limited
        if len(rows) > prepared.limit:
            rows = rows[: prepared.limit]
            limited = True
        return QueryResult(rows=rows, limited=limited, offset=offset)

    async def _execute(self, sql: str, auth_token: str | None) -> list[Row]:
        token = auth_token or self.bearer_token
        logger.debug(f"exec_sql: {' '.join(sql.split())}")
        async with self._http_client_factory(timeout=self.timeout) as client:
            request = client.build_request(
                "POST",
                self.rpc_url,
                json={"query": sql.strip()},
                headers={"apikey": self.bearer_token, "Authorization": f"Bearer {token}"},
            )
            response = await send_upstream(client, request, self.timeout)

        data = parse_json(response)
        if data is None:
            return []
        if not isinstance(data, list):
            raise UpstreamServerError("exec_sql returned an unexpected payload; expected a list of rows")
        return data
