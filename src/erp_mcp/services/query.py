"""Read-only guard for ad-hoc SQL.

Only single SELECT statements pass. Row counts are always bounded: a missing
LIMIT is appended and a larger one is clamped down to the effective limit.
"""

import re
from dataclasses import dataclass

from erp_mcp.errors import ToolError

DEFAULT_QUERY_LIMIT = 50
MAX_QUERY_LIMIT = 1000

FORBIDDEN_KEYWORDS = ("DROP", "DELETE", "TRUNCATE", "INSERT", "UPDATE", "ALTER")

_FORBIDDEN_RE = re.compile(r"\b(" + "|".join(FORBIDDEN_KEYWORDS) + r")\b", re.IGNORECASE)
_LIMIT_RE = re.compile(r"\bLIMIT\s+(\d+)", re.IGNORECASE)
_HAS_LIMIT_RE = re.compile(r"\bLIMIT\b", re.IGNORECASE)
_HAS_OFFSET_RE = re.compile(r"\bOFFSET\b", re.IGNORECASE)


class QueryRejected(ToolError):
    """The statement is not an allowed read-only query."""


@dataclass(frozen=True)
class PreparedQuery:
    sql: str
    limit: int
    limited: bool


def effective_limit(limit: int | None, default_limit: int = DEFAULT_QUERY_LIMIT) -> int:
    value = default_limit if limit is None else limit
    return max(1, min(value, MAX_QUERY_LIMIT))


def prepare_select(
    query: str,
    limit: int | None = None,
    offset: int = 0,
    *,
    default_limit: int = DEFAULT_QUERY_LIMIT,
) -> PreparedQuery:
    """Validate a SELECT statement and bound the rows it can return.

    Raises QueryRejected for anything that is not a plain SELECT.
    """
    sql = query.strip().rstrip(";").strip()
    if not sql.upper().startswith("SELECT"):
        raise QueryRejected("Only SELECT queries are allowed.")
    if ";" in sql:
        raise QueryRejected("Only a single statement is allowed.")
    forbidden = _FORBIDDEN_RE.search(sql)
    if forbidden:
        raise QueryRejected(
            f"Query contains forbidden keyword: {forbidden.group(1).upper()}. Only SELECT queries are allowed."
        )

    max_rows = effective_limit(limit, default_limit)
    limited = False
    if not _HAS_LIMIT_RE.search(sql):
        sql = f"{sql} LIMIT {max_rows}"
        limited = True
    else:
        match = _LIMIT_RE.search(sql)
        if match and int(match.group(1)) > max_rows:
            sql = _LIMIT_RE.sub(f"LIMIT {max_rows}", sql, count=1)
            limited = True

    if offset > 0 and not _HAS_OFFSET_RE.search(sql):
        sql = f"{sql} OFFSET {offset}"

    return PreparedQuery(sql=sql, limit=max_rows, limited=limited)
