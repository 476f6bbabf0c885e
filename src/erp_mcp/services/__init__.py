from erp_mcp.services.database import DatabaseClient, QueryResult, SchemaDescription, SchemaQueryService, TableInfo
from erp_mcp.services.orders import OrderClient, OrderDetails, OrderLookup, OrderLookupService
from erp_mcp.services.retry import RetryDecision, RetryPolicy

__all__ = [
    "DatabaseClient",
    "OrderClient",
    "OrderDetails",
    "OrderLookup",
    "OrderLookupService",
    "QueryResult",
    "RetryDecision",
    "RetryPolicy",
    "SchemaDescription",
    "SchemaQueryService",
    "TableInfo",
]
