import anyio
import pytest
import sse_starlette
from packaging import version

from erp_mcp.gateway import Gateway
from erp_mcp.handlers import build_tool_table
from tests.helpers import FakeDatabase, FakeOrderService


@pytest.fixture
def anyio_backend():
    return "asyncio"


SSE_STARLETTE_VERSION = version.parse(sse_starlette.__version__)
NEEDS_RESET = SSE_STARLETTE_VERSION < version.parse("3.0.0")


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """Reset sse-starlette's global AppStatus singleton before each test.

    AppStatus.should_exit_event is a global asyncio.Event that gets bound to
    an event loop. This ensures each test gets a fresh Event and prevents
    RuntimeError("bound to a different event loop").

    Only necessary for sse-starlette < 3.0.0, which replaced the module-level
    singleton with context-local events.
    """
    if not NEEDS_RESET:
        yield
        return

    # lazy import to avoid import errors
    from sse_starlette.sse import AppStatus

    AppStatus.should_exit_event = anyio.Event()  # type: ignore[attr-defined]

    yield

    AppStatus.should_exit_event = anyio.Event()  # type: ignore[attr-defined]


@pytest.fixture
def orders() -> FakeOrderService:
    return FakeOrderService()


@pytest.fixture
def database() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def gateway(orders: FakeOrderService, database: FakeDatabase) -> Gateway:
    return Gateway(build_tool_table(orders, database), call_timeout=2.0)
