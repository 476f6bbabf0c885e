"""
Duplex pipe transport: newline-delimited JSON-RPC over stdin/stdout.

One process is one implicit session. Frames are handled one at a time, so
responses leave in the order their requests arrived.

Example:
    ```python
    gateway = Gateway(build_tool_table(orders, database))
    anyio.run(run_stdio, gateway)
    ```
"""

import logging
import sys
from io import TextIOWrapper
from typing import BinaryIO

import anyio

from erp_mcp.context import RequestContext
from erp_mcp.errors import SessionNotFound
from erp_mcp.gateway import Gateway
from erp_mcp.session import TransportKind
from erp_mcp.transport.framing import FrameError, decode_frame
from erp_mcp.types import JSONRPCMessage, dump_message

logger = logging.getLogger(__name__)


class _NonClosingTextIOWrapper(TextIOWrapper):
    """Text wrapper that never closes the underlying binary stream.

    The transport must not close the process' real stdin/stdout handles when
    it shuts down.
    """

    def close(self) -> None:
        if self.closed:
            return
        if self.writable():
            self.flush()


def _wrap_process_stdio(binary_stream: BinaryIO) -> anyio.AsyncFile[str]:
    return anyio.wrap_file(_NonClosingTextIOWrapper(binary_stream, encoding="utf-8"))


async def run_stdio(
    gateway: Gateway,
    stdin: anyio.AsyncFile[str] | None = None,
    stdout: anyio.AsyncFile[str] | None = None,
    *,
    auth_token: str | None = None,
) -> None:
    """Serve one implicit session until stdin reaches EOF."""
    # stdin/stdout encoding is platform-dependent, so the binary streams are
    # re-wrapped as UTF-8.
    if not stdin:
        stdin = _wrap_process_stdio(sys.stdin.buffer)
    if not stdout:
        stdout = _wrap_process_stdio(sys.stdout.buffer)

    session = gateway.open_session(TransportKind.STDIO)
    context = RequestContext(session=session, auth_token=auth_token)

    async def write(message: JSONRPCMessage) -> None:
        await stdout.write(dump_message(message) + "\n")
        await stdout.flush()

    try:
        async for raw_line in stdin:
            line = raw_line.strip()
            if not line:
                continue
            try:
                message = decode_frame(line)
            except FrameError as e:
                logger.warning(f"Rejected frame on stdio: {e.message}")
                await write(e.to_response())
                continue

            response = await gateway.handle_message(message, session=session, context=context)
            if response is not None:
                await write(response)
    finally:
        try:
            gateway.handle_termination(session.session_id)
        except SessionNotFound:
            pass
        logger.info("stdin closed, stdio session ended")
