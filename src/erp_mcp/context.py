"""RequestContext - what tool handlers receive alongside their arguments."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from erp_mcp.types import RequestId

if TYPE_CHECKING:
    from erp_mcp.session import Session


@dataclass
class RequestContext:
    """Per-frame context assembled by the transport.

    ``auth_token`` is the caller's own backend token when one was presented;
    collaborators fall back to the configured token when it is ``None``.
    ``request`` is the transport-specific request object (a starlette
    ``Request`` for the HTTP transports, ``None`` for stdio).
    """

    session: Session | None = None
    request_id: RequestId | None = None
    auth_token: str | None = None
    request: Any = None

    def for_request(self, request_id: RequestId) -> RequestContext:
        return RequestContext(
            session=self.session,
            request_id=request_id,
            auth_token=self.auth_token,
            request=self.request,
        )
