"""Session lifecycle and the registry that owns session identifiers."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol
from uuid import uuid4

from erp_mcp.errors import InvalidTransition
from erp_mcp.types import Implementation

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    INITIALIZING = "initializing"
    ACTIVE = "active"
    CLOSED = "closed"


class TransportKind(str, Enum):
    STDIO = "stdio"
    STREAM = "stream"
    HTTP_STATEFUL = "http-stateful"


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.INITIALIZING: frozenset({SessionState.ACTIVE, SessionState.CLOSED}),
    SessionState.ACTIVE: frozenset({SessionState.CLOSED}),
    SessionState.CLOSED: frozenset(),
}


class SessionBinding(Protocol):
    """The live channel a transport attaches to a session."""

    def close(self) -> None: ...


@dataclass
class Session:
    """One agent-to-server conversation.

    Implicit sessions belong to a single physical connection (stdio pipe,
    push stream) and are never negotiated by the client; they still accept a
    single initialize handshake so standard clients can talk to them.
    """

    session_id: str
    transport_kind: TransportKind
    implicit: bool = False
    state: SessionState = SessionState.INITIALIZING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    client_info: Implementation | None = None
    protocol_version: str | None = None
    binding: SessionBinding | None = None

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    @property
    def handshake_complete(self) -> bool:
        return self.protocol_version is not None

    def activate(self) -> None:
        self._transition(SessionState.ACTIVE)

    def close(self) -> None:
        self._transition(SessionState.CLOSED)
        if self.binding is not None:
            binding, self.binding = self.binding, None
            binding.close()

    def _transition(self, target: SessionState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"Session {self.session_id}: {self.state.value} -> {target.value}")
        logger.debug(f"Session {self.session_id}: {self.state.value} -> {target.value}")
        self.state = target

    def describe(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "transport": self.transport_kind.value,
            "state": self.state.value,
            "createdAt": self.created_at.isoformat(),
        }


class SessionRegistry:
    """Maps session identifiers to live sessions.

    Every operation is a single dict access, so it is atomic with respect to
    other tasks on the same event loop and needs no lock.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def create(self, transport_kind: TransportKind, *, implicit: bool = False) -> Session:
        """Register a new session in the ``initializing`` state under a fresh id."""
        session_id = uuid4().hex
        while session_id in self._sessions:
            session_id = uuid4().hex
        session = Session(session_id=session_id, transport_kind=transport_kind, implicit=implicit)
        self._sessions[session_id] = session
        logger.info(f"Created {transport_kind.value} session {session_id}")
        return session

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Session | None:
        return self._sessions.pop(session_id, None)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))
