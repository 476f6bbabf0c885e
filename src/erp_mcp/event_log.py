"""
Bounded per-session event buffer for resumable delivery.

Every frame the stateful HTTP transport emits is appended here under the
session it belongs to. A reconnecting client presents the id of the last event
it saw and receives what came after it.
"""

import logging
from collections import deque
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_MAX_EVENTS_PER_SESSION = 100

EventId = str


@dataclass(frozen=True)
class Event:
    event_id: EventId
    payload: str


class EventLog:
    """In-memory, FIFO-bounded event store keyed by session id.

    Event ids increase monotonically within a session. Once more than
    ``max_events_per_session`` events are stored the oldest ones are evicted.
    """

    def __init__(self, max_events_per_session: int = DEFAULT_MAX_EVENTS_PER_SESSION):
        if max_events_per_session < 1:
            raise ValueError("max_events_per_session must be at least 1")
        self.max_events_per_session = max_events_per_session
        self._events: dict[str, deque[Event]] = {}
        self._counters: dict[str, int] = {}

    def append(self, session_id: str, payload: str) -> EventId:
        """Store a payload and return the event id assigned to it."""
        events = self._events.get(session_id)
        if events is None:
            events = self._events[session_id] = deque(maxlen=self.max_events_per_session)

        self._counters[session_id] = self._counters.get(session_id, 0) + 1
        event_id = str(self._counters[session_id])
        events.append(Event(event_id=event_id, payload=payload))
        return event_id

    def replay_since(self, session_id: str, last_event_id: EventId | None = None) -> list[Event]:
        """Return the events a client has not seen yet, oldest first.

        Without ``last_event_id`` the whole retained window is returned. An id
        that is no longer (or never was) retained also yields the whole window:
        "nothing missed" and "evicted" cannot be told apart, and availability
        wins over gap detection.
        """
        events = list(self._events.get(session_id, ()))
        if last_event_id is None:
            return events

        for index, event in enumerate(events):
            if event.event_id == last_event_id:
                return events[index + 1 :]

        logger.warning(f"Event {last_event_id} not retained for session {session_id}, replaying full window")
        return events

    def clear(self, session_id: str) -> None:
        self._events.pop(session_id, None)
        self._counters.pop(session_id, None)

    def __len__(self) -> int:
        return sum(len(events) for events in self._events.values())
