"""Per-session call-trace broadcaster.

Each call session gets a CallEventBroadcaster owned by the app's
CallEventHub. When the handler processes a message it emits events
(message, transition, interruption, persist_failed); they are kept in the
session's event log and pushed to every connected subscriber's
asyncio.Queue for delivery over WebSocket.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import TypedDict

log = logging.getLogger("callagent.events")

SUBSCRIBER_QUEUE_SIZE = 200
EVENT_LOG_SIZE = 500


class CallEvent(TypedDict):
    type: str          # message | transition | interruption | persist_failed | session_started
    timestamp: float
    session_id: str
    step: str
    data: dict


class CallEventBroadcaster:
    """Per-session event broadcaster using asyncio.Queue per subscriber."""

    def __init__(self, session_id: str) -> None:
        self._session_id = session_id
        self._subscribers: list[asyncio.Queue[CallEvent]] = []
        self._event_log: deque[CallEvent] = deque(maxlen=EVENT_LOG_SIZE)
        # Set once the call is complete; the hub drops the broadcaster when
        # the last subscriber leaves.
        self.finished = False

    def subscribe(self) -> asyncio.Queue[CallEvent]:
        q: asyncio.Queue[CallEvent] = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self._subscribers.append(q)
        log.info("Trace subscriber added for session %s (total: %d)",
                 self._session_id, len(self._subscribers))
        return q

    def unsubscribe(self, q: asyncio.Queue[CallEvent]) -> None:
        if q in self._subscribers:
            self._subscribers.remove(q)
        log.info("Trace subscriber removed for session %s (total: %d)",
                 self._session_id, len(self._subscribers))

    def emit(self, event_type: str, step: str, data: dict) -> None:
        """Record an event and push it to all subscribers."""
        event: CallEvent = {
            "type": event_type,
            "timestamp": time.time(),
            "session_id": self._session_id,
            "step": step,
            "data": data,
        }
        self._event_log.append(event)

        for q in self._subscribers:
            if q.full():
                # Slow subscriber: drop its oldest event to make room
                q.get_nowait()
            q.put_nowait(event)

    @property
    def event_log(self) -> list[CallEvent]:
        return list(self._event_log)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


class CallEventHub:
    """Owns the broadcasters for every session the process has seen."""

    def __init__(self) -> None:
        self._broadcasters: dict[str, CallEventBroadcaster] = {}

    def get(self, session_id: str) -> CallEventBroadcaster:
        """Get or create the broadcaster for a session."""
        if session_id not in self._broadcasters:
            self._broadcasters[session_id] = CallEventBroadcaster(session_id)
        return self._broadcasters[session_id]

    def remove(self, session_id: str) -> None:
        if self._broadcasters.pop(session_id, None) is not None:
            log.info("Trace broadcaster removed for session %s", session_id)

    def release(self, session_id: str) -> None:
        """Mark a session's trace finished and drop it if nobody is watching."""
        broadcaster = self._broadcasters.get(session_id)
        if broadcaster is None:
            return
        broadcaster.finished = True
        if broadcaster.subscriber_count == 0:
            self.remove(session_id)

    def __len__(self) -> int:
        return len(self._broadcasters)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._broadcasters
