"""Per-call session handling — drives the conversation FSM one message at a time.

The handler is the core's entry point. For each inbound message it:
  1. Enters the session's critical section (one writer per session)
  2. Loads the session from the store
  3. Routes interruptions to the interruption handler, everything else
     through extraction + the state machine
  4. Persists the new step/data/history with a conditional write
  5. Returns the reply together with the readiness flags

Nothing is returned as committed unless the write succeeded.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from callagent.agents import AgentRegistry
from callagent.errors import PayloadValidationError, PersistenceFailure, SessionNotFound
from callagent.events import CallEventHub
from callagent.fsm import ConversationMachine
from callagent.interruption import handle_interruption
from callagent.models.api import ProcessMessageResponse
from callagent.models.session import CallSession
from callagent.phrases import RandomSource, ResponseComposer
from callagent.readiness import session_can_offer_booking, session_needs_more_data
from callagent.store import SessionStore

log = logging.getLogger("callagent.session")


def redact_pii(value: str) -> str:
    """Mask PII for logging — show first 3 and last 2 chars only."""
    if not value or len(value) <= 5:
        return "***"
    return value[:3] + "***" + value[-2:]


class SessionLocks:
    """One asyncio.Lock per session id.

    Messages for the same session (e.g. an interruption arriving while the
    previous message is still being processed) queue up here instead of
    racing on the store.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._waiters: dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, session_id: str) -> AsyncIterator[None]:
        self._waiters[session_id] += 1
        try:
            async with self._locks[session_id]:
                yield
        finally:
            self._waiters[session_id] -= 1
            if not self._waiters[session_id]:
                # Nobody else is waiting: drop the lock so idle sessions don't pile up
                del self._waiters[session_id]
                self._locks.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._locks)


class CallSessionHandler:
    """Request handler for call sessions.

    Collaborators are injected so tests can substitute the store and pin
    the random phrasing::

        handler = CallSessionHandler(InMemorySessionStore(), registry,
                                     random_source=random.Random(0))
        session = await handler.start_call("agent-1", client_phone="+15551234567")
        result = await handler.process_message(session.session_id, "John Smith")
    """

    def __init__(
        self,
        store: SessionStore,
        agents: AgentRegistry,
        random_source: RandomSource | None = None,
        events: CallEventHub | None = None,
        locks: SessionLocks | None = None,
    ) -> None:
        self._store = store
        self._agents = agents
        self._composer = ResponseComposer(random_source)
        self._machine = ConversationMachine(self._composer)
        self._events = events if events is not None else CallEventHub()
        self._locks = locks if locks is not None else SessionLocks()

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def events(self) -> CallEventHub:
        return self._events

    # ── Session lifecycle ─────────────────────────────────────

    async def start_call(
        self,
        agent_id: str,
        client_phone: str = "",
        session_id: Optional[str] = None,
    ) -> CallSession:
        """Create a session in the greeting step, or resume an existing one.

        Raises:
            AgentNotFound: ``agent_id`` isn't registered.
            PayloadValidationError: ``session_id`` exists but belongs to another agent.
        """
        if session_id:
            async with self._locks.hold(session_id):
                try:
                    existing = await self._store.get(session_id)
                except SessionNotFound:
                    existing = None
                if existing is not None:
                    if existing.agent_id != agent_id:
                        raise PayloadValidationError(
                            f"Session {session_id} belongs to a different agent"
                        )
                    log.info("Session resumed: %s (step=%s)",
                             session_id, existing.current_step.value)
                    return existing
                return await self._create(agent_id, client_phone, session_id)

        return await self._create(agent_id, client_phone, secrets.token_urlsafe(18))

    async def _create(self, agent_id: str, client_phone: str, session_id: str) -> CallSession:
        agent = self._agents.get(agent_id)
        session = CallSession(
            session_id=session_id,
            agent_id=agent.agent_id,
            client_phone=client_phone,
            core_fields=list(agent.core_fields),
            additional_questions=list(agent.additional_questions),
        )
        session = await self._store.create(session)
        self._events.get(session_id).emit(
            "session_started", session.current_step.value, {"agent_id": agent_id},
        )
        log.info("Session started: %s agent=%s phone=%s",
                 session_id, agent_id, redact_pii(client_phone))
        return session

    async def get_session(self, session_id: str) -> CallSession:
        return await self._store.get(session_id)

    # ── Message processing ────────────────────────────────────

    async def process_message(
        self,
        session_id: str,
        message: str,
        is_interruption: bool = False,
        audio_level: Optional[float] = None,
    ) -> ProcessMessageResponse:
        """Run one client utterance through the session and commit the result.

        Raises:
            SessionNotFound: unknown ``session_id``.
            ConcurrentUpdateError: the session changed under us (retryable).
            PersistenceFailure: the turn could not be stored (retryable).
        """
        async with self._locks.hold(session_id):
            session = await self._store.get(session_id)
            broadcaster = self._events.get(session_id)
            broadcaster.emit("message", session.current_step.value, {
                "text": message,
                "is_interruption": is_interruption,
                "audio_level": audio_level,
            })

            if is_interruption:
                outcome = handle_interruption(session, message, self._composer)
                updated = outcome.apply(session)
                changes = {
                    "interruption_count": updated.interruption_count,
                    "conversation_history": updated.conversation_history,
                }
                reply = outcome.reply
            else:
                turn = self._machine.advance(session, message)
                updated = turn.apply(session)
                changes = {
                    "current_step": updated.current_step,
                    "collected_data": updated.collected_data,
                    "pending_correction": updated.pending_correction,
                    "conversation_history": updated.conversation_history,
                }
                reply = turn.reply

            try:
                stored = await self._store.update(session_id, changes, session.version)
            except PersistenceFailure as e:
                broadcaster.emit("persist_failed", session.current_step.value, {"error": e.message})
                log.error("Session %s: turn not committed: %s", session_id, e.message)
                raise

            if is_interruption:
                broadcaster.emit("interruption", stored.current_step.value, {
                    "interruption_count": stored.interruption_count,
                    "reply": reply,
                })
            elif stored.current_step != session.current_step:
                broadcaster.emit("transition", stored.current_step.value, {
                    "from": session.current_step.value,
                    "to": stored.current_step.value,
                    "trigger": turn.trigger.value,
                })

            if stored.is_done:
                self._events.release(session_id)

            return ProcessMessageResponse(
                response=reply,
                next_step=stored.current_step,
                should_collect_more=session_needs_more_data(stored),
                booking_available=session_can_offer_booking(stored),
            )
