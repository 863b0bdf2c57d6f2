"""Replies for a client who talks over the agent.

An interruption is a side channel: it bumps the session's interruption
counter and produces an acknowledgment plus a nudge back to whatever the
current step was doing. It never runs extraction and never changes the step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from callagent.fsm import current_field_label
from callagent.models.session import CallSession, ConversationStep, HistoryEntry, Role
from callagent.phrases import ResponseComposer

log = logging.getLogger("callagent.interruption")


@dataclass
class InterruptionResult:
    message: str
    reply: str
    acknowledgment: str
    interruption_count: int

    def history_entries(self) -> list[HistoryEntry]:
        return [
            HistoryEntry(role=Role.CLIENT, text=self.message, interruption=True),
            HistoryEntry(role=Role.AGENT, text=self.reply),
        ]

    def apply(self, session: CallSession) -> CallSession:
        return session.with_changes(
            interruption_count=self.interruption_count,
            conversation_history=list(session.conversation_history) + self.history_entries(),
        )


def contextual_fragment(session: CallSession, filler: str) -> str:
    """Step-specific sentence that steers the call back on track."""
    step = session.current_step
    if step == ConversationStep.COLLECTING:
        return f"{filler}, so about that {current_field_label(session)}..."
    if step == ConversationStep.CONFIRMING:
        return f"{filler}, let me make sure I have everything right..."
    if step == ConversationStep.BOOKING:
        return f"{filler}, so regarding the appointment..."
    return f"{filler}, let me get back on track here..."


def handle_interruption(
    session: CallSession, message: str, composer: ResponseComposer | None = None,
) -> InterruptionResult:
    composer = composer or ResponseComposer()
    acknowledgment = composer.acknowledgment()
    reply = f"{acknowledgment}. {contextual_fragment(session, composer.filler())}"
    count = session.interruption_count + 1
    log.info(
        "Session %s interrupted during %s (count=%d)",
        session.session_id, session.current_step.value, count,
    )
    return InterruptionResult(
        message=message,
        reply=reply,
        acknowledgment=acknowledgment,
        interruption_count=count,
    )
