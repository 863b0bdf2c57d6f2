"""Finite state machine for the call conversation.

Every step/trigger pair the conversation can meet is listed in
``TRANSITIONS``; ``ConversationMachine.advance`` classifies an incoming
message into a trigger, looks the pair up, and renders the reply for it.
The machine never touches storage: it returns a ``Turn`` describing the
new state, and the caller decides whether to commit it.

Usage:
    machine = ConversationMachine(ResponseComposer(random.Random(7)))
    turn = machine.advance(session, "John Smith")
    session = turn.apply(session)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from callagent.extractor import extract, extract_for_field
from callagent.models.session import CallSession, ConversationStep, HistoryEntry, Role
from callagent.phrases import ResponseComposer
from callagent.readiness import needs_more_data, next_missing_id, pending_field_order

log = logging.getLogger("callagent.fsm")

CONFIRM_TOKENS = ("yes", "correct", "right")
BOOKING_TOKENS = ("yes", "sure", "book")


class Trigger(str, Enum):
    """Events a message is classified into before the table lookup."""

    MESSAGE = "message"
    EMPTY = "empty"
    FIELDS_MISSING = "fields_missing"
    CORRECTION_NAMED = "correction_named"
    ALL_COLLECTED = "all_collected"
    AFFIRMED = "affirmed"
    DISPUTED = "disputed"
    ACCEPTED = "accepted"
    DECLINED = "declined"


@dataclass(frozen=True)
class Transition:
    """One row of the transition table."""

    from_step: ConversationStep
    trigger: Trigger
    to_step: ConversationStep
    action: str


_S = ConversationStep

TRANSITIONS: list[Transition] = [
    # --- Greeting ---
    Transition(_S.GREETING, Trigger.MESSAGE, _S.COLLECTING, "greet"),
    Transition(_S.GREETING, Trigger.EMPTY, _S.GREETING, "reprompt"),

    # --- Collection ---
    Transition(_S.COLLECTING, Trigger.FIELDS_MISSING, _S.COLLECTING, "ask_next"),
    Transition(_S.COLLECTING, Trigger.CORRECTION_NAMED, _S.COLLECTING, "ask_correction"),
    Transition(_S.COLLECTING, Trigger.ALL_COLLECTED, _S.CONFIRMING, "read_back"),
    Transition(_S.COLLECTING, Trigger.EMPTY, _S.COLLECTING, "reprompt"),

    # --- Confirmation gate ---
    Transition(_S.CONFIRMING, Trigger.AFFIRMED, _S.BOOKING, "offer_booking"),
    Transition(_S.CONFIRMING, Trigger.DISPUTED, _S.COLLECTING, "ask_what_to_correct"),
    Transition(_S.CONFIRMING, Trigger.EMPTY, _S.CONFIRMING, "reprompt"),

    # --- Booking offer (both answers end the call) ---
    Transition(_S.BOOKING, Trigger.ACCEPTED, _S.COMPLETE, "promise_follow_up"),
    Transition(_S.BOOKING, Trigger.DECLINED, _S.COMPLETE, "close"),
    Transition(_S.BOOKING, Trigger.EMPTY, _S.BOOKING, "reprompt"),

    # --- Terminal ---
    Transition(_S.COMPLETE, Trigger.MESSAGE, _S.COMPLETE, "already_complete"),
    Transition(_S.COMPLETE, Trigger.EMPTY, _S.COMPLETE, "already_complete"),
]

TRANSITION_TABLE: dict[tuple[ConversationStep, Trigger], Transition] = {
    (t.from_step, t.trigger): t for t in TRANSITIONS
}


class InvalidTransitionError(Exception):
    """Raised when a step/trigger pair has no row in the table."""


def valid_triggers(step: ConversationStep) -> list[Trigger]:
    """Triggers that have a transition out of ``step``."""
    return [t.trigger for t in TRANSITIONS if t.from_step == step]


def contains_any(text: str, tokens: tuple[str, ...]) -> bool:
    lower = text.lower()
    return any(token in lower for token in tokens)


@dataclass
class Turn:
    """Outcome of one ``advance`` call, not yet committed."""

    message: str
    reply: str
    previous_step: ConversationStep
    next_step: ConversationStep
    trigger: Trigger
    collected_data: dict[str, str]
    pending_correction: Optional[str] = None

    @property
    def transitioned(self) -> bool:
        return self.next_step != self.previous_step

    def history_entries(self) -> list[HistoryEntry]:
        return [
            HistoryEntry(role=Role.CLIENT, text=self.message),
            HistoryEntry(role=Role.AGENT, text=self.reply),
        ]

    def apply(self, session: CallSession) -> CallSession:
        """The session as it looks once this turn is committed."""
        return session.with_changes(
            current_step=self.next_step,
            collected_data=self.collected_data,
            pending_correction=self.pending_correction,
            conversation_history=list(session.conversation_history) + self.history_entries(),
        )


@dataclass
class _Context:
    session: CallSession
    text: str
    collected: dict[str, str]
    pending_correction: Optional[str]


class ConversationMachine:
    """
    Deterministic (given its random source) conversation driver.

    Classification depends on the current step; the reply is produced by
    the action named in the matching table row.
    """

    def __init__(self, composer: ResponseComposer | None = None) -> None:
        self._composer = composer or ResponseComposer()
        self._actions: dict[str, Callable[[_Context], str]] = {
            "greet": self._greet,
            "ask_next": self._ask_next,
            "ask_correction": self._ask_correction,
            "read_back": self._read_back,
            "offer_booking": self._offer_booking,
            "ask_what_to_correct": self._ask_what_to_correct,
            "promise_follow_up": self._promise_follow_up,
            "close": self._close,
            "already_complete": self._already_complete,
            "reprompt": self._reprompt,
        }

    def advance(self, session: CallSession, message: str) -> Turn:
        """Classify ``message`` against ``session`` and compute the next turn."""
        ctx = _Context(
            session=session,
            text=message.strip(),
            collected=dict(session.collected_data),
            pending_correction=session.pending_correction,
        )
        trigger = self._classify(ctx)

        transition = TRANSITION_TABLE.get((session.current_step, trigger))
        if transition is None:
            valid = [t.value for t in valid_triggers(session.current_step)]
            raise InvalidTransitionError(
                f"No transition from '{session.current_step.value}' "
                f"with trigger '{trigger.value}'. Valid triggers: {valid}"
            )

        reply = self._actions[transition.action](ctx)

        if transition.to_step != session.current_step:
            log.info(
                "Session %s: %s -> %s (trigger: %s)",
                session.session_id,
                session.current_step.value,
                transition.to_step.value,
                trigger.value,
            )
        return Turn(
            message=message,
            reply=reply,
            previous_step=session.current_step,
            next_step=transition.to_step,
            trigger=trigger,
            collected_data=ctx.collected,
            pending_correction=ctx.pending_correction,
        )

    # ── Classification ─────────────────────────────────────────

    def _classify(self, ctx: _Context) -> Trigger:
        step = ctx.session.current_step

        if not ctx.text:
            return Trigger.EMPTY
        if step == ConversationStep.GREETING or step == ConversationStep.COMPLETE:
            return Trigger.MESSAGE
        if step == ConversationStep.COLLECTING:
            return self._classify_collecting(ctx)
        if step == ConversationStep.CONFIRMING:
            if contains_any(ctx.text, CONFIRM_TOKENS):
                return Trigger.AFFIRMED
            ctx.pending_correction = _mentioned_field(ctx.session, ctx.text)
            return Trigger.DISPUTED
        if step == ConversationStep.BOOKING:
            if contains_any(ctx.text, BOOKING_TOKENS):
                return Trigger.ACCEPTED
            return Trigger.DECLINED
        raise InvalidTransitionError(f"Unknown step: {step!r}")

    def _classify_collecting(self, ctx: _Context) -> Trigger:
        session = ctx.session

        if ctx.pending_correction is not None:
            # The client was asked for a specific field; take the answer as-is.
            field_id = ctx.pending_correction
            ctx.collected[field_id] = extract_for_field(
                ctx.text, field_id, _field_type(session, field_id),
            )
            ctx.pending_correction = None
            log.debug("Session %s: corrected %s", session.session_id, field_id)
        else:
            update = extract(
                ctx.text,
                ctx.collected,
                pending_field_order(ctx.collected, session.core_fields, session.additional_questions),
                known_fields=session.field_ids,
            )
            ctx.collected.update(update)
            if not update and not self._needs_more(ctx):
                named = _mentioned_field(session, ctx.text)
                if named is not None:
                    ctx.pending_correction = named
                    return Trigger.CORRECTION_NAMED

        if self._needs_more(ctx):
            return Trigger.FIELDS_MISSING
        return Trigger.ALL_COLLECTED

    def _needs_more(self, ctx: _Context) -> bool:
        return needs_more_data(
            ctx.collected, ctx.session.core_fields, ctx.session.additional_questions,
        )

    # ── Replies ────────────────────────────────────────────────

    def _greet(self, ctx: _Context) -> str:
        first = self._next_missing(ctx)
        if first is None:
            body = (
                "I'm calling to help collect some information for your inquiry. "
                "Is this a good time to chat for a few minutes?"
            )
        else:
            body = (
                "I'm calling to help collect some information for your inquiry. "
                f"To get started, {_ask_for(ctx.session, first)}"
            )
        return self._composer.compose("greeting", body)

    def _ask_next(self, ctx: _Context) -> str:
        field_id = self._next_missing(ctx)
        if field_id is None:
            return self._read_back(ctx)
        if _is_core(ctx.session, field_id):
            label = ctx.session.label_for(field_id).lower()
            return f"{self._composer.filler()}, and what's your {label}?"
        return f"Great! {ctx.session.label_for(field_id)}"

    def _ask_correction(self, ctx: _Context) -> str:
        return f"Got it. What's the correct {_short_label(ctx.session, ctx.pending_correction)}?"

    def _read_back(self, ctx: _Context) -> str:
        return (
            "Perfect! Let me confirm the information I've collected. "
            f"{confirmation_summary(ctx.session, ctx.collected)} "
            "Is all of that correct?"
        )

    def _offer_booking(self, ctx: _Context) -> str:
        return (
            "Excellent! Would you like me to help you schedule an appointment "
            "to discuss your needs further?"
        )

    def _ask_what_to_correct(self, ctx: _Context) -> str:
        if ctx.pending_correction is not None:
            return (
                "No problem! What's the correct "
                f"{_short_label(ctx.session, ctx.pending_correction)}?"
            )
        return "No problem! What would you like me to correct?"

    def _promise_follow_up(self, ctx: _Context) -> str:
        return (
            "Great! I'll have someone from our team reach out within 24 hours "
            "to schedule a convenient time. Thank you for your information!"
        )

    def _close(self, ctx: _Context) -> str:
        return (
            "No worries! We have all your information and someone will be "
            "in touch. Have a great day!"
        )

    def _already_complete(self, ctx: _Context) -> str:
        return self._composer.compose(
            "default",
            "we already have everything we need, and someone from our team "
            "will be in touch. Thanks again for your time!",
        )

    def _reprompt(self, ctx: _Context) -> str:
        step = ctx.session.current_step
        if step == ConversationStep.GREETING:
            return self._composer.compose("greeting", "can you hear me okay?")
        if step == ConversationStep.COLLECTING:
            if ctx.pending_correction is not None:
                return self._ask_correction(ctx)
            if self._next_missing(ctx) is None:
                return "Sorry, I didn't catch that. What would you like me to correct?"
            return f"Sorry, I didn't catch that. {_capitalize(self._ask_next(ctx))}"
        if step == ConversationStep.CONFIRMING:
            return "Sorry, I didn't catch that. Is the information I read back correct?"
        return "Sorry, I didn't catch that. Would you like to schedule an appointment?"

    def _next_missing(self, ctx: _Context) -> Optional[str]:
        return next_missing_id(
            ctx.collected, ctx.session.core_fields, ctx.session.additional_questions,
        )


# ── Helpers ─────────────────────────────────────────────────────────

def confirmation_summary(session: CallSession, collected: dict[str, str]) -> str:
    """Read-back of everything collected, in questionnaire order."""
    parts = []
    for f in session.core_fields:
        value = collected.get(f.id)
        if value:
            parts.append(f"{f.label}: {value}")
    for q in session.additional_questions:
        value = collected.get(q.id)
        if value:
            parts.append(f"{q.question.rstrip('?')}: {value}")
    return "; ".join(parts) + "." if parts else "I don't have any details yet."


def current_field_label(session: CallSession) -> str:
    """Label of the field the agent is currently asking about."""
    if session.pending_correction is not None:
        return _short_label(session, session.pending_correction)
    field_id = next_missing_id(
        session.collected_data, session.core_fields, session.additional_questions,
    )
    if field_id is None:
        return "information"
    return _short_label(session, field_id)


def _mentioned_field(session: CallSession, text: str) -> Optional[str]:
    """First configured field the client refers to by id or label."""
    lower = text.lower()
    for f in session.core_fields:
        if f.label.lower() in lower or f.id.replace("_", " ").lower() in lower:
            return f.id
    for q in session.additional_questions:
        if q.id.replace("_", " ").lower() in lower:
            return q.id
    return None


def _is_core(session: CallSession, field_id: str) -> bool:
    return any(f.id == field_id for f in session.core_fields)


def _field_type(session: CallSession, field_id: str) -> str:
    for f in session.core_fields:
        if f.id == field_id:
            return f.type
    return "text"


def _short_label(session: CallSession, field_id: Optional[str]) -> str:
    if field_id is None:
        return "information"
    if _is_core(session, field_id):
        return session.label_for(field_id).lower()
    return field_id.replace("_", " ")


def _ask_for(session: CallSession, field_id: str) -> str:
    if _is_core(session, field_id):
        return f"what's your {session.label_for(field_id).lower()}?"
    return session.label_for(field_id)


def _capitalize(text: str) -> str:
    return text[:1].upper() + text[1:]
