"""Readiness predicates shared by the state machine and the UI.

Pure functions over (collected data, current step, questionnaire); calling
them never changes anything.
"""

from __future__ import annotations

from typing import Mapping, Optional, Sequence

from callagent.extractor import is_filled
from callagent.models.agent import AdditionalQuestion, CoreField
from callagent.models.session import CallSession, ConversationStep


def missing_core_fields(
    collected: Mapping[str, str], core_fields: Sequence[CoreField],
) -> list[CoreField]:
    """Required core fields still unanswered, in configured order."""
    return [f for f in core_fields if f.required and not is_filled(collected, f.id)]


def unanswered_questions(
    collected: Mapping[str, str], questions: Sequence[AdditionalQuestion],
) -> list[AdditionalQuestion]:
    """Additional questions still unanswered, in configured order."""
    return [q for q in questions if not is_filled(collected, q.id)]


def pending_field_order(
    collected: Mapping[str, str],
    core_fields: Sequence[CoreField],
    questions: Sequence[AdditionalQuestion],
) -> list[str]:
    """Ids still to be collected: core fields first, then questions."""
    return [f.id for f in missing_core_fields(collected, core_fields)] + [
        q.id for q in unanswered_questions(collected, questions)
    ]


def next_missing_id(
    collected: Mapping[str, str],
    core_fields: Sequence[CoreField],
    questions: Sequence[AdditionalQuestion],
) -> Optional[str]:
    order = pending_field_order(collected, core_fields, questions)
    return order[0] if order else None


def needs_more_data(
    collected: Mapping[str, str],
    core_fields: Sequence[CoreField],
    questions: Sequence[AdditionalQuestion],
) -> bool:
    return bool(missing_core_fields(collected, core_fields)) or bool(
        unanswered_questions(collected, questions)
    )


def can_offer_booking(
    collected: Mapping[str, str],
    current_step: ConversationStep,
    core_fields: Sequence[CoreField],
    questions: Sequence[AdditionalQuestion],
) -> bool:
    return (
        not needs_more_data(collected, core_fields, questions)
        and current_step != ConversationStep.COMPLETE
    )


# ── Session-level wrappers ──────────────────────────────────────────

def session_needs_more_data(session: CallSession) -> bool:
    return needs_more_data(
        session.collected_data, session.core_fields, session.additional_questions,
    )


def session_can_offer_booking(session: CallSession) -> bool:
    return can_offer_booking(
        session.collected_data,
        session.current_step,
        session.core_fields,
        session.additional_questions,
    )
