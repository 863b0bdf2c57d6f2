"""Pydantic model tracking one call session through the conversation.

A session is created when the call connects (``greeting`` step, nothing
collected) and is rewritten by every processed message until it reaches
``complete``. The questionnaire is snapshotted from the agent definition at
creation time so later configuration edits never reshape a live call.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from callagent.models.agent import AdditionalQuestion, CoreField


class ConversationStep(str, Enum):
    """Steps of a call, in the order a conversation normally visits them."""

    GREETING = "greeting"
    COLLECTING = "collecting"
    CONFIRMING = "confirming"
    BOOKING = "booking"
    COMPLETE = "complete"


class Role(str, Enum):
    AGENT = "agent"
    CLIENT = "client"


class HistoryEntry(BaseModel):
    """One utterance in the conversation transcript."""

    model_config = ConfigDict(extra="forbid")

    role: Role
    text: str
    interruption: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallSession(BaseModel):
    """Persisted state of a single call.

    ``version`` is bumped on every store write and used as the token for
    conditional updates.
    """

    model_config = ConfigDict(extra="forbid")

    session_id: str
    agent_id: str
    client_phone: str = ""

    current_step: ConversationStep = ConversationStep.GREETING
    collected_data: dict[str, str] = {}
    interruption_count: int = Field(default=0, ge=0)
    conversation_history: list[HistoryEntry] = []
    pending_correction: Optional[str] = None

    core_fields: list[CoreField]
    additional_questions: list[AdditionalQuestion] = []

    version: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _check_known_fields(self) -> "CallSession":
        known = set(self.field_ids)
        unknown = sorted(set(self.collected_data) - known)
        if unknown:
            raise ValueError(f"collected_data has unknown field ids: {unknown}")
        if self.pending_correction is not None and self.pending_correction not in known:
            raise ValueError(f"pending_correction {self.pending_correction!r} is not a field id")
        return self

    def with_changes(self, **changes: Any) -> "CallSession":
        """Return a validated copy with ``changes`` applied."""
        data = self.model_dump()
        data.update(changes)
        return CallSession.model_validate(data)

    @property
    def field_ids(self) -> list[str]:
        return [f.id for f in self.core_fields] + [q.id for q in self.additional_questions]

    @property
    def is_done(self) -> bool:
        return self.current_step == ConversationStep.COMPLETE

    def label_for(self, field_id: str) -> str:
        """Human label for a field or question id (falls back to the id)."""
        for f in self.core_fields:
            if f.id == field_id:
                return f.label
        for q in self.additional_questions:
            if q.id == field_id:
                return q.question
        return field_id

    def to_dict(self, detail: bool = False) -> dict[str, Any]:
        """Serialize session state for the API.

        With detail=False: the call summary the UI polls.
        With detail=True: adds the transcript and questionnaire.
        """
        d: dict[str, Any] = {
            "sessionId": self.session_id,
            "agentId": self.agent_id,
            "clientPhone": self.client_phone,
            "currentStep": self.current_step.value,
            "collectedData": dict(self.collected_data),
            "interruptionCount": self.interruption_count,
        }
        if detail:
            d["conversationHistory"] = [
                e.model_dump(mode="json") for e in self.conversation_history
            ]
            d["pendingCorrection"] = self.pending_correction
            d["coreFields"] = [f.model_dump() for f in self.core_fields]
            d["additionalQuestions"] = [q.model_dump() for q in self.additional_questions]
            d["updatedAt"] = self.updated_at.isoformat()
        return d
