"""Request/response payloads for the HTTP surface.

Field names are snake_case in Python and camelCase on the wire. Unknown
request fields are rejected rather than silently ignored.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from callagent.models.session import ConversationStep


class _Payload(BaseModel):
    model_config = ConfigDict(
        extra="forbid", alias_generator=to_camel, populate_by_name=True,
    )


class ProcessMessageRequest(_Payload):
    """One inbound client utterance for a call session."""

    session_id: str = Field(min_length=1)
    message: str
    is_interruption: bool = False
    audio_level: Optional[float] = None
    timestamp: Optional[str] = None


class ProcessMessageResponse(_Payload):
    response: str
    next_step: ConversationStep
    should_collect_more: bool
    booking_available: bool


class StartCallRequest(_Payload):
    """Start (or resume) a call for a configured agent."""

    agent_id: str = Field(min_length=1)
    client_phone: str = ""
    session_id: Optional[str] = None
    call_type: str = "form_submission"
    timestamp: Optional[str] = None
