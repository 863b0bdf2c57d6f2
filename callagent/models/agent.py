"""Pydantic models for agent questionnaires (core fields + additional questions)."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

MAX_ADDITIONAL_QUESTIONS = 10


class CoreField(BaseModel):
    """A piece of contact/profile information collected first (name, email, ...)."""

    model_config = ConfigDict(extra="forbid")

    id: str
    label: str
    type: str = "text"  # "text", "email" or "phone"
    required: bool = True


class AdditionalQuestion(BaseModel):
    """An agent-specific question asked once the core fields are collected."""

    model_config = ConfigDict(extra="forbid")

    id: str
    question: str
    type: str = "text"  # "text", "select" or "boolean"
    options: Optional[list[str]] = None
    required: bool = True


class AgentDefinition(BaseModel):
    """A configured call agent: its questionnaire, in asking order."""

    model_config = ConfigDict(
        extra="forbid", alias_generator=to_camel, populate_by_name=True,
    )

    agent_id: str
    name: str = ""
    core_fields: list[CoreField]
    additional_questions: list[AdditionalQuestion] = []

    @model_validator(mode="after")
    def _check_questionnaire(self) -> "AgentDefinition":
        if not self.core_fields:
            raise ValueError("an agent needs at least one core field")
        if len(self.additional_questions) > MAX_ADDITIONAL_QUESTIONS:
            raise ValueError(
                f"at most {MAX_ADDITIONAL_QUESTIONS} additional questions are allowed, "
                f"got {len(self.additional_questions)}"
            )
        ids = [f.id for f in self.core_fields] + [q.id for q in self.additional_questions]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"duplicate field ids: {duplicates}")
        return self

    @property
    def field_ids(self) -> list[str]:
        return [f.id for f in self.core_fields] + [q.id for q in self.additional_questions]
