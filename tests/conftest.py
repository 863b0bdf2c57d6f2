"""Shared test fixtures."""

from typing import Optional

import pytest

from callagent.agents import AgentRegistry
from callagent.fsm import ConversationMachine
from callagent.models.agent import AdditionalQuestion, AgentDefinition, CoreField
from callagent.models.session import CallSession, ConversationStep
from callagent.phrases import ResponseComposer
from callagent.session import CallSessionHandler
from callagent.store import InMemorySessionStore


class FirstChoice:
    """Random source that always picks the first option."""

    def choice(self, seq):
        return seq[0]


CORE_FIELDS = [
    CoreField(id="name", label="Name"),
    CoreField(id="email", label="Email", type="email"),
    CoreField(id="phone", label="Phone", type="phone"),
]

QUESTIONS = [
    AdditionalQuestion(id="service", question="What service are you interested in?"),
    AdditionalQuestion(id="timeline", question="When are you hoping to get started?"),
    AdditionalQuestion(id="budget", question="Do you have a rough budget in mind?"),
]

FULL_CORE = {"name": "John Smith", "email": "john@example.com", "phone": "555-123-4567"}


@pytest.fixture
def make_session():
    """Factory for sessions at any step with any collected data."""

    def _make(
        step: ConversationStep = ConversationStep.COLLECTING,
        collected: Optional[dict] = None,
        questions: Optional[list] = None,
        **kwargs,
    ) -> CallSession:
        return CallSession(
            session_id=kwargs.pop("session_id", "sess-1"),
            agent_id=kwargs.pop("agent_id", "agent-1"),
            current_step=step,
            collected_data=collected or {},
            core_fields=kwargs.pop("core_fields", CORE_FIELDS),
            additional_questions=[] if questions is None else questions,
            **kwargs,
        )

    return _make


@pytest.fixture
def composer():
    return ResponseComposer(FirstChoice())


@pytest.fixture
def machine(composer):
    return ConversationMachine(composer)


@pytest.fixture
def agent():
    return AgentDefinition(
        agent_id="agent-1",
        name="Lead intake",
        core_fields=CORE_FIELDS,
        additional_questions=QUESTIONS,
    )


@pytest.fixture
def registry(agent):
    return AgentRegistry([agent])


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def handler(store, registry):
    return CallSessionHandler(store, registry, random_source=FirstChoice())
