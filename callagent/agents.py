"""Agent definitions: registry, JSONL persistence and call instructions.

An agent is a questionnaire (core fields, then additional questions) that a
call session follows. Definitions are authored outside the core and loaded
from a JSONL file, one agent per line.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from callagent.errors import AgentNotFound
from callagent.models.agent import AdditionalQuestion, AgentDefinition, CoreField

log = logging.getLogger("callagent.agents")


class AgentRegistry:
    """In-process lookup of agent definitions by id."""

    def __init__(self, agents: list[AgentDefinition] | None = None) -> None:
        self._agents: dict[str, AgentDefinition] = {}
        for agent in agents or []:
            self.register(agent)

    def register(self, agent: AgentDefinition) -> AgentDefinition:
        replaced = agent.agent_id in self._agents
        self._agents[agent.agent_id] = agent
        log.info(
            "Agent %s %s (%d core fields, %d additional questions)",
            agent.agent_id,
            "updated" if replaced else "registered",
            len(agent.core_fields),
            len(agent.additional_questions),
        )
        return agent

    def get(self, agent_id: str) -> AgentDefinition:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)
        return agent

    def all(self) -> list[AgentDefinition]:
        return list(self._agents.values())

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._agents

    def __len__(self) -> int:
        return len(self._agents)


# ── JSONL persistence ─────────────────────────────────────────────

def load_agents_jsonl(path: str | Path) -> list[AgentDefinition]:
    """Load agent definitions from a JSONL file (one agent per line)."""
    path = Path(path)
    agents: list[AgentDefinition] = []
    for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), 1):
        line = line.strip()
        if not line:
            continue
        try:
            agents.append(AgentDefinition.model_validate(json.loads(line)))
        except ValueError as e:
            raise ValueError(f"{path}:{lineno}: invalid agent definition: {e}") from e
    return agents


def save_agents_jsonl(agents: list[AgentDefinition], path: str | Path) -> None:
    """Persist agent definitions back to a JSONL file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [json.dumps(a.model_dump(by_alias=True)) for a in agents]
    path.write_text("\n".join(lines) + ("\n" if lines else ""), encoding="utf-8")


def load_registry(path: str | Path) -> AgentRegistry:
    """Registry seeded from ``path``; empty when the file doesn't exist."""
    path = Path(path)
    if not path.exists():
        log.info("No agents file at %s — starting with an empty registry", path)
        return AgentRegistry()
    agents = load_agents_jsonl(path)
    log.info("Loaded %d agent(s) from %s", len(agents), path)
    return AgentRegistry(agents)


# ── Call instructions ─────────────────────────────────────────────

def build_agent_instructions(
    core_fields: list[CoreField], additional_questions: list[AdditionalQuestion],
) -> str:
    """Render the behaviour brief handed to the voice/LLM layer for an agent."""
    field_descriptions = ", ".join(f"{f.label} ({f.type})" for f in core_fields)
    additional = "; ".join(q.question for q in additional_questions)

    return f"""You are a professional call agent collecting client information. Follow these guidelines:

BEHAVIOR:
- Sound human and conversational
- Ask ONE question at a time
- Use natural fillers: "umm", "let me see", "gotcha", "that makes sense"
- Handle interruptions gracefully: pause, acknowledge, then continue
- Never reveal you're AI unless directly asked

COLLECTION PROCESS:
1. Collect: {field_descriptions}
2. Ask additional questions: {additional or 'None configured'}
3. Confirm all information accuracy
4. Offer appointment booking

GUARDRAILS:
- Only collect the specified information
- Don't speculate or provide business advice
- If unsure, ask for clarification
- Keep responses under 30 words
- Stay professional but friendly

INTERRUPTION HANDLING:
- If client interrupts, lower your voice and pause
- Acknowledge their input: "Oh, I understand" or "That's helpful"
- Return to your question, rephrased differently
- Track interruption context for natural flow"""


def instructions_for(agent: AgentDefinition) -> str:
    return build_agent_instructions(agent.core_fields, agent.additional_questions)
