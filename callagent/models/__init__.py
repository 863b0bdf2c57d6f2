"""Data models for the conversation core."""

from .agent import AdditionalQuestion, AgentDefinition, CoreField
from .session import CallSession, ConversationStep, HistoryEntry, Role

__all__ = [
    "AdditionalQuestion",
    "AgentDefinition",
    "CallSession",
    "ConversationStep",
    "CoreField",
    "HistoryEntry",
    "Role",
]
