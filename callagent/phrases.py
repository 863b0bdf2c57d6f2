"""Canned phrasing for the call agent and the response composer.

Fillers make the agent sound less scripted; acknowledgments open every
reply to an interruption. Selection goes through a ``RandomSource`` so
tests can pin the output.
"""

from __future__ import annotations

import random
from typing import Protocol, Sequence, TypeVar

T = TypeVar("T")

HUMAN_FILLERS: tuple[str, ...] = (
    "umm",
    "let me see",
    "gotcha",
    "that makes sense",
    "I understand",
    "hmm",
    "aha",
)

INTERRUPTION_ACKNOWLEDGMENTS: tuple[str, ...] = (
    "Oh, I understand",
    "That's helpful",
    "Got it",
    "I see",
    "Right, okay",
)


class RandomSource(Protocol):
    """Anything that can pick an element; ``random.Random`` qualifies."""

    def choice(self, seq: Sequence[T]) -> T: ...


def default_random_source() -> RandomSource:
    return random.Random()


class ResponseComposer:
    """Assembles the final reply text from a filler and the step's core reply.

    Kinds:
      greeting  "Hi there! {filler}, {body}"
      default   "{Filler}, {body}"
      plain     body unchanged (collecting/confirming/booking replies)
    """

    def __init__(self, random_source: RandomSource | None = None) -> None:
        self._random = random_source or default_random_source()

    def filler(self) -> str:
        return self._random.choice(HUMAN_FILLERS)

    def acknowledgment(self) -> str:
        return self._random.choice(INTERRUPTION_ACKNOWLEDGMENTS)

    def compose(self, kind: str, body: str) -> str:
        if kind == "greeting":
            return f"Hi there! {self.filler()}, {body}"
        if kind == "default":
            return f"{_capitalize(self.filler())}, {body}"
        return body


def _capitalize(text: str) -> str:
    return text[:1].upper() + text[1:]
