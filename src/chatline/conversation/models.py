"""Conversation data types."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

from ..types import Role, StepType

_STEP_LABELS: dict[StepType, str] = {
    "thinking": "Thinking",
    "tool_call": "Tool Call",
    "tool_result": "Result",
    "final_answer": "Answer",
    "error": "Error",
}


def new_turn_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class AgentStep:
    """One step of a tool-augmented agent run."""

    step_type: StepType
    content: str
    tool_name: str | None = None
    tool_input: str | None = None
    tool_output: str | None = None

    @property
    def label(self) -> str:
        return _STEP_LABELS.get(self.step_type, self.step_type)


@dataclass(frozen=True)
class Turn:
    """A single message in the conversation.

    A pending turn (``finalized=False``) is the assistant reply that a stream
    is still filling in; every other turn is final when created.
    """

    id: str
    role: Role
    content: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    steps: tuple[AgentStep, ...] = ()
    finalized: bool = True

    @classmethod
    def create(
        cls,
        role: Role,
        content: str,
        *,
        turn_id: str | None = None,
        steps: tuple[AgentStep, ...] = (),
    ) -> Turn:
        return cls(id=turn_id or new_turn_id(), role=role, content=content, steps=tuple(steps))

    @classmethod
    def pending(cls, role: Role = "assistant") -> Turn:
        return cls(id=new_turn_id(), role=role, content="", finalized=False)

    @property
    def is_empty(self) -> bool:
        return not self.content.strip()
