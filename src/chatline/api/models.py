"""Wire models for the chat service."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, TypeAlias

from pydantic import BaseModel, Field, ValidationError

from ..types import Role, StepType


class HistoryMessage(BaseModel):
    role: Role
    content: str


class ChatRequest(BaseModel):
    """Body of ``POST /v1/agent/chat``."""

    message: str
    conversation: list[HistoryMessage] = Field(default_factory=list)
    system_prompt: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None


class StreamRequest(BaseModel):
    """Body of ``POST /v1/chat/completions/stream``."""

    messages: list[HistoryMessage]
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    stream: bool = True


class AgentRunRequest(BaseModel):
    """Body of ``POST /v1/agent/run``."""

    message: str
    conversation: list[HistoryMessage] = Field(default_factory=list)
    system_prompt: str | None = None
    model: str | None = None


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatResponse(BaseModel):
    id: str
    message: str
    model: str = ""
    usage: Usage | None = None


class AgentStepPayload(BaseModel):
    step_id: str | None = None
    step_type: StepType
    content: str = ""
    tool_name: str | None = None
    tool_input: str | None = None
    tool_output: str | None = None


class AgentRunResponse(BaseModel):
    id: str
    final_answer: str
    steps: list[AgentStepPayload] = Field(default_factory=list)
    iterations: int = 0


class StreamChunk(BaseModel):
    """One delta of a streamed completion."""

    id: str = ""
    content: str = ""
    finish_reason: str | None = None


class StreamFailure(BaseModel):
    """An error the service reported inside the stream."""

    error: str


@dataclass(frozen=True)
class MalformedPayload:
    """A payload line that could not be interpreted; callers skip it."""

    data: str
    reason: str


StreamPayload: TypeAlias = StreamChunk | StreamFailure | MalformedPayload


def parse_stream_payload(data: str) -> StreamPayload:
    """Validate one decoded payload line into a tagged variant."""
    try:
        raw = json.loads(data)
    except json.JSONDecodeError as exc:
        return MalformedPayload(data=data, reason=f"invalid json: {exc.msg}")
    if not isinstance(raw, dict):
        return MalformedPayload(data=data, reason="payload is not an object")
    if "content" not in raw and isinstance(raw.get("error"), str):
        return StreamFailure(error=raw["error"])
    try:
        return StreamChunk.model_validate(raw)
    except ValidationError as exc:
        return MalformedPayload(data=data, reason=f"invalid chunk: {exc.error_count()} error(s)")


def request_body(model: BaseModel) -> dict[str, Any]:
    """Serialize a request, omitting unset optional fields."""
    return model.model_dump(mode="json", exclude_none=True)
