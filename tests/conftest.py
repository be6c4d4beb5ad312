from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import pytest

from chatline.api.models import (
    AgentRunRequest,
    AgentRunResponse,
    ChatRequest,
    ChatResponse,
    StreamRequest,
)
from chatline.errors import ServiceError


class FakeChatClient:
    """In-memory stand-in for ``ServiceClient``.

    ``fragments`` is the raw event-stream body handed out piece by piece;
    ``gate``, when set, holds every call until it is released.
    """

    def __init__(
        self,
        *,
        reply: str = "direct reply",
        fragments: list[str] | None = None,
        agent: dict[str, Any] | None = None,
        error: Exception | None = None,
        stream_error_after: int | None = None,
    ) -> None:
        self.reply = reply
        self.fragments = fragments or []
        self.agent = agent or {"id": "run-1", "final_answer": "42", "steps": [], "iterations": 1}
        self.error = error
        self.stream_error_after = stream_error_after
        self.gate: asyncio.Event | None = None
        self.requests: list[Any] = []
        self.closed = False

    async def _wait(self) -> None:
        if self.gate is not None:
            await self.gate.wait()

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        await self._wait()
        if self.error is not None:
            raise self.error
        return ChatResponse(id=f"reply-{len(self.requests)}", message=self.reply, model="fake")

    async def run_agent(self, request: AgentRunRequest) -> AgentRunResponse:
        self.requests.append(request)
        await self._wait()
        if self.error is not None:
            raise self.error
        return AgentRunResponse.model_validate(self.agent)

    async def stream_chat(self, request: StreamRequest) -> AsyncIterator[str]:
        self.requests.append(request)
        await self._wait()
        if self.error is not None:
            raise self.error
        for index, fragment in enumerate(self.fragments):
            if self.stream_error_after is not None and index >= self.stream_error_after:
                raise ServiceError("Stream interrupted: connection reset")
            await asyncio.sleep(0)
            yield fragment

    def close(self) -> None:
        self.closed = True


def sse(*contents: str, done: bool = True) -> list[str]:
    body = "".join(f'data: {{"id":"s1","content":"{content}"}}\n\n' for content in contents)
    if done:
        body += "data: [DONE]\n\n"
    return [body[index : index + 7] for index in range(0, len(body), 7)]


@pytest.fixture
def fake_client() -> FakeChatClient:
    return FakeChatClient()
