"""Routes one user turn to the direct, streaming, or agent endpoint."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from ..api.client import ChatClient
from ..api.models import (
    AgentRunRequest,
    AgentStepPayload,
    ChatRequest,
    HistoryMessage,
    MalformedPayload,
    StreamFailure,
    StreamRequest,
    parse_stream_payload,
)
from ..config import DeliveryMode, Settings
from ..conversation.models import AgentStep
from ..errors import StreamError
from ..sse import FrameDecoder
from .cancellation import wait_until_stopped


@dataclass(frozen=True)
class RequestOptions:
    """Generation parameters attached to every request."""

    system_prompt: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> RequestOptions:
        return cls(
            system_prompt=settings.system_prompt or None,
            model=settings.model or None,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
        )


@dataclass(frozen=True)
class AssistantReply:
    """A complete assistant answer from the direct or agent endpoint."""

    content: str
    reply_id: str | None = None
    steps: tuple[AgentStep, ...] = ()


class ReplySink(Protocol):
    """Receives the results of one operation."""

    def begin_stream(self) -> None: ...

    def push_delta(self, delta: str) -> None: ...

    def finish_stream(self) -> None: ...

    def complete(self, reply: AssistantReply) -> None: ...


class Dispatcher:
    """Issues exactly one network operation per call.

    Every network await races the operation's stop event, so a cancelled
    operation stops reading from the transport at the next suspension point.
    """

    def __init__(self, client: ChatClient, options: RequestOptions | None = None) -> None:
        self._client = client
        self.options = options or RequestOptions()

    async def dispatch(
        self,
        mode: DeliveryMode,
        message: str,
        history: Sequence[HistoryMessage],
        sink: ReplySink,
        stop: asyncio.Event,
    ) -> None:
        logger.debug("dispatch.start mode={} history={}", mode, len(history))
        match mode:
            case DeliveryMode.DIRECT:
                await self._direct(message, history, sink, stop)
            case DeliveryMode.STREAM:
                await self._stream(message, history, sink, stop)
            case DeliveryMode.AGENT:
                await self._agent(message, history, sink, stop)
            case _:
                raise ValueError(f"unknown delivery mode: {mode!r}")

    def build_chat_request(self, message: str, history: Sequence[HistoryMessage]) -> ChatRequest:
        return ChatRequest(
            message=message,
            conversation=list(history),
            system_prompt=self.options.system_prompt,
            model=self.options.model,
            temperature=self.options.temperature,
            max_tokens=self.options.max_tokens,
        )

    def build_stream_request(self, message: str, history: Sequence[HistoryMessage]) -> StreamRequest:
        messages: list[HistoryMessage] = []
        if self.options.system_prompt:
            messages.append(HistoryMessage(role="system", content=self.options.system_prompt))
        messages.extend(history)
        messages.append(HistoryMessage(role="user", content=message))
        return StreamRequest(
            messages=messages,
            model=self.options.model,
            temperature=self.options.temperature,
            max_tokens=self.options.max_tokens,
        )

    def build_agent_request(self, message: str, history: Sequence[HistoryMessage]) -> AgentRunRequest:
        return AgentRunRequest(
            message=message,
            conversation=list(history),
            system_prompt=self.options.system_prompt,
            model=self.options.model,
        )

    async def _direct(
        self, message: str, history: Sequence[HistoryMessage], sink: ReplySink, stop: asyncio.Event
    ) -> None:
        request = self.build_chat_request(message, history)
        response = await wait_until_stopped(self._client.chat(request), stop)
        sink.complete(AssistantReply(content=response.message, reply_id=response.id))

    async def _agent(
        self, message: str, history: Sequence[HistoryMessage], sink: ReplySink, stop: asyncio.Event
    ) -> None:
        request = self.build_agent_request(message, history)
        response = await wait_until_stopped(self._client.run_agent(request), stop)
        logger.info("dispatch.agent.done steps={} iterations={}", len(response.steps), response.iterations)
        steps = tuple(_to_step(step) for step in response.steps)
        sink.complete(AssistantReply(content=response.final_answer, reply_id=response.id, steps=steps))

    async def _stream(
        self, message: str, history: Sequence[HistoryMessage], sink: ReplySink, stop: asyncio.Event
    ) -> None:
        request = self.build_stream_request(message, history)
        sink.begin_stream()
        fragments = self._client.stream_chat(request)
        reader = _read_until_stopped(fragments, stop)
        events = FrameDecoder().aiter_events(reader)
        try:
            async for event in events:
                if event.terminal:
                    logger.debug("dispatch.stream.done")
                    continue
                payload = parse_stream_payload(event.data)
                match payload:
                    case MalformedPayload(reason=reason):
                        logger.debug("dispatch.stream.skip reason={}", reason)
                    case StreamFailure(error=error):
                        raise StreamError(error)
                    case _ if payload.content:
                        sink.push_delta(payload.content)
        finally:
            for stream in (events, reader, fragments):
                await _close_quietly(stream)
        sink.finish_stream()


def _to_step(payload: AgentStepPayload) -> AgentStep:
    return AgentStep(
        step_type=payload.step_type,
        content=payload.content,
        tool_name=payload.tool_name,
        tool_input=payload.tool_input,
        tool_output=payload.tool_output,
    )


async def _next_fragment(fragments: AsyncIterator[str]) -> str | None:
    try:
        return await anext(fragments)
    except StopAsyncIteration:
        return None


async def _read_until_stopped(fragments: AsyncIterator[str], stop: asyncio.Event) -> AsyncIterator[str]:
    while True:
        fragment = await wait_until_stopped(_next_fragment(fragments), stop)
        if fragment is None:
            return
        yield fragment


async def _close_quietly(stream: AsyncIterator[object]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except RuntimeError:
        # The generator is still running when its read was cancelled mid-flight.
        logger.debug("dispatch.stream.close_skipped")
