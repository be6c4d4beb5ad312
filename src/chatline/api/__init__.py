"""Service boundary: wire models and HTTP transport."""

from .client import ChatClient, ServiceClient
from .models import (
    AgentRunRequest,
    AgentRunResponse,
    ChatRequest,
    ChatResponse,
    HistoryMessage,
    MalformedPayload,
    StreamChunk,
    StreamFailure,
    StreamRequest,
    parse_stream_payload,
)

__all__ = [
    "AgentRunRequest",
    "AgentRunResponse",
    "ChatClient",
    "ChatRequest",
    "ChatResponse",
    "HistoryMessage",
    "MalformedPayload",
    "ServiceClient",
    "StreamChunk",
    "StreamFailure",
    "StreamRequest",
    "parse_stream_payload",
]
