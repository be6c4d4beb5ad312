"""Session controller and terminal client for a streaming chat service."""

from .config import DeliveryMode, PartialReplyPolicy, Settings, get_settings
from .conversation import AgentStep, ConversationStore, Turn
from .session import Dispatcher, RequestOptions, SessionController
from .sse import DecodedEvent, FrameDecoder

__version__ = "0.1.0"

__all__ = [
    "AgentStep",
    "ConversationStore",
    "DecodedEvent",
    "DeliveryMode",
    "Dispatcher",
    "FrameDecoder",
    "PartialReplyPolicy",
    "RequestOptions",
    "SessionController",
    "Settings",
    "Turn",
    "get_settings",
]
