from .cancellation import CancellationToken
from .controller import SessionController
from .dispatcher import AssistantReply, Dispatcher, ReplySink, RequestOptions

__all__ = [
    "AssistantReply",
    "CancellationToken",
    "Dispatcher",
    "ReplySink",
    "RequestOptions",
    "SessionController",
]
