from .models import AgentStep, Turn
from .store import ConversationStore, StoreChange

__all__ = ["AgentStep", "ConversationStore", "StoreChange", "Turn"]
