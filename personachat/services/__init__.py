"""Chat services: message store, context retrieval, LLM adapter, conversation manager."""

from personachat.services.context import ContextRetriever
from personachat.services.conversation import ConversationHandle, ConversationManager, HandleRegistry
from personachat.services.message_store import MessageStore

__all__ = [
    "ContextRetriever",
    "ConversationHandle",
    "ConversationManager",
    "HandleRegistry",
    "MessageStore",
]
