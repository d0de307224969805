"""FastAPI dependencies resolving the services built at startup."""

from __future__ import annotations

from fastapi import Request

from personachat.services.context import ContextRetriever
from personachat.services.conversation import ConversationManager
from personachat.services.message_store import MessageStore


def get_message_store(request: Request) -> MessageStore:
    return request.app.state.message_store


def get_context_retriever(request: Request) -> ContextRetriever:
    return request.app.state.context_retriever


def get_conversation_manager(request: Request) -> ConversationManager:
    return request.app.state.conversation_manager
