"""Chat endpoints.

Provides:
- POST /api/chat - Send a message, get the persona's reply
- GET /api/chat/{session_id} - Turns of a session, oldest first
- DELETE /api/chat/{session_id} - Clear a session and drop its handle
- GET /api/chat/{session_id}/stats - Message counts for a session
- GET /api/chat/{session_id}/search?q= - Substring search in a session
- GET /api/sessions - Session ids, most recently active first
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from personachat.api.deps import get_context_retriever, get_conversation_manager, get_message_store
from personachat.errors import ConfigurationError, GenerationError, PersistenceError, ValidationError
from personachat.logging_config import session_context
from personachat.schemas.chat import ChatIn, ChatOut, ChatTurnOut, ClearSessionOut, ConversationStatsOut
from personachat.services.context import ContextRetriever
from personachat.services.conversation import ConversationManager
from personachat.services.message_store import MessageStore

logger = logging.getLogger(__name__)

router = APIRouter()

SESSION_HEADER = "X-Session-Id"


def _new_session_id() -> str:
    return str(int(time.time() * 1000))


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _preview(text: str, limit: int = 200) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


async def chat_validation_exception_handler(request: Request, exc: RequestValidationError):
    """A malformed chat body is rejected like an empty message; other routes keep the 422."""
    if request.method == "POST" and request.url.path == "/api/chat":
        logger.warning("Malformed chat request: %s", exc.errors())
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": "Message is required"})
    return await request_validation_exception_handler(request, exc)


@router.post("/chat", response_model=ChatOut)
async def send_chat_message(
    payload: ChatIn,
    x_session_id: str | None = Header(default=None, alias=SESSION_HEADER),
    store: MessageStore = Depends(get_message_store),
    manager: ConversationManager = Depends(get_conversation_manager),
) -> ChatOut:
    """
    Relay one user message to the persona.

    Flow:
    1. Validate the message (nothing is stored for an empty one)
    2. Store the user turn
    3. Send the turn through the session's conversation handle
    4. Store the bot turn
    5. Return the reply

    Raises:
        HTTPException: 400 if the message is empty
        HTTPException: 500 if storage or generation fails
    """
    session_id = x_session_id or _new_session_id()
    with session_context(session_id):
        if not payload.message or not payload.message.strip():
            logger.warning("Empty message received")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message is required")

        logger.info("[USER] %s", _preview(payload.message))
        try:
            await asyncio.to_thread(store.append, session_id, "user", payload.message)
            reply = await manager.send_turn(session_id, payload.message)
            logger.info("[BOT] %s", _preview(reply))
            await asyncio.to_thread(store.append, session_id, "bot", reply)
        except ValidationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except (GenerationError, PersistenceError, ConfigurationError) as e:
            logger.error("Chat error: %s", e)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Internal server error: {e}",
            )

        return ChatOut(message=reply, timestamp=_iso_now(), session_id=session_id)


@router.get("/chat/{session_id}", response_model=list[ChatTurnOut])
def get_chat_history(session_id: str, store: MessageStore = Depends(get_message_store)):
    """Get every turn of a session in chronological order."""
    try:
        turns = store.list_by_session(session_id)
    except PersistenceError as e:
        logger.error("History error: %s", e)
        raise HTTPException(status_code=500, detail="Failed to get chat history")
    logger.info("Retrieved chat history for session %s", session_id)
    return [ChatTurnOut.model_validate(t) for t in turns]


@router.delete("/chat/{session_id}", response_model=ClearSessionOut)
def clear_chat_session(
    session_id: str,
    store: MessageStore = Depends(get_message_store),
    manager: ConversationManager = Depends(get_conversation_manager),
):
    """Delete a session's turns and forget its conversation handle."""
    try:
        deleted = store.clear_session(session_id)
    except PersistenceError as e:
        logger.error("Clear error: %s", e)
        raise HTTPException(status_code=500, detail="Failed to clear chat session")
    manager.evict(session_id)
    return ClearSessionOut(status="cleared", session_id=session_id, deleted=deleted)


@router.get("/chat/{session_id}/stats", response_model=ConversationStatsOut)
def get_chat_stats(session_id: str, retriever: ContextRetriever = Depends(get_context_retriever)):
    stats = retriever.stats(session_id)
    if stats is None:
        raise HTTPException(status_code=500, detail="Conversation statistics unavailable")
    return ConversationStatsOut(**stats)


@router.get("/chat/{session_id}/search", response_model=list[ChatTurnOut])
def search_chat(
    session_id: str,
    q: str = Query(..., min_length=1),
    retriever: ContextRetriever = Depends(get_context_retriever),
):
    return [ChatTurnOut.model_validate(t) for t in retriever.search(session_id, q)]


@router.get("/sessions", response_model=list[str])
def list_sessions(store: MessageStore = Depends(get_message_store)):
    try:
        return store.list_sessions()
    except PersistenceError as e:
        logger.error("Session list error: %s", e)
        raise HTTPException(status_code=500, detail="Failed to list sessions")
