"""Session-scoped conversation handles and the turn relay.

Each session gets one ``ConversationHandle``: an in-memory message history
seeded once with the persona preamble (plus any stored context) and extended
by every successful turn. The ``ConversationManager`` resolves or creates the
handle through a ``HandleRegistry`` and forwards only the wrapped user line to
the chat model, relying on the handle's accumulated history for continuity.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable

from langchain_core.chat_history import InMemoryChatMessageHistory
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from personachat.errors import ConfigurationError, GenerationError
from personachat.models.chat import ChatTurn
from personachat.services.context import DEFAULT_CONTEXT_LIMIT, ContextRetriever

logger = logging.getLogger(__name__)


def _content_text(content) -> str:
    """Model content may be a string or a list of content blocks."""
    if isinstance(content, str):
        return content
    return "".join(
        block.get("text", "") if isinstance(block, dict) else str(block)
        for block in content or []
    )


@dataclass
class ConversationHandle:
    """Process-local conversation state for one session."""

    session_id: str
    preamble: str
    history: InMemoryChatMessageHistory
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def messages(self) -> list[BaseMessage]:
        return list(self.history.messages)

    async def send(self, llm: BaseChatModel, text: str, timeout: float | None = None) -> str:
        """Send one wrapped user line; history grows only if the call succeeds."""
        async with self._lock:
            request = HumanMessage(content=text)
            try:
                response = await asyncio.wait_for(
                    llm.ainvoke([*self.history.messages, request]), timeout=timeout
                )
            except asyncio.TimeoutError as exc:
                raise GenerationError(f"Generation timed out after {timeout}s") from exc
            except Exception as exc:
                raise GenerationError(str(exc) or exc.__class__.__name__) from exc

            reply = _content_text(response.content)
            if not reply.strip():
                finish = (getattr(response, "response_metadata", None) or {}).get("finish_reason")
                raise GenerationError(f"Empty response from model (finish_reason={finish})")

            self.history.add_messages([request, AIMessage(content=reply)])
            return reply


HandleFactory = Callable[[str], Awaitable[ConversationHandle]]


class HandleRegistry:
    """Concurrency-safe map of session id to handle with optional LRU bound.

    Creation is serialised per session: concurrent first turns for one
    session wait on that session's creation lock and end up sharing a single
    handle, while other sessions are resolved without waiting. A failing
    factory caches nothing.
    """

    def __init__(self, max_size: int = 0):
        self.max_size = max_size
        self._handles: OrderedDict[str, ConversationHandle] = OrderedDict()
        self._creating: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._handles

    def get(self, session_id: str) -> ConversationHandle | None:
        return self._handles.get(session_id)

    def _touch(self, session_id: str) -> ConversationHandle | None:
        handle = self._handles.get(session_id)
        if handle is not None:
            self._handles.move_to_end(session_id)
        return handle

    async def get_or_create(self, session_id: str, factory: HandleFactory) -> ConversationHandle:
        handle = self._touch(session_id)
        if handle is not None:
            return handle

        lock = self._creating.setdefault(session_id, asyncio.Lock())
        async with lock:
            # Another turn may have created it while we waited
            handle = self._touch(session_id)
            if handle is not None:
                return handle

            handle = await factory(session_id)
            self._handles[session_id] = handle
            self._creating.pop(session_id, None)
            if self.max_size and len(self._handles) > self.max_size:
                evicted, _ = self._handles.popitem(last=False)
                logger.info("Evicted least recently used handle for session %s", evicted)
            return handle

    def evict(self, session_id: str) -> bool:
        return self._handles.pop(session_id, None) is not None


class ConversationManager:
    """Owns one conversation handle per session and relays turns to the model."""

    def __init__(
        self,
        llm: BaseChatModel,
        preamble: str,
        *,
        registry: HandleRegistry | None = None,
        context_retriever: ContextRetriever | None = None,
        context_limit: int = DEFAULT_CONTEXT_LIMIT,
        timeout: float | None = None,
        user_name: str = "User",
        bot_name: str = "Assistant",
    ):
        self.llm = llm
        self.preamble = preamble
        self.registry = registry if registry is not None else HandleRegistry()
        self.context_retriever = context_retriever
        self.context_limit = context_limit
        self.timeout = timeout
        self.user_name = user_name
        self.bot_name = bot_name

    def wrap(self, user_text: str) -> str:
        return f"{self.user_name}: {user_text}\n\n{self.bot_name}:"

    async def send_turn(self, session_id: str, user_text: str) -> str:
        """Resolve the session's handle, send the user line, return the reply verbatim.

        Raises:
            ConfigurationError: The handle could not be created
            GenerationError: The external call failed; nothing is retried
        """
        handle = await self.registry.get_or_create(
            session_id, lambda sid: self._create_handle(sid, pending=user_text)
        )
        logger.info("Sending turn for session %s to model", session_id)
        reply = await handle.send(self.llm, self.wrap(user_text), timeout=self.timeout)
        logger.debug("Received %d chars for session %s", len(reply), session_id)
        return reply

    def evict(self, session_id: str) -> bool:
        """Forget a session's handle; the next turn re-creates it."""
        removed = self.registry.evict(session_id)
        if removed:
            logger.info("Evicted handle for session %s", session_id)
        return removed

    async def _create_handle(self, session_id: str, pending: str | None = None) -> ConversationHandle:
        if not self.preamble or not self.preamble.strip():
            raise ConfigurationError("Persona preamble is empty; cannot start a conversation")

        history = InMemoryChatMessageHistory()
        history.add_message(SystemMessage(content=self.preamble))
        history.add_messages(self._context_messages(await self._load_context(session_id, pending)))

        logger.info(
            "Created conversation handle for session %s (%d context messages)",
            session_id,
            len(history.messages) - 1,
        )
        return ConversationHandle(session_id=session_id, preamble=self.preamble, history=history)

    async def _load_context(self, session_id: str, pending: str | None) -> list[ChatTurn]:
        if self.context_retriever is None or self.context_limit <= 0:
            return []
        # One extra row so the caller's just-saved user turn can be dropped.
        turns = await asyncio.to_thread(
            self.context_retriever.recent_context, session_id, self.context_limit + 1
        )
        if turns and pending is not None and turns[-1].sender == "user" and turns[-1].content == pending:
            turns = turns[:-1]
        turns = turns[-self.context_limit:]
        # History must open with a user turn after the preamble
        while turns and turns[0].sender != "user":
            turns = turns[1:]
        return turns

    def _context_messages(self, turns: list[ChatTurn]) -> list[BaseMessage]:
        messages: list[BaseMessage] = []
        for turn in turns:
            if turn.sender == "user":
                messages.append(HumanMessage(content=self.wrap(turn.content)))
            else:
                messages.append(AIMessage(content=turn.content))
        return messages
