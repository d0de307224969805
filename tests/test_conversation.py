"""Tests for services/conversation.py: handles, registry and ConversationManager."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from personachat.errors import ConfigurationError, GenerationError
from personachat.services.context import ContextRetriever
from personachat.services.conversation import ConversationManager, HandleRegistry
from personachat.services.message_store import MessageStore

PREAMBLE = "You are Harper."


def _mock_llm(*replies: str) -> MagicMock:
    llm = MagicMock()
    llm.ainvoke = AsyncMock(side_effect=[AIMessage(content=r) for r in replies])
    return llm


def _manager(llm, **kwargs) -> ConversationManager:
    kwargs.setdefault("user_name", "Sam")
    kwargs.setdefault("bot_name", "Harper")
    return ConversationManager(llm, PREAMBLE, **kwargs)


class TestSendTurn:
    @pytest.mark.asyncio
    async def test_first_turn_creates_seeded_handle(self):
        llm = _mock_llm("hi Sam")
        manager = _manager(llm)

        reply = await manager.send_turn("s1", "hello")

        assert reply == "hi Sam"
        handle = manager.registry.get("s1")
        assert handle is not None
        assert handle.preamble == PREAMBLE
        messages = handle.messages
        assert isinstance(messages[0], SystemMessage)
        assert messages[0].content == PREAMBLE
        assert messages[1].content == "Sam: hello\n\nHarper:"
        assert messages[2].content == "hi Sam"

    @pytest.mark.asyncio
    async def test_second_turn_reuses_handle_and_sends_only_wrapper(self):
        llm = _mock_llm("one", "two")
        manager = _manager(llm)

        await manager.send_turn("s1", "first")
        handle = manager.registry.get("s1")
        await manager.send_turn("s1", "second")

        assert manager.registry.get("s1") is handle
        assert len(manager.registry) == 1
        sent = llm.ainvoke.await_args_list[1].args[0]
        # preamble + first exchange + new wrapped line
        assert [type(m) for m in sent] == [SystemMessage, HumanMessage, AIMessage, HumanMessage]
        assert sent[-1].content == "Sam: second\n\nHarper:"
        assert sent[0].content == PREAMBLE

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self):
        manager = _manager(_mock_llm("a", "b"))
        await manager.send_turn("s1", "x")
        await manager.send_turn("s2", "y")
        assert len(manager.registry) == 2
        assert manager.registry.get("s1") is not manager.registry.get("s2")

    @pytest.mark.asyncio
    async def test_reply_returned_verbatim(self):
        text = "  Well...\n\n*hums*  a long reply  "
        manager = _manager(FakeListChatModel(responses=[text]))
        assert await manager.send_turn("s1", "hello") == text

    @pytest.mark.asyncio
    async def test_list_content_blocks_joined(self):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(return_value=AIMessage(content=[{"type": "text", "text": "Hel"}, "lo"]))
        assert await _manager(llm).send_turn("s1", "hi") == "Hello"


class TestFailures:
    @pytest.mark.asyncio
    async def test_external_failure_becomes_generation_error(self):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(side_effect=RuntimeError("quota exceeded"))
        manager = _manager(llm)

        with pytest.raises(GenerationError, match="quota exceeded"):
            await manager.send_turn("s1", "hello")

        # Handle stays active; history not extended by the failed turn
        handle = manager.registry.get("s1")
        assert handle is not None
        assert len(handle.messages) == 1

    @pytest.mark.asyncio
    async def test_no_retry(self):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(side_effect=RuntimeError("boom"))
        with pytest.raises(GenerationError):
            await _manager(llm).send_turn("s1", "hello")
        assert llm.ainvoke.await_count == 1

    @pytest.mark.asyncio
    async def test_empty_reply_is_generation_error(self):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(
            return_value=AIMessage(content="", response_metadata={"finish_reason": "SAFETY"})
        )
        with pytest.raises(GenerationError, match="SAFETY"):
            await _manager(llm).send_turn("s1", "hello")

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def _slow(messages):
            await asyncio.sleep(1)
            return AIMessage(content="late")

        llm = MagicMock()
        llm.ainvoke = _slow
        with pytest.raises(GenerationError, match="timed out"):
            await _manager(llm, timeout=0.01).send_turn("s1", "hello")

    @pytest.mark.asyncio
    async def test_empty_preamble_is_configuration_error_and_not_cached(self):
        manager = ConversationManager(_mock_llm("x"), "   ")
        with pytest.raises(ConfigurationError):
            await manager.send_turn("s1", "hello")
        assert "s1" not in manager.registry

        manager.preamble = PREAMBLE
        assert await manager.send_turn("s1", "hello") == "x"
        assert "s1" in manager.registry


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_first_turns_share_one_handle(self):
        release = asyncio.Event()
        calls = []

        async def _reply(messages):
            calls.append(messages)
            await release.wait()
            return AIMessage(content=f"reply {len(calls)}")

        llm = MagicMock()
        llm.ainvoke = _reply
        manager = _manager(llm)
        created = []
        original = manager._create_handle

        async def _counting_create(session_id, pending=None):
            handle = await original(session_id, pending)
            created.append(handle)
            return handle

        manager._create_handle = _counting_create

        first = asyncio.create_task(manager.send_turn("s1", "one"))
        second = asyncio.create_task(manager.send_turn("s1", "two"))
        await asyncio.sleep(0.01)
        release.set()
        replies = await asyncio.gather(first, second)

        assert sorted(replies) == ["reply 1", "reply 2"]
        assert len(created) == 1
        assert len(manager.registry) == 1
        handle = manager.registry.get("s1")
        assert handle is created[0]
        # Turns serialised on the handle: preamble + two complete exchanges
        types = [type(m) for m in handle.messages]
        assert types == [SystemMessage, HumanMessage, AIMessage, HumanMessage, AIMessage]


class TestHandleRegistry:
    @pytest.mark.asyncio
    async def test_lru_eviction(self):
        manager = _manager(_mock_llm("a", "b", "c", "d"), registry=HandleRegistry(max_size=2))
        await manager.send_turn("s1", "x")
        await manager.send_turn("s2", "x")
        await manager.send_turn("s1", "x")  # s1 most recently used
        await manager.send_turn("s3", "x")

        assert len(manager.registry) == 2
        assert "s1" in manager.registry
        assert "s3" in manager.registry
        assert "s2" not in manager.registry

    def test_injected_registry_is_kept_even_when_empty(self):
        registry = HandleRegistry(max_size=2)
        manager = _manager(_mock_llm("a"), registry=registry)
        assert manager.registry is registry
        assert manager.registry.max_size == 2

    @pytest.mark.asyncio
    async def test_factory_failure_caches_nothing(self):
        registry = HandleRegistry()

        async def _fail(session_id):
            raise ConfigurationError("bad")

        with pytest.raises(ConfigurationError):
            await registry.get_or_create("s1", _fail)
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_slow_creation_does_not_block_other_sessions(self):
        registry = HandleRegistry()
        release = asyncio.Event()
        manager = _manager(_mock_llm("x"))

        async def _slow(session_id):
            await release.wait()
            return await manager._create_handle(session_id)

        slow = asyncio.create_task(registry.get_or_create("s1", _slow))
        await asyncio.sleep(0)

        fast = await asyncio.wait_for(registry.get_or_create("s2", manager._create_handle), timeout=1)
        assert fast.session_id == "s2"
        assert not slow.done()

        release.set()
        assert (await slow).session_id == "s1"
        assert len(registry) == 2

    @pytest.mark.asyncio
    async def test_creation_retried_after_factory_failure(self):
        registry = HandleRegistry()
        manager = _manager(_mock_llm("x"))

        async def _fail(session_id):
            raise ConfigurationError("bad")

        with pytest.raises(ConfigurationError):
            await registry.get_or_create("s1", _fail)
        handle = await registry.get_or_create("s1", manager._create_handle)
        assert registry.get("s1") is handle

    @pytest.mark.asyncio
    async def test_evict_recreates_on_next_turn(self):
        manager = _manager(_mock_llm("a", "b"))
        await manager.send_turn("s1", "x")
        old = manager.registry.get("s1")

        assert manager.evict("s1") is True
        assert manager.evict("s1") is False

        await manager.send_turn("s1", "y")
        assert manager.registry.get("s1") is not old


class TestContextSeeding:
    @pytest.mark.asyncio
    async def test_new_handle_seeded_from_store(self, session_factory):
        store = MessageStore(session_factory)
        store.append("s1", "user", "my name is Sam")
        store.append("s1", "bot", "nice to meet you")
        store.append("s1", "user", "what's my name?")  # the in-flight turn

        llm = _mock_llm("Sam!")
        manager = _manager(llm, context_retriever=ContextRetriever(session_factory), context_limit=10)
        await manager.send_turn("s1", "what's my name?")

        sent = llm.ainvoke.await_args.args[0]
        assert [m.content for m in sent] == [
            PREAMBLE,
            "Sam: my name is Sam\n\nHarper:",
            "nice to meet you",
            "Sam: what's my name?\n\nHarper:",
        ]

    @pytest.mark.asyncio
    async def test_context_limit_respected(self, session_factory):
        store = MessageStore(session_factory)
        for i in range(6):
            store.append("s1", "user" if i % 2 == 0 else "bot", f"m{i}")

        llm = _mock_llm("ok")
        manager = _manager(llm, context_retriever=ContextRetriever(session_factory), context_limit=2)
        await manager.send_turn("s1", "new")

        sent = llm.ainvoke.await_args.args[0]
        assert [m.content for m in sent[1:-1]] == ["Sam: m4\n\nHarper:", "m5"]

    @pytest.mark.asyncio
    async def test_empty_context_still_creates_handle(self):
        retriever = MagicMock()
        retriever.recent_context.return_value = []
        manager = _manager(_mock_llm("ok"), context_retriever=retriever)
        assert await manager.send_turn("s1", "hi") == "ok"
        assert len(manager.registry.get("s1").messages) == 3

    @pytest.mark.asyncio
    async def test_seed_never_opens_with_bot_turn(self, session_factory):
        store = MessageStore(session_factory)
        for i in range(12):
            store.append("s1", "user" if i % 2 == 0 else "bot", f"m{i}")
        store.append("s1", "user", "new")  # the in-flight turn

        llm = _mock_llm("ok")
        manager = _manager(llm, context_retriever=ContextRetriever(session_factory), context_limit=3)
        await manager.send_turn("s1", "new")

        sent = llm.ainvoke.await_args.args[0]
        assert [type(m) for m in sent] == [SystemMessage, HumanMessage, AIMessage, HumanMessage]
        assert [m.content for m in sent[1:]] == [
            "Sam: m10\n\nHarper:",
            "m11",
            "Sam: new\n\nHarper:",
        ]
