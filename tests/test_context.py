"""Tests for per-turn context assembly."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from mnemo.context import MEMORY_HEADER, ContextAssembler
from mnemo.prompts import WHATSAPP_SYSTEM_PROMPT, get_system_prompt
from mnemo.services.memory import MemoryService
from mnemo.services.store import StoreError, User

NOW = datetime(2026, 3, 2, 8, 15, tzinfo=UTC)


class TestSystemPrompt:
    def test_includes_profile_and_timestamp(self):
        prompt = get_system_prompt(profile={"name": "Alice"}, now=NOW)
        assert '"name": "Alice"' in prompt
        assert "2026-03-02T08:15:00+00:00 (Monday)" in prompt
        assert WHATSAPP_SYSTEM_PROMPT not in prompt

    def test_whatsapp_addendum(self):
        assert WHATSAPP_SYSTEM_PROMPT in get_system_prompt(whatsapp=True, now=NOW)


@pytest.mark.asyncio
class TestContextAssembler:
    async def test_builds_system_prompt_from_profile(self, db, memory_backend):
        await db.add_user(User(id="alice", name="Alice", email="alice@example.com"))
        assembler = ContextAssembler(db, MemoryService(memory_backend))

        ctx = await assembler.assemble("alice", "web", [HumanMessage(content="Hi")], now=NOW)

        assert "alice@example.com" in ctx.system_message.content
        assert "(Monday)" in ctx.system_message.content
        assert ctx.messages == [HumanMessage(content="Hi")]
        assert ctx.thread_id.startswith("thread_alice_")

    async def test_caller_system_message_wins(self, db, memory_backend):
        assembler = ContextAssembler(db, MemoryService(memory_backend))
        incoming = [
            SystemMessage(content="Custom system"),
            HumanMessage(content="Hi"),
            SystemMessage(content="Ignored"),
        ]
        ctx = await assembler.assemble("alice", "web", incoming)

        assert ctx.system_message.content == "Custom system"
        assert all(not isinstance(m, SystemMessage) for m in ctx.messages)

    async def test_unknown_user_still_gets_a_prompt(self, db, memory_backend):
        assembler = ContextAssembler(db, MemoryService(memory_backend))
        ctx = await assembler.assemble("ghost", "whatsapp", [HumanMessage(content="Hi")])
        assert '"id": "ghost"' in ctx.system_message.content
        assert WHATSAPP_SYSTEM_PROMPT in ctx.system_message.content

    async def test_memory_message_from_search(self, db, memory_backend):
        memory_backend.memories = [
            {"id": "m1", "memory": "Prefers meetings after 10am"},
            {"id": "m2", "memory": "Works at Acme"},
        ]
        assembler = ContextAssembler(db, MemoryService(memory_backend))
        ctx = await assembler.assemble("alice", "web", [HumanMessage(content="Book a meeting")])

        assert ctx.memory_message.content == (
            f"{MEMORY_HEADER}\nPrefers meetings after 10am\nWorks at Acme"
        )
        assert ctx.final_messages[0] is ctx.system_message
        assert ctx.final_messages[1] is ctx.memory_message

    async def test_memory_outage_leaves_memory_empty(self, db, memory_backend):
        memory_backend.search_error = ConnectionRefusedError(111, "ECONNREFUSED")
        assembler = ContextAssembler(db, MemoryService(memory_backend, initial_backoff=0))

        ctx = await assembler.assemble("alice", "web", [HumanMessage(content="Hi")])

        assert ctx.memory_message is None
        assert len(ctx.final_messages) == 2

    async def test_no_search_when_last_message_is_not_from_user(self, db, memory_backend):
        assembler = ContextAssembler(db, MemoryService(memory_backend))
        await assembler.assemble("alice", "web", [HumanMessage(content="Hi"), AIMessage(content="Hello")])
        assert memory_backend.search_calls == 0

    async def test_database_outage_propagates(self, memory_backend):
        class BrokenDb:
            async def get_user(self, user_id):
                raise StoreError("database down")

        assembler = ContextAssembler(BrokenDb(), MemoryService(memory_backend))
        with pytest.raises(StoreError):
            await assembler.assemble("alice", "web", [HumanMessage(content="Hi")])
