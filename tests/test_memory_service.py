"""Tests for the degrading memory service facade."""

from __future__ import annotations

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from mnemo.services.memory import (
    MemoryService,
    build_memory_service,
    content_text,
    to_memory_messages,
)


class TestMessageConversion:
    def test_keeps_user_and_final_assistant_turns(self):
        messages = [
            SystemMessage(content="system"),
            HumanMessage(content="What's on today?"),
            AIMessage(content="", tool_calls=[{"name": "list_calendar_events", "args": {}, "id": "c1"}]),
            ToolMessage(content="Upcoming events (0):", tool_call_id="c1"),
            AIMessage(content="Nothing today."),
        ]
        assert to_memory_messages(messages) == [
            {"role": "user", "content": "What's on today?"},
            {"role": "assistant", "content": "Nothing today."},
        ]

    def test_content_text_joins_text_blocks(self):
        blocks = [{"type": "text", "text": "Hello "}, {"type": "tool_use", "id": "x"}, "world"]
        assert content_text(blocks) == "Hello world"


@pytest.mark.asyncio
class TestMemoryService:
    async def test_search_returns_snippets(self, memory_backend):
        memory_backend.memories = [
            {"id": "m1", "memory": "Prefers morning meetings", "score": 0.91},
        ]
        service = MemoryService(memory_backend, initial_backoff=0)
        found = await service.search("meetings", "alice")
        assert [s.content for s in found] == ["Prefers morning meetings"]
        assert found[0].score == 0.91

    async def test_search_distinguishes_empty_from_degraded(self, memory_backend):
        service = MemoryService(memory_backend, initial_backoff=0)
        assert await service.search("anything", "alice") == []

        memory_backend.search_error = ConnectionRefusedError(111, "ECONNREFUSED")
        assert await service.search("anything", "alice") is None

    async def test_connection_refused_is_retried_three_times_then_none(self, memory_backend):
        memory_backend.search_error = ConnectionRefusedError(111, "ECONNREFUSED")
        service = MemoryService(memory_backend, max_attempts=3, initial_backoff=0)

        assert await service.search("q", "alice") is None
        assert memory_backend.search_calls == 3

    async def test_dns_failure_is_skipped_immediately(self, memory_backend):
        memory_backend.search_error = OSError("getaddrinfo ENOTFOUND redis")
        service = MemoryService(memory_backend, max_attempts=3, initial_backoff=0)

        assert await service.search("q", "alice") is None
        assert memory_backend.search_calls == 1

    async def test_disabled_service_degrades(self):
        service = MemoryService(None)
        assert not service.available
        assert await service.search("q", "alice") is None
        assert await service.add([{"role": "user", "content": "hi"}], "alice") is False

    async def test_add_passes_messages_and_metadata(self, memory_backend):
        service = MemoryService(memory_backend)
        stored = await service.add(
            [{"role": "user", "content": "My dog is Rex"}], "alice", metadata={"source": "chat"},
        )
        assert stored is True
        assert memory_backend.added == [{
            "messages": [{"role": "user", "content": "My dog is Rex"}],
            "user_id": "alice",
            "metadata": {"source": "chat"},
        }]

    async def test_add_nothing_is_a_no_op(self, memory_backend):
        assert await MemoryService(memory_backend).add([], "alice") is True
        assert memory_backend.added == []

    async def test_update_and_delete(self, memory_backend):
        memory_backend.memories = [{"id": "m1", "memory": "old"}]
        service = MemoryService(memory_backend)

        assert await service.update("m1", "new") is True
        assert (await service.get_all("alice"))[0].content == "new"
        assert await service.delete("m1") is True
        assert await service.get_all("alice") == []

    async def test_build_disabled_backend(self):
        service = await build_memory_service("disabled")
        assert not service.available

    async def test_build_unknown_backend_raises(self):
        with pytest.raises(ValueError):
            await build_memory_service("cassandra")
