"""Shared test fixtures for the Mnemo test suite."""

from __future__ import annotations

import os
from typing import Any

import httpx
import pytest
import pytest_asyncio
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
    os.environ["MEMORY_BACKEND"] = "disabled"
    os.environ["METRICS_ENABLED"] = "false"
    os.environ["ENVIRONMENT"] = "test"
    os.environ["WHATSAPP_VERIFY_TOKEN"] = "verify-me"
    os.environ["WHATSAPP_PHONE_NUMBER_ID"] = "1234567890"
    os.environ["WHATSAPP_ACCESS_TOKEN"] = "test-whatsapp-token"


# ── Fakes ────────────────────────────────────────────────────────────


class ToolCallingFakeModel(GenericFakeChatModel):
    """``GenericFakeChatModel`` that accepts ``bind_tools``.

    Replies come from ``messages`` in order, so a test can script a tool
    call followed by a final answer.
    """

    def bind_tools(self, tools, **kwargs):
        return self


class FakeMemoryBackend:
    """In-process stand-in for ``mem0.AsyncMemory``."""

    def __init__(self, memories: list[dict[str, Any]] | None = None):
        self.memories = list(memories or [])
        self.added: list[dict[str, Any]] = []
        self.search_error: Exception | None = None
        self.search_calls = 0

    async def search(self, query, *, user_id, limit, filters=None):
        self.search_calls += 1
        if self.search_error is not None:
            raise self.search_error
        return {"results": [m for m in self.memories if m.get("user_id", user_id) == user_id][:limit]}

    async def add(self, messages, *, user_id, metadata=None):
        self.added.append({"messages": messages, "user_id": user_id, "metadata": metadata})
        return {"results": []}

    async def get_all(self, *, user_id, limit):
        return {"results": self.memories[:limit]}

    async def update(self, memory_id, data):
        for memory in self.memories:
            if memory["id"] == memory_id:
                memory["memory"] = data
        return {"message": "Memory updated successfully!"}

    async def delete(self, memory_id):
        self.memories = [m for m in self.memories if m["id"] != memory_id]
        return {"message": "Memory deleted successfully!"}


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory SQLite database with all tables created."""
    from mnemo.services.store import Database

    database = Database.from_url("sqlite+aiosqlite:///:memory:")
    await database.create_all()
    yield database
    await database.close()


@pytest.fixture
def memory_backend():
    return FakeMemoryBackend()


@pytest.fixture
def mock_transport_client():
    """Factory: an ``httpx.AsyncClient`` whose requests go to *handler*."""

    def _make(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make


@pytest.fixture
def fake_model():
    """Factory: a tool-calling fake chat model replaying *responses*."""

    def _make(*responses):
        return ToolCallingFakeModel(messages=iter(responses))

    return _make
