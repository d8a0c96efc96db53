"""Per-user long-term memory backed by mem0.

``MemoryService`` is the only thing the rest of the assistant talks to.  Every
call goes through ``resilient_call`` so a slow or missing vector store costs
at most a few backoffs and then degrades to "no memory":

* ``search`` / ``get_all`` return ``None`` (not ``[]``) when degraded, so
  callers can tell "nothing stored" from "store unavailable".
* ``add`` / ``update`` / ``delete`` return ``False`` when degraded.

No memory error ever propagates out of this module.

Backends
--------
``MEMORY_BACKEND=memory``   mem0 with a local, non-persistent Qdrant index.
``MEMORY_BACKEND=redis``    mem0 with the Redis vector store at ``REDIS_URL``.
``MEMORY_BACKEND=disabled`` no backend; every call degrades immediately.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from mnemo.config import (
    MEM0_COLLECTION_NAME,
    MEMORY_BACKEND,
    MEMORY_INITIAL_BACKOFF_SECONDS,
    MEMORY_MAX_ATTEMPTS,
    OPENAI_API_KEY,
    REDIS_URL,
)
from mnemo.services.metrics import metrics
from mnemo.services.resilience import exponential_backoff, resilient_call

logger = logging.getLogger(__name__)

EMBEDDING_MODEL = "text-embedding-3-small"
EMBEDDING_DIMS = 1536
EXTRACTION_MODEL = "gpt-4.1-mini"


class MemoryBackend(Protocol):
    """The subset of ``mem0.AsyncMemory`` the service relies on."""

    async def search(self, query: str, *, user_id: str, limit: int, filters: dict | None = None) -> Any: ...
    async def add(self, messages: list[dict], *, user_id: str, metadata: dict | None = None) -> Any: ...
    async def get_all(self, *, user_id: str, limit: int) -> Any: ...
    async def update(self, memory_id: str, data: str) -> Any: ...
    async def delete(self, memory_id: str) -> Any: ...


@dataclass(frozen=True)
class MemorySnippet:
    id: str | None
    content: str
    score: float | None = None
    created_at: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def _results(payload: Any) -> list[Mapping[str, Any]]:
    # mem0 returns {"results": [...]}; older releases returned a bare list
    if isinstance(payload, Mapping):
        payload = payload.get("results") or []
    return [item for item in payload or [] if isinstance(item, Mapping)]


def _to_snippet(item: Mapping[str, Any]) -> MemorySnippet:
    return MemorySnippet(
        id=item.get("id"),
        content=str(item.get("memory") or item.get("text") or ""),
        score=item.get("score"),
        created_at=item.get("created_at"),
        metadata=dict(item.get("metadata") or {}),
    )


def content_text(content: Any) -> str:
    """Plain text of a message ``content`` (a string or a list of blocks)."""
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, Mapping) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
    return "".join(parts)


def to_memory_messages(messages: Iterable[BaseMessage]) -> list[dict[str, str]]:
    """Convert chat messages to mem0's ``{"role", "content"}`` form.

    Only user and assistant turns are kept; system prompts and tool traffic
    are not worth remembering.
    """
    converted = []
    for message in messages:
        if isinstance(message, HumanMessage):
            role = "user"
        elif isinstance(message, AIMessage) and not message.tool_calls:
            role = "assistant"
        else:
            continue
        text = content_text(message.content)
        if text:
            converted.append({"role": role, "content": text})
    return converted


class MemoryService:
    """Degrading facade over a mem0-compatible backend."""

    def __init__(
        self,
        backend: MemoryBackend | None,
        *,
        max_attempts: int = MEMORY_MAX_ATTEMPTS,
        initial_backoff: float = MEMORY_INITIAL_BACKOFF_SECONDS,
    ):
        self._backend = backend
        self._max_attempts = max_attempts
        self._backoff = exponential_backoff(initial_backoff)

    @property
    def available(self) -> bool:
        return self._backend is not None

    async def _call(self, name: str, operation: Callable[[], Awaitable[Any]], fallback: Any) -> Any:
        if self._backend is None:
            logger.debug("%s skipped: memory backend disabled", name)
            return fallback
        return await resilient_call(
            operation,
            name=name,
            fallback=fallback,
            max_attempts=self._max_attempts,
            backoff=self._backoff,
            on_degraded=lambda op, _exc: metrics.record_degraded(op),
        )

    async def search(
        self,
        query: str,
        user_id: str,
        limit: int = 5,
        filters: dict[str, Any] | None = None,
    ) -> list[MemorySnippet] | None:
        """Similarity-ranked memories for *user_id*; ``None`` when degraded."""

        async def _search():
            payload = await self._backend.search(
                query, user_id=user_id, limit=limit, filters=filters,
            )
            return [_to_snippet(item) for item in _results(payload)]

        return await self._call("memory.search", _search, None)

    async def add(
        self,
        messages: list[dict[str, str]],
        user_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        if not messages:
            return True

        async def _add():
            await self._backend.add(messages, user_id=user_id, metadata=metadata)
            return True

        return await self._call("memory.add", _add, False)

    async def get_all(self, user_id: str, limit: int = 10) -> list[MemorySnippet] | None:
        async def _get_all():
            payload = await self._backend.get_all(user_id=user_id, limit=limit)
            return [_to_snippet(item) for item in _results(payload)]

        return await self._call("memory.get_all", _get_all, None)

    async def update(self, memory_id: str, new_content: str) -> bool:
        async def _update():
            await self._backend.update(memory_id, data=new_content)
            return True

        return await self._call("memory.update", _update, False)

    async def delete(self, memory_id: str) -> bool:
        async def _delete():
            await self._backend.delete(memory_id)
            return True

        return await self._call("memory.delete", _delete, False)


# ── Backend construction ────────────────────────────────────────────


def _mem0_config(backend: str) -> dict[str, Any]:
    if backend == "redis":
        vector_store = {
            "provider": "redis",
            "config": {
                "collection_name": MEM0_COLLECTION_NAME,
                "embedding_model_dims": EMBEDDING_DIMS,
                "redis_url": REDIS_URL,
            },
        }
    else:
        vector_store = {
            "provider": "qdrant",
            "config": {
                "collection_name": MEM0_COLLECTION_NAME,
                "embedding_model_dims": EMBEDDING_DIMS,
                "path": "/tmp/mnemo-qdrant",
                "on_disk": False,
            },
        }
    return {
        "vector_store": vector_store,
        "embedder": {
            "provider": "openai",
            "config": {"model": EMBEDDING_MODEL, "api_key": OPENAI_API_KEY},
        },
        "llm": {
            "provider": "openai",
            "config": {"model": EXTRACTION_MODEL, "api_key": OPENAI_API_KEY},
        },
    }


async def build_memory_service(backend: str = MEMORY_BACKEND) -> MemoryService:
    """Create the configured backend.

    A backend that cannot even be constructed (bad URL, missing key) yields a
    disabled service instead of failing startup.
    """
    if backend == "disabled":
        logger.info("Long-term memory disabled")
        return MemoryService(None)
    if backend not in ("memory", "redis"):
        raise ValueError(f"Unknown MEMORY_BACKEND: {backend!r}")

    from mem0 import AsyncMemory  # noqa: PLC0415

    try:
        client = await AsyncMemory.from_config(_mem0_config(backend))
    except Exception:
        logger.exception("Could not initialise %s memory backend; running without memory", backend)
        return MemoryService(None)

    logger.info("Long-term memory ready (backend=%s, collection=%s)", backend, MEM0_COLLECTION_NAME)
    return MemoryService(client)
