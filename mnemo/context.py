"""Per-turn context assembly.

For each turn the assembler produces:

1. a system message: the caller's own, if the incoming messages carry one,
   otherwise the base prompt + WhatsApp addendum (WhatsApp only) + profile
   snapshot + a freshly computed timestamp;
2. an optional "previous relevant information" message built from a memory
   search on the latest user message;
3. the remaining incoming messages;

plus the user's thread id for checkpointed invocation.  A memory outage
leaves slot 2 empty; a database outage propagates.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from mnemo.prompts import get_system_prompt
from mnemo.services.memory import MemoryService, content_text
from mnemo.services.store import Database

logger = logging.getLogger(__name__)

Channel = Literal["web", "whatsapp"]

MEMORY_SEARCH_LIMIT = 5
MEMORY_HEADER = "Previous relevant information:"


@dataclass
class AssembledContext:
    system_message: SystemMessage
    memory_message: HumanMessage | None
    messages: list[BaseMessage]
    thread_id: str

    @property
    def final_messages(self) -> list[BaseMessage]:
        ordered = [self.system_message, self.memory_message, *self.messages]
        return [m for m in ordered if m is not None]


class ContextAssembler:
    def __init__(self, db: Database, memory: MemoryService):
        self._db = db
        self._memory = memory

    async def assemble(
        self,
        user_id: str,
        channel: Channel,
        incoming: Sequence[BaseMessage],
        *,
        now: datetime | None = None,
    ) -> AssembledContext:
        system = next((m for m in incoming if isinstance(m, SystemMessage)), None)
        rest = [m for m in incoming if not isinstance(m, SystemMessage)]

        if system is None:
            system = await self._build_system_message(user_id, channel, now or datetime.now(UTC))

        memory_message = await self._memory_message(user_id, rest)
        thread_id = await self._db.get_or_create_thread_id(user_id)
        return AssembledContext(system, memory_message, rest, thread_id)

    async def _build_system_message(
        self, user_id: str, channel: Channel, now: datetime,
    ) -> SystemMessage:
        user = await self._db.get_user(user_id)
        profile = user.profile() if user else {"id": user_id}
        return SystemMessage(
            content=get_system_prompt(whatsapp=channel == "whatsapp", profile=profile, now=now),
        )

    async def _memory_message(
        self, user_id: str, messages: list[BaseMessage],
    ) -> HumanMessage | None:
        if not messages or not isinstance(messages[-1], HumanMessage):
            return None
        query = content_text(messages[-1].content).strip()
        if not query:
            return None

        snippets = await self._memory.search(query, user_id, limit=MEMORY_SEARCH_LIMIT)
        if not snippets:
            if snippets is None:
                logger.info("Memory unavailable for user %s; continuing without it", user_id)
            return None

        lines = "\n".join(s.content for s in snippets if s.content)
        if not lines:
            return None
        return HumanMessage(content=f"{MEMORY_HEADER}\n{lines}")
