"""Process-wide wiring shared by the HTTP server and the CLI.

``open_runtime`` builds every long-lived resource once (database engine,
memory client, provider HTTP clients, checkpointer) and closes them again
on exit.  Request-scoped pieces such as the tool set are built per turn by
the ``Assistant`` from the ``tool_context`` factory wired here.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

from langchain_core.language_models import BaseChatModel

from mnemo.agent import Assistant, _build_fast_llm, _build_llm
from mnemo.briefing import MorningBriefing
from mnemo.config import DATABASE_URL, EMAIL_SIGNATURE, MEMORY_BACKEND
from mnemo.context import ContextAssembler
from mnemo.services.checkpoint import open_checkpointer
from mnemo.services.credentials import CredentialResolver
from mnemo.services.github_client import GitHubClient
from mnemo.services.google_client import GoogleClient
from mnemo.services.linkedin_client import LinkedInClient
from mnemo.services.memory import MemoryService, build_memory_service
from mnemo.services.metrics import metrics
from mnemo.services.store import Database
from mnemo.tools.base import ToolContext
from mnemo.whatsapp.client import WhatsAppClient
from mnemo.whatsapp.handler import WhatsAppHandler

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    db: Database
    memory: MemoryService
    resolver: CredentialResolver
    google: GoogleClient
    github: GitHubClient
    linkedin: LinkedInClient
    whatsapp: WhatsAppClient
    assistant: Assistant
    whatsapp_handler: WhatsAppHandler
    briefing: MorningBriefing


def _tool_context_factory(
    resolver: CredentialResolver,
    google: GoogleClient,
    github: GitHubClient,
    linkedin: LinkedInClient,
    memory: MemoryService,
) -> Callable[[str], ToolContext]:
    def _for_user(user_id: str) -> ToolContext:
        return ToolContext(
            user_id=user_id,
            resolver=resolver,
            google=google,
            github=github,
            linkedin=linkedin,
            memory=memory,
            email_signature=EMAIL_SIGNATURE,
        )

    return _for_user


@asynccontextmanager
async def open_runtime(
    *,
    database_url: str = DATABASE_URL,
    memory_backend: str = MEMORY_BACKEND,
    llm: BaseChatModel | None = None,
    fast_llm: BaseChatModel | None = None,
) -> AsyncIterator[Runtime]:
    db = Database.from_url(database_url)
    await db.create_all()
    memory = await build_memory_service(memory_backend)
    resolver = CredentialResolver(db)
    google, github, linkedin = GoogleClient(), GitHubClient(), LinkedInClient()
    whatsapp = WhatsAppClient()
    if not whatsapp.configured:
        logger.warning("WhatsApp credentials missing; outbound messages will be dropped")

    try:
        async with open_checkpointer(database_url) as checkpointer:
            assistant = Assistant(
                assembler=ContextAssembler(db, memory),
                memory=memory,
                llm=llm or _build_llm(),
                checkpointer=checkpointer,
                tool_context=_tool_context_factory(resolver, google, github, linkedin, memory),
            )
            briefing = MorningBriefing(
                db=db,
                resolver=resolver,
                google=google,
                whatsapp=whatsapp,
                llm=fast_llm or _build_fast_llm(),
            )
            logger.info("Runtime ready (memory=%s)", "on" if memory.available else "off")
            yield Runtime(
                db=db,
                memory=memory,
                resolver=resolver,
                google=google,
                github=github,
                linkedin=linkedin,
                whatsapp=whatsapp,
                assistant=assistant,
                whatsapp_handler=WhatsAppHandler(db, assistant, whatsapp),
                briefing=briefing,
            )
    finally:
        for client in (google, github, linkedin, whatsapp):
            await client.aclose()
        await db.close()
        metrics.flush()
