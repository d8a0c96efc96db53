"""Inbound WhatsApp webhook processing.

The HTTP route acknowledges the webhook immediately and schedules
``WhatsAppHandler.process`` as a background task.  Processing has its own
timeout, below the platform's request limit.  Every failure ends with a
human-readable reply and a ❌ reaction; nothing is re-raised, since the
webhook has already been answered.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Any

from langchain_core.messages import HumanMessage

from mnemo.config import WHATSAPP_PROCESSING_TIMEOUT_SECONDS
from mnemo.services.store import Database, StoreError
from mnemo.whatsapp.client import WhatsAppClient

logger = logging.getLogger(__name__)

THINKING_REACTION = "🤔"
DONE_REACTION = "✅"
FAILED_REACTION = "❌"

UNKNOWN_USER_TEXT = "I couldn't find your account. Please sign up for an account to continue."
ACCOUNT_LOOKUP_FAILED_TEXT = (
    "I'm having trouble accessing your account information. Please try again later."
)
PROCESSING_FAILED_TEXT = "I'm having trouble processing your request. Please try again later."


@dataclass(frozen=True)
class InboundMessage:
    sender: str
    message_id: str
    text: str


def verify_signature(body: bytes, signature_header: str | None, app_secret: str) -> bool:
    """Check Meta's ``X-Hub-Signature-256`` HMAC over the raw request body."""
    if not signature_header:
        return False
    expected = "sha256=" + hmac.new(app_secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature_header)


def _message_text(message: dict[str, Any]) -> str | None:
    kind = message.get("type")
    if kind == "text":
        return (message.get("text") or {}).get("body")
    if kind == "button":
        return (message.get("button") or {}).get("text")
    if kind == "interactive":
        interactive = message.get("interactive") or {}
        reply = interactive.get(interactive.get("type", ""))
        if interactive.get("type") in ("button_reply", "list_reply") and isinstance(reply, dict):
            return reply.get("title")
    return None


def extract_message(payload: dict[str, Any]) -> InboundMessage | None:
    """Pull the first user message out of a webhook body.

    Status callbacks, media and anything else without text return ``None``.
    """
    if payload.get("object") != "whatsapp_business_account":
        return None
    try:
        change = payload["entry"][0]["changes"][0]
        message = change["value"]["messages"][0]
    except (KeyError, IndexError, TypeError):
        return None
    if change.get("field") != "messages":
        return None

    text = _message_text(message)
    if not text or not message.get("from") or not message.get("id"):
        return None
    return InboundMessage(sender=message["from"], message_id=message["id"], text=text)


class WhatsAppHandler:
    def __init__(
        self,
        db: Database,
        assistant,
        client: WhatsAppClient,
        *,
        timeout: float = WHATSAPP_PROCESSING_TIMEOUT_SECONDS,
    ):
        self._db = db
        self._assistant = assistant
        self._client = client
        self._timeout = timeout

    async def process(self, message: InboundMessage) -> None:
        """Handle one inbound message end to end.  Never raises."""
        t0 = time.perf_counter()
        logger.info("WhatsApp message %s from %s", message.message_id, message.sender)
        await self._client.send_reaction(message.sender, message.message_id, THINKING_REACTION)
        try:
            await asyncio.wait_for(self._handle(message), timeout=self._timeout)
        except TimeoutError:
            logger.error(
                "WhatsApp message %s timed out after %.0fs", message.message_id, self._timeout,
            )
            await self._fail(message, PROCESSING_FAILED_TEXT)
        except Exception:
            logger.exception("WhatsApp message %s failed", message.message_id)
            await self._fail(message, PROCESSING_FAILED_TEXT)
        else:
            logger.info(
                "WhatsApp message %s handled in %.0fms",
                message.message_id, (time.perf_counter() - t0) * 1000,
            )

    async def _handle(self, message: InboundMessage) -> None:
        await self._client.send_typing_indicator(message.message_id)

        try:
            user = await self._db.find_user_by_phone(message.sender)
        except StoreError:
            logger.exception("User lookup failed for %s", message.sender)
            await self._fail(message, ACCOUNT_LOOKUP_FAILED_TEXT)
            return
        if user is None:
            logger.info("No account for WhatsApp sender %s", message.sender)
            await self._fail(message, UNKNOWN_USER_TEXT)
            return

        reply = await self._assistant.reply(
            user.id, [HumanMessage(content=message.text)], channel="whatsapp",
        )
        await self._client.send_message(message.sender, reply.text, reply_to=message.message_id)
        await self._client.send_reaction(message.sender, message.message_id, DONE_REACTION)

    async def _fail(self, message: InboundMessage, text: str) -> None:
        await self._client.send_text(message.sender, text, reply_to=message.message_id)
        await self._client.send_reaction(message.sender, message.message_id, FAILED_REACTION)
