"""WhatsApp Cloud API sender.

Outbound calls are best-effort: failures are logged and reported as ``None``
so a lost reaction or typing indicator never interrupts a turn.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from mnemo.config import (
    WHATSAPP_ACCESS_TOKEN,
    WHATSAPP_API_VERSION,
    WHATSAPP_PHONE_NUMBER_ID,
)
from mnemo.services.metrics import metrics
from mnemo.whatsapp.formatter import enforce_limits, parse_response

logger = logging.getLogger(__name__)

GRAPH_API_URL = "https://graph.facebook.com"
REQUEST_TIMEOUT_SECONDS = 15.0


def build_cloud_payload(
    message: dict[str, Any], to: str, reply_to: str | None = None,
) -> dict[str, Any]:
    """Translate a formatter message dict into a Cloud API ``/messages`` body."""
    payload: dict[str, Any] = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to,
    }
    if reply_to:
        payload["context"] = {"message_id": reply_to}

    if message.get("message_type") == "text":
        payload["type"] = "text"
        payload["text"] = {"body": message["text"], "preview_url": False}
        return payload

    interactive: dict[str, Any] = {"type": message["type"], "body": message["body"]}
    if message.get("header"):
        interactive["header"] = {"type": "text", **message["header"]}
    if message.get("footer"):
        interactive["footer"] = message["footer"]
    interactive["action"] = message["action"]
    payload["type"] = "interactive"
    payload["interactive"] = interactive
    return payload


class WhatsAppClient:
    def __init__(
        self,
        phone_number_id: str | None = None,
        access_token: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        api_version: str = WHATSAPP_API_VERSION,
    ):
        self._phone_number_id = phone_number_id or WHATSAPP_PHONE_NUMBER_ID
        self._access_token = access_token or WHATSAPP_ACCESS_TOKEN
        self._url = f"{GRAPH_API_URL}/{api_version}/{self._phone_number_id}/messages"
        self._client = client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS)

    @property
    def configured(self) -> bool:
        return bool(self._phone_number_id and self._access_token)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, payload: dict[str, Any], operation: str) -> dict[str, Any] | None:
        if not self.configured:
            logger.error("WhatsApp API credentials not configured; dropping %s", operation)
            return None
        try:
            async with metrics.track("whatsapp", operation):
                response = await self._client.post(
                    self._url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self._access_token}"},
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("WhatsApp %s failed: %s", operation, exc)
            return None
        return response.json() if response.content else {}

    async def send_message(
        self, to: str, content: str, reply_to: str | None = None,
    ) -> dict[str, Any] | None:
        """Send *content*, a formatter JSON string or any raw model text."""
        message = enforce_limits(parse_response(content))
        payload = build_cloud_payload(message, to, reply_to)
        logger.debug("Sending WhatsApp %s to %s", payload["type"], to)
        return await self._post(payload, "messages.send")

    async def send_text(self, to: str, text: str, reply_to: str | None = None) -> dict[str, Any] | None:
        return await self.send_message(
            to, json.dumps({"message_type": "text", "type": "text", "text": text}), reply_to,
        )

    async def send_reaction(self, to: str, message_id: str, emoji: str) -> dict[str, Any] | None:
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "reaction",
            "reaction": {"message_id": message_id, "emoji": emoji},
        }
        return await self._post(payload, "messages.reaction")

    async def send_typing_indicator(self, message_id: str) -> dict[str, Any] | None:
        """Mark *message_id* read and show "typing..." until the reply lands."""
        payload = {
            "messaging_product": "whatsapp",
            "status": "read",
            "message_id": message_id,
            "typing_indicator": {"type": "text"},
        }
        return await self._post(payload, "messages.typing")

    async def send_payload(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        """Send a pre-built Cloud API body (templates, briefings)."""
        return await self._post(payload, "messages.send")
