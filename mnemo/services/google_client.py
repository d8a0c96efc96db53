"""Google Calendar v3, Drive v3, Docs v1 and Gmail v1 over REST.

Methods return lightly normalised dicts; turning them into text for the
model is the tool layer's job.
"""

from __future__ import annotations

import asyncio
import base64
from datetime import UTC, datetime
from email.message import EmailMessage
from typing import Any

from mnemo.services.provider_client import ProviderClient

CALENDAR_URL = "https://www.googleapis.com/calendar/v3/calendars/primary/events"
DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
DOCS_URL = "https://docs.googleapis.com/v1/documents"
GMAIL_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages"

EVENT_TIME_ZONE = "Etc/UTC"
GOOGLE_DOC_MIME_TYPE = "application/vnd.google-apps.document"


def _header(headers: list[dict[str, str]], name: str) -> str:
    for header in headers or []:
        if header.get("name", "").lower() == name.lower():
            return header.get("value", "")
    return ""


def _decode_body(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def extract_plain_text(payload: dict[str, Any]) -> str:
    """Find the first ``text/plain`` body in a (possibly multipart) payload."""
    body = payload.get("body") or {}
    if body.get("data") and payload.get("mimeType", "text/plain").startswith("text/plain"):
        return _decode_body(body["data"])
    for part in payload.get("parts") or []:
        text = extract_plain_text(part)
        if text:
            return text
    if body.get("data"):
        return _decode_body(body["data"])
    return ""


def extract_document_text(document: dict[str, Any]) -> str:
    """Concatenate every paragraph ``textRun`` in a Docs API document."""
    chunks = []
    for element in (document.get("body") or {}).get("content") or []:
        paragraph = element.get("paragraph")
        if not paragraph:
            continue
        for item in paragraph.get("elements") or []:
            run = item.get("textRun")
            if run and run.get("content"):
                chunks.append(run["content"])
    return "".join(chunks)


def build_raw_email(
    to: str, subject: str, body: str, cc: str | None = None, bcc: str | None = None,
) -> str:
    """RFC 5322 message encoded the way ``messages.send`` expects (base64url).

    Non-ASCII headers are RFC 2047 encoded.  Raises ``ValueError`` when a
    header value contains a line break.
    """
    message = EmailMessage()
    message["To"] = to
    if cc:
        message["Cc"] = cc
    if bcc:
        message["Bcc"] = bcc
    message["Subject"] = subject
    message.set_content(body)
    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii").rstrip("=")



class GoogleClient(ProviderClient):
    provider = "google"

    # ── Calendar ─────────────────────────────────────────────────────

    async def list_events(
        self,
        token: str,
        max_results: int = 10,
        *,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {
            "timeMin": (time_min or datetime.now(UTC)).isoformat(),
            "maxResults": max_results,
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        if time_max:
            params["timeMax"] = time_max.isoformat()
        data = await self._request(
            "GET", CALENDAR_URL, token, operation="calendar.events.list", params=params,
        )
        return (data or {}).get("items", [])

    async def create_event(
        self,
        token: str,
        *,
        summary: str,
        start: str,
        end: str,
        description: str = "",
        attendees: list[str] | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "summary": summary,
            "description": description,
            "start": {"dateTime": start, "timeZone": EVENT_TIME_ZONE},
            "end": {"dateTime": end, "timeZone": EVENT_TIME_ZONE},
        }
        if attendees:
            body["attendees"] = [{"email": email} for email in attendees]
        return await self._request(
            "POST", CALENDAR_URL, token, operation="calendar.events.insert", json_body=body,
        )

    async def delete_event(self, token: str, event_id: str) -> None:
        await self._request(
            "DELETE", f"{CALENDAR_URL}/{event_id}", token, operation="calendar.events.delete",
        )

    # ── Drive / Docs ─────────────────────────────────────────────────

    async def list_documents(self, token: str, max_results: int = 10) -> list[dict[str, Any]]:
        params = {
            "q": f"mimeType='{GOOGLE_DOC_MIME_TYPE}' and trashed=false",
            "orderBy": "modifiedTime desc",
            "pageSize": max_results,
            "fields": "files(id,name,modifiedTime,webViewLink)",
        }
        data = await self._request(
            "GET", DRIVE_FILES_URL, token, operation="drive.files.list", params=params,
        )
        return (data or {}).get("files", [])

    async def get_document(self, token: str, document_id: str) -> dict[str, Any]:
        document = await self._request(
            "GET", f"{DOCS_URL}/{document_id}", token, operation="docs.documents.get",
        )
        return {
            "id": document.get("documentId", document_id),
            "title": document.get("title", ""),
            "content": extract_document_text(document),
        }

    # ── Gmail ────────────────────────────────────────────────────────

    async def list_messages(
        self,
        token: str,
        max_results: int = 10,
        query: str | None = None,
        label_ids: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"maxResults": max_results}
        if query:
            params["q"] = query
        if label_ids:
            params["labelIds"] = label_ids
        data = await self._request(
            "GET", GMAIL_URL, token, operation="gmail.messages.list", params=params,
        )
        refs = (data or {}).get("messages", [])
        return list(await asyncio.gather(
            *(self._message_summary(token, ref["id"]) for ref in refs),
        ))

    async def _message_summary(self, token: str, message_id: str) -> dict[str, Any]:
        message = await self._request(
            "GET",
            f"{GMAIL_URL}/{message_id}",
            token,
            operation="gmail.messages.get",
            params={"format": "metadata", "metadataHeaders": ["From", "Subject", "Date"]},
        )
        headers = (message.get("payload") or {}).get("headers", [])
        return {
            "id": message.get("id", message_id),
            "threadId": message.get("threadId"),
            "from": _header(headers, "From"),
            "subject": _header(headers, "Subject"),
            "date": _header(headers, "Date"),
            "snippet": message.get("snippet", ""),
        }

    async def read_message(self, token: str, message_id: str) -> dict[str, Any]:
        message = await self._request(
            "GET",
            f"{GMAIL_URL}/{message_id}",
            token,
            operation="gmail.messages.get",
            params={"format": "full"},
        )
        payload = message.get("payload") or {}
        headers = payload.get("headers", [])
        return {
            "id": message.get("id", message_id),
            "threadId": message.get("threadId"),
            "from": _header(headers, "From"),
            "to": _header(headers, "To"),
            "subject": _header(headers, "Subject"),
            "date": _header(headers, "Date"),
            "body": extract_plain_text(payload),
            "snippet": message.get("snippet", ""),
        }

    async def send_message(self, token: str, raw: str) -> dict[str, Any]:
        data = await self._request(
            "POST",
            f"{GMAIL_URL}/send",
            token,
            operation="gmail.messages.send",
            json_body={"raw": raw},
        )
        return {"messageId": data.get("id"), "threadId": data.get("threadId")}
