"""Morning briefing job.

For every user with a linked Google account and a phone number:

1. fetch today's calendar events and important unread emails,
2. ask the fast model for a short upbeat summary (plain text generation,
   no agent loop and no tools),
3. drop the summary into the fixed briefing template and send it on WhatsApp.

A user whose data cannot be fetched or whose message cannot be sent is
logged and skipped; the job carries on with the next user.  A database
outage aborts the whole run; any other failure for one user is
recorded as failed for that user.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage

from mnemo.prompts import MORNING_BRIEFING_PROMPT
from mnemo.services.credentials import CredentialError, CredentialResolver
from mnemo.services.google_client import GoogleClient
from mnemo.services.memory import content_text
from mnemo.services.provider_client import ProviderAPIError
from mnemo.services.store import Database, StoreError, User
from mnemo.whatsapp.client import WhatsAppClient, build_cloud_payload
from mnemo.whatsapp.formatter import enforce_limits, parse_response

logger = logging.getLogger(__name__)

IMPORTANT_EMAIL_QUERY = (
    "in:inbox is:important is:unread -category:promotions -category:social -in:spam"
)
MAX_BRIEFING_EMAILS = 15
_AUTOMATED_SUBJECT_MARKERS = ("newsletter", "unsubscribe", "sale", "offer")
_AUTOMATED_SENDER_MARKERS = ("noreply", "no-reply", "marketing")

BRIEFING_TEMPLATE: dict[str, Any] = {
    "message_type": "interactive",
    "type": "button",
    "header": {"type": "text", "text": "Your Morning Briefing 🔔"},
    "body": {"text": "Here's your Morning Briefing for today!"},
    "footer": {"text": "Hope you have a productive day today! ✨"},
    "action": {
        "buttons": [
            {"type": "reply", "reply": {"id": "view-calendar-details", "title": "Calendar 🗓️"}},
            {"type": "reply", "reply": {"id": "view-email-details", "title": "Emails 📧"}},
        ],
    },
}


@dataclass
class BriefingSummary:
    events: list[dict[str, Any]] = field(default_factory=list)
    emails: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class BriefingReport:
    sent: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def is_important(email: dict[str, Any]) -> bool:
    subject = (email.get("subject") or "").lower()
    sender = (email.get("from") or "").lower()
    return not (
        any(marker in subject for marker in _AUTOMATED_SUBJECT_MARKERS)
        or any(marker in sender for marker in _AUTOMATED_SENDER_MARKERS)
    )


def _event_line(event: dict[str, Any]) -> str:
    start = (event.get("start") or {})
    when = start.get("dateTime", start.get("date", "all day"))
    return f"- {when}: {event.get('summary') or 'Meeting'}"


def _email_line(email: dict[str, Any]) -> str:
    sender = (email.get("from") or "Unknown").split("<")[0].strip().strip('"') or "Unknown"
    return f"- From {sender}: {email.get('subject') or 'No subject'}"


def fallback_briefing_text(summary: BriefingSummary) -> str:
    """Static text used when the model is unavailable."""
    parts = ["🌅 Good morning! Here's your daily overview:"]
    if summary.events:
        lines = [f"📅 *Today's Schedule* ({len(summary.events)} events)"]
        lines += [_event_line(e) for e in summary.events[:3]]
        if len(summary.events) > 3:
            lines.append(f"- Plus {len(summary.events) - 3} more events")
        parts.append("\n".join(lines))
    if summary.emails:
        lines = [f"📧 *Priority Emails* ({len(summary.emails)} unread)"]
        lines += [_email_line(e) for e in summary.emails[:2]]
        if len(summary.emails) > 2:
            lines.append(f"- Plus {len(summary.emails) - 2} more emails")
        parts.append("\n".join(lines))
    if not summary.events and not summary.emails:
        parts.append("Your calendar is clear and your inbox is calm. Enjoy the space! 🧘")
    parts.append("Have a productive day! 🚀")
    return "\n\n".join(parts)


def build_briefing_message(text: str) -> dict[str, Any]:
    """Put *text* into the briefing template, within WhatsApp's limits."""
    message = parse_response(text)
    body = message.get("text") if message.get("message_type") == "text" else (
        (message.get("body") or {}).get("text")
    )
    briefing = {**BRIEFING_TEMPLATE, "body": {"text": body or text}}
    return enforce_limits(briefing)


class MorningBriefing:
    def __init__(
        self,
        *,
        db: Database,
        resolver: CredentialResolver,
        google: GoogleClient,
        whatsapp: WhatsAppClient,
        llm: BaseChatModel,
    ):
        self._db = db
        self._resolver = resolver
        self._google = google
        self._whatsapp = whatsapp
        self._llm = llm

    async def gather(self, user: User, now: datetime | None = None) -> BriefingSummary:
        """Today's events and important emails.  Provider errors leave a list empty."""
        token = await self._resolver.resolve(user.id, "google")
        now = now or datetime.now(UTC)
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        summary = BriefingSummary()

        try:
            summary.events = await self._google.list_events(
                token, max_results=25, time_min=start_of_day,
                time_max=start_of_day + timedelta(days=1),
            )
        except ProviderAPIError as exc:
            logger.warning("Calendar fetch failed for user %s: %s", user.id, exc)

        try:
            emails = await self._google.list_messages(
                token, max_results=MAX_BRIEFING_EMAILS, query=IMPORTANT_EMAIL_QUERY,
            )
            summary.emails = [e for e in emails if is_important(e)]
        except ProviderAPIError as exc:
            logger.warning("Gmail fetch failed for user %s: %s", user.id, exc)

        logger.info(
            "Briefing data for user %s: %d events, %d emails",
            user.id, len(summary.events), len(summary.emails),
        )
        return summary

    async def compose(self, user: User, summary: BriefingSummary, now: datetime | None = None) -> dict[str, Any]:
        now = now or datetime.now(UTC)
        prompt = MORNING_BRIEFING_PROMPT.format(
            today=now.strftime("%A %d %B %Y"),
            events="\n".join(_event_line(e) for e in summary.events) or "(none)",
            emails="\n".join(_email_line(e) for e in summary.emails) or "(none)",
        )
        if user.name:
            prompt += f"\nUser's name: {user.name}\n"
        try:
            response = await self._llm.ainvoke([HumanMessage(content=prompt)])
            text = content_text(response.content).strip()
        except Exception:
            logger.exception("Briefing generation failed for user %s; using static text", user.id)
            text = ""
        return build_briefing_message(text or fallback_briefing_text(summary))

    async def send_to(self, user: User) -> bool:
        summary = await self.gather(user)
        message = await self.compose(user, summary)
        sent = await self._whatsapp.send_payload(build_cloud_payload(message, user.phone_number))
        return sent is not None

    async def run(self) -> BriefingReport:
        report = BriefingReport()
        users = await self._db.list_users_with_provider("google")
        logger.info("Morning briefing for %d users", len(users))

        for user in users:
            try:
                delivered = await self.send_to(user)
            except CredentialError as exc:
                logger.warning("Skipping user %s: %s", user.id, exc)
                report.skipped.append(user.id)
                continue
            except StoreError:
                raise
            except Exception:
                logger.exception("Morning briefing failed for user %s", user.id)
                report.failed.append(user.id)
                continue
            (report.sent if delivered else report.failed).append(user.id)

        logger.info(
            "Morning briefing done: %d sent, %d skipped, %d failed",
            len(report.sent), len(report.skipped), len(report.failed),
        )
        return report
