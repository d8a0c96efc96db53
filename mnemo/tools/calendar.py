"""Google Calendar tools: list, create and delete events."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from pydantic import Field

from mnemo.tools.base import StrList, ToolArgs, ToolContext, ToolResult, ToolSpec, capability

# Date-time with an explicit UTC offset, e.g. 2026-03-01T09:30:00+01:00
_ISO_WITH_OFFSET_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:\d{2})$"
)

INVALID_DATE_MESSAGE = (
    "Invalid date format. Please use ISO format (YYYY-MM-DDTHH:MM:SS+00:00)."
)


def is_iso_with_offset(value: str) -> bool:
    if not isinstance(value, str) or not _ISO_WITH_OFFSET_RE.match(value):
        return False
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


def _format_when(when: dict[str, Any] | None) -> str:
    when = when or {}
    if when.get("dateTime"):
        try:
            dt = datetime.fromisoformat(when["dateTime"].replace("Z", "+00:00"))
        except ValueError:
            return when["dateTime"]
        return dt.strftime("%a %d %b %Y at %H:%M %z").strip()
    if when.get("date"):
        return f"{when['date']} (all day)"
    return "unknown time"


# ── Capabilities ────────────────────────────────────────────────────


@capability("google", "CALENDAR")
async def list_calendar_events(ctx: ToolContext, max_results: int = 10) -> ToolResult:
    token = await ctx.resolver.resolve(ctx.user_id, "google")
    events = await ctx.google.list_events(token, max_results=max_results)
    return ToolResult.ok(events)


@capability("google", "CALENDAR")
async def create_calendar_event(
    ctx: ToolContext,
    summary: str,
    start: str,
    end: str,
    description: str = "",
    attendees: list[str] | None = None,
) -> ToolResult:
    if not (is_iso_with_offset(start) and is_iso_with_offset(end)):
        return ToolResult.fail(INVALID_DATE_MESSAGE, "INVALID_DATE_FORMAT")

    token = await ctx.resolver.resolve(ctx.user_id, "google")
    event = await ctx.google.create_event(
        token,
        summary=summary,
        start=start,
        end=end,
        description=description,
        attendees=attendees,
    )
    return ToolResult.ok(event)


@capability(
    "google", "CALENDAR",
    not_found=("EVENT_NOT_FOUND", "Event not found. List the calendar events to get a valid event id."),
)
async def delete_calendar_event(ctx: ToolContext, event_id: str) -> ToolResult:
    token = await ctx.resolver.resolve(ctx.user_id, "google")
    await ctx.google.delete_event(token, event_id)
    return ToolResult.ok({"eventId": event_id})


# ── Rendering ───────────────────────────────────────────────────────


def _render_events(events: list[dict[str, Any]]) -> str:
    if not events:
        return "No upcoming events found in your calendar."
    lines = [f"Upcoming events ({len(events)}):"]
    for i, event in enumerate(events, 1):
        line = f"{i}. {event.get('summary', '(no title)')}: {_format_when(event.get('start'))}"
        if event.get("location"):
            line += f" @ {event['location']}"
        lines.append(f"{line} [eventId: {event.get('id')}]")
    return "\n".join(lines)


def _render_created(event: dict[str, Any]) -> str:
    return (
        f"Event created: {event.get('summary', '')} on {_format_when(event.get('start'))}"
        f" [eventId: {event.get('id')}]"
        + (f"\nLink: {event['htmlLink']}" if event.get("htmlLink") else "")
    )


class ListEventsArgs(ToolArgs):
    max_results: int = Field(10, alias="maxResults", description="Maximum number of events (default 10)")


class CreateEventArgs(ToolArgs):
    summary: str = Field(description="Event title")
    start: str = Field(description="Start, YYYY-MM-DDTHH:MM:SS+HH:MM")
    end: str = Field(description="End, YYYY-MM-DDTHH:MM:SS+HH:MM")
    description: str = Field("", description="Event description")
    attendees: StrList | None = Field(None, description="Attendee email addresses")


class DeleteEventArgs(ToolArgs):
    event_id: str = Field(alias="eventId", description="The event id")


TOOLS = [
    ToolSpec(
        name="list_calendar_events",
        description=(
            "Lists upcoming events from the user's Google Calendar, soonest first. "
            "Use it to answer schedule questions and to find an event id before deleting."
        ),
        args_schema=ListEventsArgs,
        run=lambda ctx, a: list_calendar_events(ctx, max_results=a.max_results),
        render=_render_events,
    ),
    ToolSpec(
        name="create_calendar_event",
        description=(
            "Creates an event in the user's Google Calendar. start and end must be ISO "
            "date-times with an explicit offset, e.g. 2026-03-01T09:30:00+00:00."
        ),
        args_schema=CreateEventArgs,
        run=lambda ctx, a: create_calendar_event(
            ctx,
            summary=a.summary,
            start=a.start,
            end=a.end,
            description=a.description,
            attendees=a.attendees,
        ),
        render=_render_created,
    ),
    ToolSpec(
        name="delete_calendar_event",
        description=(
            "Deletes an event from the user's Google Calendar by id. If you do not know "
            "the id, call list_calendar_events first."
        ),
        args_schema=DeleteEventArgs,
        run=lambda ctx, a: delete_calendar_event(ctx, event_id=a.event_id),
        render=lambda data: f"Event {data['eventId']} deleted from your calendar.",
    ),
]
