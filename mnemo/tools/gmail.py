"""Gmail tools: list, read and send.

``send_gmail_message`` always appends the configured signature to the body
before sending, whatever the model wrote.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from mnemo.services.google_client import build_raw_email
from mnemo.tools.base import StrList, ToolArgs, ToolContext, ToolResult, ToolSpec, capability

MAX_BODY_CHARS = 10_000


def with_signature(body: str, signature: str) -> str:
    return f"{body.rstrip()}\n\n{signature}"


@capability("google", "GMAIL")
async def list_gmail_messages(
    ctx: ToolContext,
    max_results: int = 10,
    query: str | None = None,
    label_ids: list[str] | None = None,
) -> ToolResult:
    token = await ctx.resolver.resolve(ctx.user_id, "google")
    messages = await ctx.google.list_messages(
        token, max_results=max_results, query=query, label_ids=label_ids,
    )
    return ToolResult.ok(messages)


@capability("google", "GMAIL")
async def read_gmail_message(ctx: ToolContext, message_id: str) -> ToolResult:
    token = await ctx.resolver.resolve(ctx.user_id, "google")
    return ToolResult.ok(await ctx.google.read_message(token, message_id))


@capability("google", "GMAIL")
async def send_gmail_message(
    ctx: ToolContext,
    to: str,
    subject: str,
    body: str,
    cc: str | None = None,
    bcc: str | None = None,
) -> ToolResult:
    try:
        raw = build_raw_email(to, subject, with_signature(body, ctx.email_signature), cc=cc, bcc=bcc)
    except ValueError as exc:
        return ToolResult.fail(f"Invalid email headers: {exc}", "INVALID_EMAIL_HEADERS")
    token = await ctx.resolver.resolve(ctx.user_id, "google")
    sent = await ctx.google.send_message(token, raw)
    return ToolResult.ok({**sent, "to": to, "subject": subject})


def _render_list(messages: list[dict[str, Any]]) -> str:
    if not messages:
        return "No emails matched."
    lines = [f"Emails ({len(messages)}):"]
    for i, msg in enumerate(messages, 1):
        lines.append(
            f"{i}. From {msg['from']} | {msg['subject'] or '(no subject)'} | {msg['date']}"
            f" [messageId: {msg['id']}]\n   {msg['snippet']}"
        )
    return "\n".join(lines)


def _render_message(msg: dict[str, Any]) -> str:
    body = msg["body"] or msg["snippet"]
    if len(body) > MAX_BODY_CHARS:
        body = body[:MAX_BODY_CHARS] + "\n[... message truncated ...]"
    return (
        f"From: {msg['from']}\nTo: {msg['to']}\nDate: {msg['date']}\n"
        f"Subject: {msg['subject']}\n\n{body}"
    )


class ListMessagesArgs(ToolArgs):
    max_results: int = Field(10, alias="maxResults", description="Maximum number of emails (default 10)")
    query: str | None = Field(None, description="Gmail search query")
    label_ids: StrList | None = Field(None, alias="labelIds", description="Label ids")


class ReadMessageArgs(ToolArgs):
    message_id: str = Field(alias="messageId", description="The message id")


class SendMessageArgs(ToolArgs):
    to: str = Field(description="Recipient address(es), comma separated")
    subject: str = Field(description="Subject line")
    body: str = Field(description="Plain-text body")
    cc: str | None = Field(None, description="Cc address(es)")
    bcc: str | None = Field(None, description="Bcc address(es)")


TOOLS = [
    ToolSpec(
        name="list_gmail_messages",
        description=(
            "Lists emails from the user's Gmail. query takes Gmail search syntax "
            "(e.g. 'is:unread from:alice'); labelIds filters by label (e.g. INBOX)."
        ),
        args_schema=ListMessagesArgs,
        run=lambda ctx, a: list_gmail_messages(
            ctx, max_results=a.max_results, query=a.query, label_ids=a.label_ids,
        ),
        render=_render_list,
    ),
    ToolSpec(
        name="read_gmail_message",
        description="Reads one email by id. Call list_gmail_messages first if the id is unknown.",
        args_schema=ReadMessageArgs,
        run=lambda ctx, a: read_gmail_message(ctx, message_id=a.message_id),
        render=_render_message,
    ),
    ToolSpec(
        name="send_gmail_message",
        description=(
            "Sends an email from the user's Gmail account. Confirm recipients and "
            "content with the user before sending. A signature is added automatically."
        ),
        args_schema=SendMessageArgs,
        run=lambda ctx, a: send_gmail_message(
            ctx, to=a.to, subject=a.subject, body=a.body, cc=a.cc, bcc=a.bcc,
        ),
        render=lambda data: f"Email sent to {data['to']} (subject: {data['subject']}) [messageId: {data['messageId']}]",
    ),
]
