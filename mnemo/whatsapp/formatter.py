"""Normalise model output into a valid WhatsApp message payload.

``format_response(raw)`` always returns a JSON string describing one of:

* ``{"message_type": "text", "type": "text", "text": ...}``
* ``{"message_type": "interactive", "type": "list", ...}``
* ``{"message_type": "interactive", "type": "button", ...}``

Parsing is a fallback chain: the raw text as JSON, then the first fenced or
bare ``{...}`` object found in it, then a plain-text envelope wrapping the raw
text.  Interactive payloads that survive parsing are passed through
``enforce_limits``, which truncates every field to the platform's hard
limits.  Nothing here raises for bad input.
"""

from __future__ import annotations

import copy
import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

EMPTY_REPLY_TEXT = "Sorry, I couldn't put a reply together. Could you try asking again?"

# ── Platform limits ─────────────────────────────────────────────────
HEADER_TEXT_MAX = 60
FOOTER_TEXT_MAX = 60
LIST_BODY_MAX = 4096
BUTTON_BODY_MAX = 1024
TEXT_BODY_MAX = 4096
LIST_BUTTON_MAX = 20
MAX_SECTIONS = 10
SECTION_TITLE_MAX = 24
MAX_ROWS = 10
ROW_ID_MAX = 200
ROW_TITLE_MAX = 24
ROW_DESCRIPTION_MAX = 72
MAX_BUTTONS = 3
BUTTON_ID_MAX = 256
BUTTON_TITLE_MAX = 20

_FENCED_OR_BARE_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```|(\{[\s\S]*\})")


def text_envelope(text: str) -> dict[str, str]:
    return {"message_type": "text", "type": "text", "text": text}


def _has_text(obj: Any) -> bool:
    return isinstance(obj, dict) and isinstance(obj.get("text"), str) and bool(obj["text"].strip())


def is_valid_message(payload: Any) -> bool:
    """Shape check: enough structure to build a Cloud API message."""
    if not isinstance(payload, dict):
        return False
    message_type = payload.get("message_type")
    if message_type == "text":
        return isinstance(payload.get("text"), str) and bool(payload["text"].strip())
    if message_type != "interactive" or not _has_text(payload.get("body")):
        return False
    action = payload.get("action")
    if not isinstance(action, dict):
        return False
    if payload.get("type") == "list":
        sections = action.get("sections")
        return (
            isinstance(sections, list)
            and bool(sections)
            and all(
                isinstance(s, dict) and isinstance(s.get("rows"), list) and s["rows"]
                for s in sections
            )
        )
    if payload.get("type") == "button":
        buttons = action.get("buttons")
        return (
            isinstance(buttons, list)
            and bool(buttons)
            and all(isinstance(b, dict) and isinstance(b.get("reply"), dict) for b in buttons)
        )
    return False


def _truncate(value: Any, limit: int) -> Any:
    if isinstance(value, str) and len(value) > limit:
        return value[:limit]
    return value


def _truncate_key(obj: Any, key: str, limit: int) -> None:
    if isinstance(obj, dict) and key in obj:
        obj[key] = _truncate(obj[key], limit)


def enforce_limits(payload: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *payload* with every field cut to its hard limit.

    Over-long strings are shortened, over-long arrays are cut; nothing is
    rejected.  Fields without a limit are left untouched.
    """
    out = copy.deepcopy(payload)

    if out.get("message_type") == "text":
        _truncate_key(out, "text", TEXT_BODY_MAX)
        return out

    kind = out.get("type")
    _truncate_key(out.get("header"), "text", HEADER_TEXT_MAX)
    _truncate_key(out.get("footer"), "text", FOOTER_TEXT_MAX)
    _truncate_key(out.get("body"), "text", LIST_BODY_MAX if kind == "list" else BUTTON_BODY_MAX)

    action = out.get("action")
    if not isinstance(action, dict):
        return out

    if kind == "list":
        _truncate_key(action, "button", LIST_BUTTON_MAX)
        sections = action.get("sections")
        if isinstance(sections, list):
            action["sections"] = sections[:MAX_SECTIONS]
            for section in action["sections"]:
                if not isinstance(section, dict):
                    continue
                _truncate_key(section, "title", SECTION_TITLE_MAX)
                rows = section.get("rows")
                if isinstance(rows, list):
                    section["rows"] = rows[:MAX_ROWS]
                    for row in section["rows"]:
                        _truncate_key(row, "id", ROW_ID_MAX)
                        _truncate_key(row, "title", ROW_TITLE_MAX)
                        _truncate_key(row, "description", ROW_DESCRIPTION_MAX)

    elif kind == "button":
        buttons = action.get("buttons")
        if isinstance(buttons, list):
            action["buttons"] = buttons[:MAX_BUTTONS]
            for button in action["buttons"]:
                reply = button.get("reply") if isinstance(button, dict) else None
                _truncate_key(reply, "id", BUTTON_ID_MAX)
                _truncate_key(reply, "title", BUTTON_TITLE_MAX)

    return out


def _try_parse(candidate: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, TypeError):
        return None
    if not is_valid_message(parsed):
        return None
    if parsed["message_type"] == "text":
        return text_envelope(parsed["text"])
    return parsed


def parse_response(raw: str | None) -> dict[str, Any]:
    """Best-effort conversion of raw model output to a message dict."""
    if raw is None or not str(raw).strip():
        return text_envelope(EMPTY_REPLY_TEXT)
    raw = str(raw)

    parsed = _try_parse(raw.strip())
    if parsed is not None:
        return parsed

    match = _FENCED_OR_BARE_RE.search(raw)
    if match:
        parsed = _try_parse(match.group(1) or match.group(2))
        if parsed is not None:
            return parsed

    logger.warning("Model output was not a valid WhatsApp payload; sending as text")
    return text_envelope(raw)


def format_response(raw: str | None) -> str:
    """Parse, validate and truncate; the result is always valid JSON."""
    return json.dumps(enforce_limits(parse_response(raw)), ensure_ascii=False)


def display_text(message: dict[str, Any]) -> str:
    """The words a person reads in *message*: the text, or an interactive body."""
    if message.get("message_type") == "text":
        return message.get("text", "")
    body = message.get("body")
    return body.get("text", "") if isinstance(body, dict) else ""
