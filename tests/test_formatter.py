"""Tests for the WhatsApp response formatter."""

from __future__ import annotations

import json

import pytest

from mnemo.whatsapp.formatter import (
    EMPTY_REPLY_TEXT,
    display_text,
    enforce_limits,
    format_response,
    is_valid_message,
    parse_response,
)


def _list_payload(description: str = "Short description") -> dict:
    return {
        "message_type": "interactive",
        "type": "list",
        "header": {"text": "Your meetings"},
        "body": {"text": "Pick a meeting to see details"},
        "footer": {"text": "Mnemo"},
        "action": {
            "button": "View meetings",
            "sections": [
                {
                    "title": "Today",
                    "rows": [
                        {"id": "evt-1", "title": "Board sync", "description": description},
                        {"id": "evt-2", "title": "1:1 with Sam"},
                    ],
                },
            ],
        },
    }


def _button_payload() -> dict:
    return {
        "message_type": "interactive",
        "type": "button",
        "body": {"text": "Send the email?"},
        "action": {
            "buttons": [
                {"type": "reply", "reply": {"id": "yes", "title": "Yes"}},
                {"type": "reply", "reply": {"id": "no", "title": "No"}},
            ],
        },
    }


class TestParseFallbacks:
    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "   ",
            None,
            "Just a plain answer.",
            "{not json at all",
            '{"message_type": "interactive", "type": "list"}',
            '{"message_type": "carousel", "text": "hi"}',
            "[1, 2, 3]",
            '{"message_type": "text", "type": "text", "text": ""}',
            "```json\n{broken}\n```",
        ],
    )
    def test_malformed_output_becomes_text_envelope(self, raw):
        message = json.loads(format_response(raw))
        assert message["message_type"] == "text"
        assert message["type"] == "text"
        assert isinstance(message["text"], str)
        assert message["text"].strip()

    def test_empty_output_uses_apology_text(self):
        assert parse_response("")["text"] == EMPTY_REPLY_TEXT

    def test_plain_text_is_wrapped_verbatim(self):
        assert parse_response("See you at 3pm!") == {
            "message_type": "text", "type": "text", "text": "See you at 3pm!",
        }

    def test_direct_json_is_accepted(self):
        raw = json.dumps({"message_type": "text", "type": "text", "text": "Hello"})
        assert parse_response(raw)["text"] == "Hello"

    @pytest.mark.parametrize(
        "payload",
        [
            {"message_type": "text", "text": "hi"},
            {"message_type": "text", "type": "interactive", "text": "hi", "extra": 1},
        ],
    )
    def test_text_payloads_are_normalised(self, payload):
        assert parse_response(json.dumps(payload)) == {
            "message_type": "text", "type": "text", "text": "hi",
        }

    def test_fenced_json_is_extracted(self):
        raw = "Here you go:\n```json\n" + json.dumps(_button_payload()) + "\n```"
        assert parse_response(raw)["type"] == "button"

    def test_bare_json_inside_prose_is_extracted(self):
        raw = "Sure! " + json.dumps(_list_payload()) + " Let me know."
        assert parse_response(raw)["type"] == "list"


class TestValidation:
    def test_list_without_rows_is_invalid(self):
        payload = _list_payload()
        payload["action"]["sections"][0]["rows"] = []
        assert not is_valid_message(payload)

    def test_button_without_reply_is_invalid(self):
        payload = _button_payload()
        payload["action"]["buttons"] = [{"type": "reply"}]
        assert not is_valid_message(payload)

    def test_valid_shapes(self):
        assert is_valid_message(_list_payload())
        assert is_valid_message(_button_payload())


class TestTruncation:
    def test_row_description_truncated_to_72_other_fields_unchanged(self):
        payload = _list_payload(description="d" * 100)
        result = json.loads(format_response(json.dumps(payload)))

        row = result["action"]["sections"][0]["rows"][0]
        assert row["description"] == "d" * 72
        row["description"] = payload["action"]["sections"][0]["rows"][0]["description"]
        assert result == payload

    def test_list_titles_truncated(self):
        payload = _list_payload()
        payload["action"]["sections"][0]["title"] = "S" * 30
        payload["action"]["sections"][0]["rows"][0]["title"] = "R" * 40
        payload["action"]["button"] = "B" * 25
        result = enforce_limits(payload)

        section = result["action"]["sections"][0]
        assert section["title"] == "S" * 24
        assert section["rows"][0]["title"] == "R" * 24
        assert result["action"]["button"] == "B" * 20

    def test_titles_at_the_limit_are_untouched(self):
        payload = _list_payload()
        payload["action"]["sections"][0]["rows"][0]["title"] = "R" * 24
        result = enforce_limits(payload)
        assert result["action"]["sections"][0]["rows"][0]["title"] == "R" * 24

    def test_button_title_and_count_capped(self):
        payload = _button_payload()
        payload["action"]["buttons"] = [
            {"type": "reply", "reply": {"id": f"b{i}", "title": "T" * 30}} for i in range(5)
        ]
        result = enforce_limits(payload)

        buttons = result["action"]["buttons"]
        assert len(buttons) == 3
        assert all(b["reply"]["title"] == "T" * 20 for b in buttons)

    def test_button_body_and_header_truncated(self):
        payload = _button_payload()
        payload["body"]["text"] = "x" * 2000
        payload["header"] = {"text": "h" * 100}
        result = enforce_limits(payload)
        assert len(result["body"]["text"]) == 1024
        assert len(result["header"]["text"]) == 60

    def test_sections_and_rows_capped_at_ten(self):
        payload = _list_payload()
        rows = [{"id": f"r{i}", "title": f"Row {i}"} for i in range(15)]
        payload["action"]["sections"] = [{"title": f"S{i}", "rows": list(rows)} for i in range(12)]
        result = enforce_limits(payload)

        assert len(result["action"]["sections"]) == 10
        assert all(len(s["rows"]) == 10 for s in result["action"]["sections"])

    def test_input_is_not_mutated(self):
        payload = _list_payload(description="d" * 100)
        enforce_limits(payload)
        assert len(payload["action"]["sections"][0]["rows"][0]["description"]) == 100

    def test_non_ascii_is_kept_readable(self):
        raw = json.dumps({"message_type": "text", "type": "text", "text": "Olá 👋"})
        assert "Olá 👋" in format_response(raw)


class TestDisplayText:
    def test_text_message(self):
        assert display_text({"message_type": "text", "type": "text", "text": "Hello"}) == "Hello"

    def test_interactive_uses_body(self):
        assert display_text(_button_payload()) == _button_payload()["body"]["text"]

    def test_missing_body_is_empty(self):
        assert display_text({"message_type": "interactive", "type": "button"}) == ""
