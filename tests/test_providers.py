"""Tests for the provider API clients."""

from __future__ import annotations

import base64
from email import message_from_bytes, policy

import httpx
import pytest

from mnemo.services.credentials import InvalidTokenError
from mnemo.services.github_client import GitHubClient
from mnemo.services.google_client import (
    GoogleClient,
    build_raw_email,
    extract_document_text,
    extract_plain_text,
)
from mnemo.services.linkedin_client import LinkedInClient
from mnemo.services.provider_client import ProviderAPIError


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


def _client(cls, handler):
    return cls(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestPayloadHelpers:
    def test_plain_text_from_multipart(self):
        payload = {
            "mimeType": "multipart/alternative",
            "parts": [
                {"mimeType": "text/html", "body": {"data": _b64("<p>Hi</p>")}},
                {"mimeType": "text/plain", "body": {"data": _b64("Hi there")}},
            ],
        }
        assert extract_plain_text(payload) == "Hi there"

    def test_falls_back_to_any_body(self):
        payload = {"mimeType": "text/html", "body": {"data": _b64("<b>only html</b>")}}
        assert extract_plain_text(payload) == "<b>only html</b>"

    def test_document_text_joins_runs(self):
        document = {"body": {"content": [
            {"sectionBreak": {}},
            {"paragraph": {"elements": [
                {"textRun": {"content": "Q3 plan\n"}},
            ]}},
            {"paragraph": {"elements": [
                {"textRun": {"content": "Hire two "}},
                {"textRun": {"content": "engineers.\n"}},
            ]}},
        ]}}
        assert extract_document_text(document) == "Q3 plan\nHire two engineers.\n"


@pytest.mark.asyncio
class TestProviderClient:
    async def test_unauthorised_is_invalid_token(self):
        client = _client(LinkedInClient, lambda request: httpx.Response(401))
        with pytest.raises(InvalidTokenError) as excinfo:
            await client.get_profile("revoked")
        assert excinfo.value.provider == "linkedin"

    async def test_server_error_keeps_status(self):
        client = _client(GitHubClient, lambda request: httpx.Response(502, text="Bad gateway"))
        with pytest.raises(ProviderAPIError) as excinfo:
            await client.list_open_pull_requests("token")
        assert excinfo.value.status_code == 502

    async def test_transport_error_is_provider_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(GoogleClient, handler)
        with pytest.raises(ProviderAPIError):
            await client.list_events("token")

    async def test_empty_body_is_none(self):
        client = _client(GoogleClient, lambda request: httpx.Response(204))
        assert await client.delete_event("token", "evt-1") is None


@pytest.mark.asyncio
class TestLinkedInClient:
    async def test_profile_name_from_given_and_family(self):
        requests: list[httpx.Request] = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={
                "sub": "abc123", "given_name": "Alice", "family_name": "Liddell",
                "email": "alice@example.com",
            })

        profile = await _client(LinkedInClient, handler).get_profile("li-token")

        assert profile == {
            "id": "abc123", "name": "Alice Liddell", "email": "alice@example.com",
            "picture": None, "locale": None,
        }
        assert requests[0].headers["Authorization"] == "Bearer li-token"


@pytest.mark.asyncio
class TestGitHubClient:
    async def test_pull_request_details(self):
        def handler(request):
            assert request.url.path == "/repos/acme/api/pulls/42"
            assert request.headers["Accept"] == "application/vnd.github+json"
            return httpx.Response(200, json={
                "number": 42, "title": "Add retries", "state": "open",
                "user": {"login": "alice"}, "body": None,
                "head": {"ref": "retries"}, "base": {"ref": "main"},
                "changed_files": 3,
            })

        pr = await _client(GitHubClient, handler).get_pull_request("token", "acme", "api", 42)

        assert pr["author"] == "alice"
        assert pr["body"] == ""
        assert pr["head"] == "retries"
        assert pr["changedFiles"] == 3


class TestBuildRawEmail:
    @staticmethod
    def _parse(raw: str):
        data = base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4))
        return data, message_from_bytes(data, policy=policy.default)

    def test_headers_and_body(self):
        data, message = self._parse(build_raw_email(
            "sam@example.com", "Lunch", "See you at noon.", cc="dana@fund.vc",
        ))
        assert message["To"] == "sam@example.com"
        assert message["Cc"] == "dana@fund.vc"
        assert message["Bcc"] is None
        assert message.get_content_type() == "text/plain"
        assert message.get_content().strip() == "See you at noon."

    @pytest.mark.parametrize("field", ["to", "subject", "cc", "bcc"])
    def test_line_breaks_in_headers_are_rejected(self, field):
        values = {"to": "sam@example.com", "subject": "Hello", "cc": None, "bcc": None}
        values[field] = "Hi\r\nBcc: spy@evil.com"
        with pytest.raises(ValueError):
            build_raw_email(values["to"], values["subject"], "Body", cc=values["cc"], bcc=values["bcc"])

    def test_non_ascii_subject_is_encoded(self):
        data, message = self._parse(build_raw_email("sam@example.com", "Réunion demain", "À bientôt"))
        header_block = data.split(b"\n\n", 1)[0]
        header_block.decode("ascii")
        assert b"=?utf-8?" in header_block
        assert message["Subject"] == "Réunion demain"
        assert message.get_content().strip() == "À bientôt"
