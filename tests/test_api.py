"""Tests for the FastAPI endpoints."""

from __future__ import annotations

import hashlib
import hmac
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from mnemo.agent import AgentReply
from mnemo.server import app


def _webhook_payload(text: str = "What's on today?") -> dict:
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "changes": [{
                "field": "messages",
                "value": {
                    "messages": [{
                        "from": "447700900123",
                        "id": "wamid.ABC",
                        "type": "text",
                        "text": {"body": text},
                    }],
                },
            }],
        }],
    }


@pytest.fixture
def mock_runtime():
    """Attach a mock runtime to app state (mirrors the lifespan)."""
    runtime = MagicMock()
    runtime.assistant.reply = AsyncMock(return_value=AgentReply(
        text="Hi! I'm Mnemo. How can I help?", thread_id="thread_alice_1_abcd", messages=[],
    ))
    runtime.whatsapp_handler.process = AsyncMock()
    runtime.db.get_thread_owner = AsyncMock(return_value="alice")
    runtime.assistant.thread_messages = AsyncMock(return_value=[
        HumanMessage(content="Hello"),
        AIMessage(content="", tool_calls=[{"name": "search_memories", "args": {"query": "x"}, "id": "c1"}]),
        AIMessage(content="Hi Alice"),
    ])

    app.state.runtime = runtime
    yield runtime
    app.state.runtime = None


@pytest.fixture
def client(mock_runtime):
    return TestClient(app)


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "mnemo-assistant"}


class TestChatEndpoint:
    def test_chat_returns_reply_and_thread(self, client, mock_runtime):
        response = client.post("/api/chat", json={"message": "Hello!", "user_id": "alice"})
        assert response.status_code == 200
        assert response.json() == {
            "reply": "Hi! I'm Mnemo. How can I help?", "thread_id": "thread_alice_1_abcd",
        }

    def test_chat_passes_user_and_web_channel(self, client, mock_runtime):
        client.post("/api/chat", json={"message": "Hi!", "user_id": "alice"})
        args, kwargs = mock_runtime.assistant.reply.call_args
        assert args[0] == "alice"
        assert args[1][0].content == "Hi!"
        assert kwargs["channel"] == "web"

    def test_chat_validates_empty_message(self, client):
        response = client.post("/api/chat", json={"message": "", "user_id": "alice"})
        assert response.status_code == 422

    def test_chat_validates_missing_user(self, client):
        response = client.post("/api/chat", json={"message": "Hello!"})
        assert response.status_code == 422

    def test_chat_handles_agent_error(self, client, mock_runtime):
        mock_runtime.assistant.reply.side_effect = RuntimeError("LLM exploded")
        response = client.post("/api/chat", json={"message": "Hello!", "user_id": "alice"})
        assert response.status_code == 500
        detail = response.json()["detail"]
        assert "LLM exploded" not in detail
        assert "internal error" in detail.lower()

    def test_response_includes_request_id_header(self, client):
        response = client.post("/api/chat", json={"message": "Hello!", "user_id": "alice"})
        assert "X-Request-ID" in response.headers

    def test_client_supplied_request_id_is_echoed(self, client):
        response = client.post(
            "/api/chat",
            json={"message": "Hello!", "user_id": "alice"},
            headers={"X-Request-ID": "my-trace-id-123"},
        )
        assert response.headers["X-Request-ID"] == "my-trace-id-123"


class TestAgentStreamEndpoint:
    def test_streams_plain_text(self, client, mock_runtime):
        async def fake_stream(turn):
            for token in ("Good ", "morning", "!"):
                yield token

        turn = SimpleNamespace(context=SimpleNamespace(thread_id="thread_alice_1_abcd"))
        mock_runtime.assistant.prepare = AsyncMock(return_value=turn)
        mock_runtime.assistant.stream = fake_stream

        response = client.post("/api/agent", json={
            "user_id": "alice",
            "messages": [
                {"role": "system", "content": "Be brief."},
                {"role": "user", "content": "Morning!"},
            ],
        })

        assert response.status_code == 200
        assert response.text == "Good morning!"
        assert response.headers["content-type"].startswith("text/plain")
        assert response.headers["X-Thread-ID"] == "thread_alice_1_abcd"

        messages = mock_runtime.assistant.prepare.call_args.args[1]
        assert isinstance(messages[0], SystemMessage)
        assert isinstance(messages[1], HumanMessage)

    def test_preparation_failure_is_500(self, client, mock_runtime):
        mock_runtime.assistant.prepare = AsyncMock(side_effect=RuntimeError("db down"))
        response = client.post("/api/agent", json={
            "user_id": "alice", "messages": [{"role": "user", "content": "Hi"}],
        })
        assert response.status_code == 500
        assert "db down" not in response.json()["detail"]

    def test_rejects_unknown_roles(self, client):
        response = client.post("/api/agent", json={
            "user_id": "alice", "messages": [{"role": "tool", "content": "Hi"}],
        })
        assert response.status_code == 422


class TestThreadEndpoint:
    def test_returns_checkpointed_messages(self, client):
        response = client.get("/api/threads/thread_alice_1_abcd")
        assert response.status_code == 200
        data = response.json()
        assert [m["role"] for m in data["messages"]] == ["user", "assistant", "assistant"]
        assert data["messages"][1]["tool_calls"][0]["name"] == "search_memories"
        assert data["messages"][2]["content"] == "Hi Alice"

    def test_unknown_thread_is_404(self, client, mock_runtime):
        mock_runtime.db.get_thread_owner.return_value = None
        assert client.get("/api/threads/thread_nobody").status_code == 404

    def test_thread_without_checkpoint_is_404(self, client, mock_runtime):
        mock_runtime.assistant.thread_messages.return_value = None
        assert client.get("/api/threads/thread_alice_1_abcd").status_code == 404


class TestWhatsAppWebhook:
    def test_verification_echoes_challenge(self, client):
        response = client.get("/api/whatsapp", params={
            "hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "12345",
        })
        assert response.status_code == 200
        assert response.text == "12345"

    def test_verification_rejects_wrong_token(self, client):
        response = client.get("/api/whatsapp", params={
            "hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "12345",
        })
        assert response.status_code == 403

    def test_message_is_acknowledged_and_processed_in_background(self, client, mock_runtime):
        response = client.post("/api/whatsapp", json=_webhook_payload())
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

        message = mock_runtime.whatsapp_handler.process.call_args.args[0]
        assert message.sender == "447700900123"
        assert message.text == "What's on today?"

    def test_status_callbacks_are_ignored(self, client, mock_runtime):
        payload = {"object": "whatsapp_business_account", "entry": [{"changes": [{
            "field": "messages", "value": {"statuses": [{"status": "delivered"}]},
        }]}]}
        response = client.post("/api/whatsapp", json=payload)
        assert response.json() == {"status": "ignored"}
        mock_runtime.whatsapp_handler.process.assert_not_called()

    def test_signature_enforced_in_production(self, client, mock_runtime):
        body = json.dumps(_webhook_payload()).encode()
        good = "sha256=" + hmac.new(b"app-secret", body, hashlib.sha256).hexdigest()

        with patch("mnemo.api.routes.IS_PRODUCTION", True), \
                patch("mnemo.api.routes.META_APP_SECRET", "app-secret"):
            rejected = client.post(
                "/api/whatsapp", content=body,
                headers={"Content-Type": "application/json", "X-Hub-Signature-256": "sha256=bad"},
            )
            accepted = client.post(
                "/api/whatsapp", content=body,
                headers={"Content-Type": "application/json", "X-Hub-Signature-256": good},
            )

        assert rejected.status_code == 401
        assert accepted.status_code == 200

    def test_invalid_json_is_400(self, client):
        response = client.post(
            "/api/whatsapp", content=b"not json", headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400


class TestRuntimeNotReady:
    def test_returns_503_when_runtime_not_initialised(self):
        app.state.runtime = None
        response = TestClient(app).post("/api/chat", json={"message": "Hello!", "user_id": "alice"})
        assert response.status_code == 503
        assert "starting up" in response.json()["detail"].lower()


class TestRootEndpoint:
    def test_root_returns_service_info(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "Mnemo Assistant"
        assert "docs" in data
