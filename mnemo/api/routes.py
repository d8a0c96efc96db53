"""FastAPI route definitions for the Mnemo assistant API."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse, StreamingResponse
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from mnemo.api.schemas import (
    AgentRequest,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    HealthResponse,
    ThreadMessage,
    ThreadResponse,
)
from mnemo.config import IS_PRODUCTION, META_APP_SECRET, WHATSAPP_VERIFY_TOKEN
from mnemo.runtime import Runtime
from mnemo.services.memory import content_text
from mnemo.whatsapp.handler import extract_message, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter()

INTERNAL_ERROR_DETAIL = "An internal error occurred. Please try again."

_ROLES = {"human": "user", "ai": "assistant", "system": "system", "tool": "tool"}


def _get_runtime(request: Request) -> Runtime:
    """Retrieve the runtime built by the FastAPI lifespan (see ``server.py``)."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=503,
            detail="The assistant is still starting up. Please try again in a moment.",
        )
    return runtime


def _to_langchain(message: ChatMessage) -> BaseMessage:
    if message.role == "system":
        return SystemMessage(content=message.content)
    if message.role == "assistant":
        return AIMessage(content=message.content)
    return HumanMessage(content=message.content)


def _to_thread_message(message: BaseMessage) -> ThreadMessage:
    return ThreadMessage(
        role=_ROLES.get(message.type, message.type),
        content=content_text(message.content),
        tool_calls=[
            {"name": call["name"], "args": call["args"], "id": call.get("id")}
            for call in getattr(message, "tool_calls", None) or []
        ],
    )


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, http_request: Request):
    """Run one web turn to completion and return the final answer."""
    runtime = _get_runtime(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        reply = await runtime.assistant.reply(
            request.user_id, [HumanMessage(content=request.message)], channel="web",
        )
    except Exception as e:
        logger.exception("[%s] Error processing chat request", request_id)
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR_DETAIL) from e

    if not reply.text:
        logger.error("[%s] Agent returned no text", request_id)
        raise HTTPException(status_code=500, detail="Agent produced no response.")
    return ChatResponse(reply=reply.text, thread_id=reply.thread_id)


@router.post("/agent")
async def agent(request: AgentRequest, http_request: Request):
    """Stream the model's answer as plain text.

    Context assembly happens before the response starts, so a database
    outage still becomes a 500.  Failures after the first token end the
    stream with an apology line instead.
    """
    runtime = _get_runtime(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        turn = await runtime.assistant.prepare(
            request.user_id, [_to_langchain(m) for m in request.messages], channel="web",
        )
    except Exception as e:
        logger.exception("[%s] Error preparing agent turn", request_id)
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR_DETAIL) from e

    return StreamingResponse(
        runtime.assistant.stream(turn),
        media_type="text/plain; charset=utf-8",
        headers={"X-Thread-ID": turn.context.thread_id},
    )


@router.get("/threads/{thread_id}", response_model=ThreadResponse)
async def get_thread(thread_id: str, http_request: Request):
    """Return the checkpointed messages of a thread."""
    runtime = _get_runtime(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        owner = await runtime.db.get_thread_owner(thread_id)
        messages = await runtime.assistant.thread_messages(thread_id) if owner else None
    except Exception as e:
        logger.exception("[%s] Error loading thread %s", request_id, thread_id)
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR_DETAIL) from e

    if messages is None:
        raise HTTPException(status_code=404, detail="Thread not found.")
    return ThreadResponse(
        thread_id=thread_id, messages=[_to_thread_message(m) for m in messages],
    )


# ── WhatsApp webhook ─────────────────────────────────────────────────


@router.get("/whatsapp")
async def verify_webhook(
    mode: str | None = Query(None, alias="hub.mode"),
    token: str | None = Query(None, alias="hub.verify_token"),
    challenge: str | None = Query(None, alias="hub.challenge"),
):
    """Meta's subscription handshake: echo the challenge for our token."""
    if mode == "subscribe" and WHATSAPP_VERIFY_TOKEN and token == WHATSAPP_VERIFY_TOKEN:
        logger.info("WhatsApp webhook verified")
        return PlainTextResponse(challenge or "")
    logger.warning("WhatsApp webhook verification failed (mode=%s)", mode)
    raise HTTPException(status_code=403, detail="Verification failed.")


@router.post("/whatsapp")
async def whatsapp_webhook(http_request: Request, background_tasks: BackgroundTasks):
    """Acknowledge immediately; the turn runs in a background task."""
    runtime = _get_runtime(http_request)
    body = await http_request.body()

    if IS_PRODUCTION and META_APP_SECRET and not verify_signature(
        body, http_request.headers.get("X-Hub-Signature-256"), META_APP_SECRET,
    ):
        logger.warning("Rejected WhatsApp webhook with a bad signature")
        raise HTTPException(status_code=401, detail="Invalid signature.")

    try:
        payload = json.loads(body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid JSON body.") from e

    message = extract_message(payload) if isinstance(payload, dict) else None
    if message is None:
        logger.debug("Ignoring WhatsApp webhook without a user message")
        return {"status": "ignored"}

    background_tasks.add_task(runtime.whatsapp_handler.process, message)
    return {"status": "ok"}
