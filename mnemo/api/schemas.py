"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """A single web chat message."""

    message: str = Field(..., min_length=1, max_length=4000, description="The user's message")
    user_id: str = Field(..., min_length=1, max_length=100, description="Authenticated user id")


class ChatResponse(BaseModel):
    """Response from the agent."""

    reply: str = Field(..., description="The agent's final answer")
    thread_id: str = Field(..., description="The user's persistent conversation thread")


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str = Field(..., min_length=1)


class AgentRequest(BaseModel):
    """New turn messages for the streaming endpoint.

    Prior history comes from the checkpointer; a ``system`` message, if
    present, replaces the assembled system prompt for this turn.
    """

    user_id: str = Field(..., min_length=1, max_length=100)
    messages: list[ChatMessage] = Field(..., min_length=1)


class ThreadMessage(BaseModel):
    role: str
    content: str
    tool_calls: list[dict] = Field(default_factory=list)


class ThreadResponse(BaseModel):
    thread_id: str
    messages: list[ThreadMessage]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "mnemo-assistant"
