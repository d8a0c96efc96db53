"""LangGraph tool-calling agent for Mnemo.

Architecture:
  A two-node LangGraph ``StateGraph``:

    1. **chatbot**: the primary Claude model with every tool bound
    2. **tools**  : executes the tool calls the model requested

  Routing:
    chatbot → (has tool calls?) → tools → chatbot (loop)
            → (no tool calls?)  → END

  The same graph serves both channels.  Web chat streams tokens from it via
  ``astream_events``; WhatsApp invokes it once and runs the final answer
  through the WhatsApp formatter.  Only the system prompt differs.

  State:
    ``messages`` is the checkpointed conversation (``add_messages`` reducer).
    ``system_prompt`` and ``memory_context`` are rewritten on every turn and
    prepended by the chatbot node, so the stored history never accumulates
    stale system prompts or memory snippets.

  Step budget:
    ``recursion_limit`` caps graph super-steps per turn.  When the budget is
    nearly spent and the model still wants tools, the chatbot node answers
    with a short apology instead of letting the run fail.

  Failures:
    Tool adapters return provider and credential problems as text.  Anything
    that escapes the graph (database outage, model API failure) propagates
    to the caller.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Annotated, Any

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    AnyMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
)
from langchain_core.tools import BaseTool
from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from langgraph.managed import RemainingSteps
from langgraph.prebuilt import ToolNode
from typing_extensions import TypedDict

from mnemo.config import AGENT_MAX_STEPS, ANTHROPIC_API_KEY, FAST_MODEL_NAME, MODEL_NAME
from mnemo.context import AssembledContext, Channel, ContextAssembler
from mnemo.services.memory import MemoryService, content_text, to_memory_messages
from mnemo.services.metrics import metrics
from mnemo.tools.base import ToolContext
from mnemo.tools.registry import build_tools
from mnemo.whatsapp.formatter import display_text, format_response

logger = logging.getLogger(__name__)

STEP_BUDGET_MESSAGE = (
    "Sorry, I need more steps than I'm allowed to finish this request. "
    "Could you break it into smaller parts?"
)
STREAM_ERROR_MESSAGE = "\n\nSorry, something went wrong while I was answering. Please try again."


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict):
    """The state that flows through the graph.

    ``remaining_steps`` is managed by LangGraph and counts down from the
    run's ``recursion_limit``.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    system_prompt: str
    memory_context: str | None
    remaining_steps: RemainingSteps


# ── LLM builders ────────────────────────────────────────────────────


def _build_llm() -> ChatAnthropic:
    """Build the primary model used by the tool-calling loop."""
    return ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.2,
        max_tokens=4096,
    )


def _build_fast_llm() -> ChatAnthropic:
    """Build the cheaper model for plain text generation (briefings)."""
    return ChatAnthropic(
        model=FAST_MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.7,
        max_tokens=1024,
    )


# ── Node: chatbot ───────────────────────────────────────────────────


def _make_chatbot_node(llm_with_tools):
    async def chatbot_node(state: AgentState) -> dict:
        """Invoke the model on system prompt + memory + thread history."""
        prompt: list[BaseMessage] = [SystemMessage(content=state["system_prompt"])]
        if state.get("memory_context"):
            prompt.append(HumanMessage(content=state["memory_context"]))
        prompt.extend(state["messages"])

        t0 = time.perf_counter()
        try:
            response = await llm_with_tools.ainvoke(prompt)
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", "llm_invoke",
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise
        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", "llm_invoke", latency_ms=elapsed)
        logger.debug("chatbot responded in %.0fms", elapsed)

        if getattr(response, "tool_calls", None) and state["remaining_steps"] < 2:
            logger.warning("Step budget exhausted with pending tool calls")
            return {"messages": [AIMessage(content=STEP_BUDGET_MESSAGE, id=response.id)]}
        return {"messages": [response]}

    return chatbot_node


# ── Conditional edge ────────────────────────────────────────────────


def should_use_tools(state: AgentState) -> str:
    """Check if the last message has tool calls; if so, route to tools node."""
    last_message = state["messages"][-1]
    if getattr(last_message, "tool_calls", None):
        return "tools"
    return END


# ── Graph assembly ──────────────────────────────────────────────────


def create_mnemo_agent(
    llm: BaseChatModel,
    tools: Sequence[BaseTool],
    checkpointer: BaseCheckpointSaver | None = None,
):
    """Build and compile the agent graph for one set of request-bound tools.

    Returns a compiled graph that can be invoked with:
        await graph.ainvoke(
            {"messages": [...], "system_prompt": "...", "memory_context": None},
            config={"configurable": {"thread_id": "thread_..."}},
        )
    """
    graph = StateGraph(AgentState)
    graph.add_node("chatbot", _make_chatbot_node(llm.bind_tools(list(tools))))
    # Adapters report their own failures; anything raised here is fatal
    graph.add_node("tools", ToolNode(list(tools), handle_tool_errors=False))
    graph.set_entry_point("chatbot")
    graph.add_conditional_edges("chatbot", should_use_tools, {"tools": "tools", END: END})
    graph.add_edge("tools", "chatbot")
    return graph.compile(checkpointer=checkpointer)


# ── Runtime ─────────────────────────────────────────────────────────


@dataclass
class AgentReply:
    text: str
    thread_id: str
    messages: list[BaseMessage]


@dataclass
class PreparedTurn:
    user_id: str
    channel: Channel
    context: AssembledContext
    graph: Any
    config: dict

    @property
    def inputs(self) -> dict:
        return {
            "messages": self.context.messages,
            "system_prompt": self.context.system_message.content,
            "memory_context": (
                self.context.memory_message.content if self.context.memory_message else None
            ),
        }


class Assistant:
    """Runs one user turn end to end: context, agent loop, memory write-back."""

    def __init__(
        self,
        *,
        assembler: ContextAssembler,
        memory: MemoryService,
        llm: BaseChatModel,
        checkpointer: BaseCheckpointSaver,
        tool_context,
        max_steps: int = AGENT_MAX_STEPS,
    ):
        self._assembler = assembler
        self._memory = memory
        self._llm = llm
        self._checkpointer = checkpointer
        self._tool_context = tool_context
        self._max_steps = max_steps

    async def prepare(
        self, user_id: str, messages: Sequence[BaseMessage], channel: Channel = "web",
    ) -> PreparedTurn:
        context = await self._assembler.assemble(user_id, channel, messages)
        ctx: ToolContext = self._tool_context(user_id)
        graph = create_mnemo_agent(self._llm, build_tools(ctx), self._checkpointer)
        config = {
            "configurable": {"thread_id": context.thread_id},
            "recursion_limit": self._max_steps,
        }
        logger.info(
            "Turn for user %s on %s (thread=%s, memory=%s)",
            user_id, channel, context.thread_id, context.memory_message is not None,
        )
        return PreparedTurn(user_id, channel, context, graph, config)

    async def reply(
        self, user_id: str, messages: Sequence[BaseMessage], channel: Channel = "web",
    ) -> AgentReply:
        """Run the loop to completion.  WhatsApp replies come back as JSON."""
        turn = await self.prepare(user_id, messages, channel)
        result = await turn.graph.ainvoke(turn.inputs, config=turn.config)

        final = result["messages"][-1]
        text = content_text(final.content) if isinstance(final, AIMessage) else ""
        answer = text
        if channel == "whatsapp":
            text = format_response(text)
            answer = display_text(json.loads(text))
        await self._remember(turn, answer)
        return AgentReply(text=text, thread_id=turn.context.thread_id, messages=result["messages"])

    async def stream(self, turn: PreparedTurn) -> AsyncIterator[str]:
        """Yield model text as it is generated.

        Errors after the first byte cannot become an HTTP error any more, so
        they are logged and end the stream with an apology line; nothing is
        written to memory.  A final answer the model never streamed (the step
        budget apology) is sent once the run ends and is what gets remembered.
        """
        chunks: list[str] = []
        try:
            async for event in turn.graph.astream_events(
                turn.inputs, config=turn.config, version="v2",
            ):
                if event["event"] != "on_chat_model_stream":
                    continue
                token = content_text(event["data"]["chunk"].content)
                if token:
                    chunks.append(token)
                    yield token
            state = await turn.graph.aget_state(turn.config)
        except Exception:
            logger.exception("Streaming turn failed for user %s", turn.user_id)
            yield STREAM_ERROR_MESSAGE
            return

        answer = "".join(chunks)
        final = (state.values.get("messages") or [None])[-1]
        if isinstance(final, AIMessage):
            final_text = content_text(final.content)
            if final_text and not answer.endswith(final_text):
                yield f"\n\n{final_text}" if answer else final_text
                answer = final_text
        await self._remember(turn, answer)

    async def _remember(self, turn: PreparedTurn, answer: str) -> None:
        exchange = to_memory_messages(turn.context.messages)
        if answer:
            exchange.append({"role": "assistant", "content": answer})
        await self._memory.add(exchange, turn.user_id)

    async def thread_messages(self, thread_id: str) -> list[BaseMessage] | None:
        """Stored history for *thread_id*, or ``None`` if nothing was saved."""
        saved = await self._checkpointer.aget_tuple({"configurable": {"thread_id": thread_id}})
        if saved is None:
            return None
        return list(saved.checkpoint.get("channel_values", {}).get("messages", []))
