"""The full tool registry, bound to one request's context."""

from __future__ import annotations

from langchain_core.tools import BaseTool

from mnemo.tools import calendar, docs, github, gmail, linkedin, memory
from mnemo.tools.base import ToolAdapter, ToolContext, ToolSpec

TOOL_SPECS: tuple[ToolSpec, ...] = (
    *calendar.TOOLS,
    *docs.TOOLS,
    *gmail.TOOLS,
    *github.TOOLS,
    *linkedin.TOOLS,
    *memory.TOOLS,
)

TOOL_NAMES: tuple[str, ...] = tuple(spec.name for spec in TOOL_SPECS)


def build_adapters(ctx: ToolContext) -> dict[str, ToolAdapter]:
    return {spec.name: ToolAdapter(spec, ctx) for spec in TOOL_SPECS}


def build_tools(ctx: ToolContext) -> list[BaseTool]:
    """LangChain tools for *ctx*; the same list serves web and WhatsApp."""
    return [adapter.as_langchain_tool() for adapter in build_adapters(ctx).values()]
