"""Long-term memory tools.

The memory service already degrades instead of raising; these tools turn a
degraded result into a ``MEMORY_UNAVAILABLE`` envelope so the model can tell
the user it could not remember or recall right now.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from mnemo.services.memory import MemorySnippet
from mnemo.tools.base import ToolArgs, ToolContext, ToolResult, ToolSpec

UNAVAILABLE = "Long-term memory is temporarily unavailable. Continue without it."


async def search_memories(
    ctx: ToolContext, query: str, limit: int = 5, filters: dict | None = None,
) -> ToolResult:
    found = await ctx.memory.search(query, ctx.user_id, limit=limit, filters=filters)
    if found is None:
        return ToolResult.fail(UNAVAILABLE, "MEMORY_UNAVAILABLE")
    return ToolResult.ok(found)


async def add_memory(ctx: ToolContext, content: str, metadata: dict | None = None) -> ToolResult:
    stored = await ctx.memory.add(
        [{"role": "user", "content": content}], ctx.user_id, metadata=metadata,
    )
    if not stored:
        return ToolResult.fail(UNAVAILABLE, "MEMORY_UNAVAILABLE")
    return ToolResult.ok({"content": content})


async def get_all_memories(ctx: ToolContext, limit: int = 10) -> ToolResult:
    found = await ctx.memory.get_all(ctx.user_id, limit=limit)
    if found is None:
        return ToolResult.fail(UNAVAILABLE, "MEMORY_UNAVAILABLE")
    return ToolResult.ok(found)


async def delete_memory(ctx: ToolContext, memory_id: str) -> ToolResult:
    if not await ctx.memory.delete(memory_id):
        return ToolResult.fail(UNAVAILABLE, "MEMORY_UNAVAILABLE")
    return ToolResult.ok({"memoryId": memory_id})


async def update_memory(ctx: ToolContext, memory_id: str, new_content: str) -> ToolResult:
    if not await ctx.memory.update(memory_id, new_content):
        return ToolResult.fail(UNAVAILABLE, "MEMORY_UNAVAILABLE")
    return ToolResult.ok({"memoryId": memory_id, "content": new_content})


def _render_search(snippets: list[MemorySnippet]) -> str:
    if not snippets:
        return "No relevant memories found for your query."
    lines = [f"Found {len(snippets)} relevant memories:"]
    for i, s in enumerate(snippets, 1):
        score = f"{s.score:.2f}" if s.score is not None else "N/A"
        lines.append(f"{i}. {s.content} (Score: {score}) [memoryId: {s.id}]")
    return "\n".join(lines)


def _render_all(snippets: list[MemorySnippet]) -> str:
    if not snippets:
        return "No memories found for this user."
    lines = [f"Found {len(snippets)} stored memories:"]
    for i, s in enumerate(snippets, 1):
        created = f" (Created: {s.created_at[:10]})" if s.created_at else ""
        lines.append(f"{i}. {s.content}{created} [memoryId: {s.id}]")
    return "\n".join(lines)


class SearchArgs(ToolArgs):
    query: str = Field(description="What to look for")
    limit: int = Field(5, description="Maximum results (default 5)")
    filters: dict[str, Any] | None = Field(None, description="Optional metadata filters")


class AddArgs(ToolArgs):
    content: str = Field(description="The information to remember")
    metadata: dict[str, Any] | None = Field(None, description="Optional metadata")


class ListArgs(ToolArgs):
    limit: int = Field(10, description="Maximum results (default 10)")


class DeleteArgs(ToolArgs):
    memory_id: str = Field(alias="memoryId", description="The memory id")


class UpdateArgs(ToolArgs):
    memory_id: str = Field(alias="memoryId", description="The memory id")
    new_content: str = Field(alias="newContent", description="The corrected information")


TOOLS = [
    ToolSpec(
        name="search_memories",
        description=(
            "Searches stored memories from past conversations. Use it when you need "
            "to recall something about the user or earlier interactions."
        ),
        args_schema=SearchArgs,
        run=lambda ctx, a: search_memories(ctx, query=a.query, limit=a.limit, filters=a.filters),
        render=_render_search,
    ),
    ToolSpec(
        name="add_memory",
        description="Stores an important fact the user shared so it can be recalled later.",
        args_schema=AddArgs,
        run=lambda ctx, a: add_memory(ctx, content=a.content, metadata=a.metadata),
        render=lambda data: f'Successfully stored the information: "{data["content"]}"',
    ),
    ToolSpec(
        name="get_all_memories",
        description="Lists what is stored about the user.",
        args_schema=ListArgs,
        run=lambda ctx, a: get_all_memories(ctx, limit=a.limit),
        render=_render_all,
    ),
    ToolSpec(
        name="delete_memory",
        description="Deletes one memory by id, e.g. when it is outdated or wrong.",
        args_schema=DeleteArgs,
        run=lambda ctx, a: delete_memory(ctx, memory_id=a.memory_id),
        render=lambda data: "Successfully deleted the memory.",
    ),
    ToolSpec(
        name="update_memory",
        description="Replaces the content of one memory.",
        args_schema=UpdateArgs,
        run=lambda ctx, a: update_memory(ctx, memory_id=a.memory_id, new_content=a.new_content),
        render=lambda data: f'Successfully updated the memory to: "{data["content"]}"',
    ),
]
