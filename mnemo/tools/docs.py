"""Google Docs tools."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from mnemo.tools.base import ToolArgs, ToolContext, ToolResult, ToolSpec, capability

# Long documents are cut so one tool result cannot flood the context window
MAX_DOCUMENT_CHARS = 20_000


@capability("google", "DOCS")
async def list_documents(ctx: ToolContext, max_results: int = 10) -> ToolResult:
    token = await ctx.resolver.resolve(ctx.user_id, "google")
    return ToolResult.ok(await ctx.google.list_documents(token, max_results=max_results))


@capability(
    "google", "DOCS",
    not_found=("DOC_NOT_FOUND", "Document not found. List the documents to get a valid document id."),
)
async def get_document_content(ctx: ToolContext, document_id: str) -> ToolResult:
    token = await ctx.resolver.resolve(ctx.user_id, "google")
    return ToolResult.ok(await ctx.google.get_document(token, document_id))


def _render_documents(files: list[dict[str, Any]]) -> str:
    if not files:
        return "No Google Docs found in your Drive."
    lines = [f"Recent documents ({len(files)}):"]
    for i, doc in enumerate(files, 1):
        lines.append(
            f"{i}. {doc.get('name', '(untitled)')} (modified {doc.get('modifiedTime', 'unknown')})"
            f" [documentId: {doc.get('id')}]"
        )
    return "\n".join(lines)


def _render_document(doc: dict[str, Any]) -> str:
    content = doc["content"].strip()
    if len(content) > MAX_DOCUMENT_CHARS:
        content = content[:MAX_DOCUMENT_CHARS] + "\n[... document truncated ...]"
    return f"Document: {doc['title']}\n\n{content or '(the document is empty)'}"


class ListDocumentsArgs(ToolArgs):
    max_results: int = Field(10, alias="maxResults", description="Maximum number of documents (default 10)")


class GetDocumentArgs(ToolArgs):
    document_id: str = Field(alias="documentId", description="The document id")


TOOLS = [
    ToolSpec(
        name="list_documents",
        description="Lists the user's most recently modified Google Docs.",
        args_schema=ListDocumentsArgs,
        run=lambda ctx, a: list_documents(ctx, max_results=a.max_results),
        render=_render_documents,
    ),
    ToolSpec(
        name="get_document_content",
        description="Reads the text of a Google Doc by id. Call list_documents first if the id is unknown.",
        args_schema=GetDocumentArgs,
        run=lambda ctx, a: get_document_content(ctx, document_id=a.document_id),
        render=_render_document,
    ),
]
