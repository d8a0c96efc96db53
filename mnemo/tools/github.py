"""GitHub pull request tools."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from mnemo.tools.base import NoArgs, ToolArgs, ToolContext, ToolResult, ToolSpec, capability


@capability("github", "GITHUB")
async def list_github_pull_requests(ctx: ToolContext) -> ToolResult:
    token = await ctx.resolver.resolve(ctx.user_id, "github")
    return ToolResult.ok(await ctx.github.list_open_pull_requests(token))


@capability("github", "GITHUB")
async def get_github_pull_request_details(
    ctx: ToolContext, owner: str, repo: str, number: int,
) -> ToolResult:
    token = await ctx.resolver.resolve(ctx.user_id, "github")
    return ToolResult.ok(await ctx.github.get_pull_request(token, owner, repo, number))


def _render_pulls(pulls: list[dict[str, Any]]) -> str:
    if not pulls:
        return "You don't have any open pull requests."
    lines = [f"Open pull requests ({len(pulls)}):"]
    for pr in pulls:
        lines.append(f"- {pr['owner']}/{pr['repo']}#{pr['number']}: {pr['title']} ({pr['url']})")
    return "\n".join(lines)


def _render_pull(pr: dict[str, Any]) -> str:
    return "\n".join([
        f"#{pr['number']}: {pr['title']} [{pr['state']}] by {pr['author']}",
        f"{pr['head']} -> {pr['base']}, +{pr['additions']}/-{pr['deletions']} in {pr['changedFiles']} files, "
        f"{pr['comments']} comments",
        f"URL: {pr['url']}",
        "",
        pr["body"] or "(no description)",
    ])


class PullRequestArgs(ToolArgs):
    owner: str = Field(description="Repository owner")
    repo: str = Field(description="Repository name")
    number: int = Field(alias="pullRequestNumber", description="Pull request number")


TOOLS = [
    ToolSpec(
        name="list_github_pull_requests",
        description="Lists the open pull requests the user authored on GitHub.",
        args_schema=NoArgs,
        run=lambda ctx, a: list_github_pull_requests(ctx),
        render=_render_pulls,
    ),
    ToolSpec(
        name="get_github_pull_request_details",
        description="Gets details of one GitHub pull request.",
        args_schema=PullRequestArgs,
        run=lambda ctx, a: get_github_pull_request_details(
            ctx, owner=a.owner, repo=a.repo, number=a.number,
        ),
        render=_render_pull,
    ),
]
