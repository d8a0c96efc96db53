"""LinkedIn profile tool."""

from __future__ import annotations

from mnemo.tools.base import NoArgs, ToolContext, ToolResult, ToolSpec, capability


@capability("linkedin", "LINKEDIN")
async def get_linkedin_profile(ctx: ToolContext) -> ToolResult:
    token = await ctx.resolver.resolve(ctx.user_id, "linkedin")
    return ToolResult.ok(await ctx.linkedin.get_profile(token))


TOOLS = [
    ToolSpec(
        name="get_linkedin_profile",
        description="Gets the user's basic LinkedIn profile: name, email and picture.",
        args_schema=NoArgs,
        run=lambda ctx, a: get_linkedin_profile(ctx),
        render=lambda p: (
            f"LinkedIn profile: {p['name'] or 'unknown name'}"
            f"\nEmail: {p['email'] or 'not shared'}"
            + (f"\nPicture: {p['picture']}" if p.get("picture") else "")
        ),
    ),
]
