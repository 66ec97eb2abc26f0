"""Route resolution middleware."""

from __future__ import annotations

from feishu_channel.core.pipeline import NextFn, PipelineContext
from feishu_channel.core.runtime import CHANNEL_ID


class RouteMiddleware:
    """Resolve the agent route for the conversation (group chat or DM chat)."""

    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None:
        message = ctx.require_message()
        runtime = ctx.runtime
        ctx.route = runtime.routing.resolve_route(
            channel=CHANNEL_ID,
            account_id=runtime.account_id,
            peer_kind=message.chat_kind,
            peer_id=message.chat_id,
        )
        await next(ctx)
