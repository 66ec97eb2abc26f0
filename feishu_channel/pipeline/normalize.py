"""Classification middleware: parse the raw event, drop empty or unaddressable ones."""

from __future__ import annotations

from loguru import logger

from feishu_channel.core.pipeline import NextFn, PipelineContext
from feishu_channel.inbound.classifier import classify_event


class ClassificationMiddleware:
    """Populate ``ctx.message`` and ``ctx.reply_target`` from the raw event."""

    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None:
        classified = classify_event(ctx.event)
        if classified.message is None or classified.reply_target is None:
            ctx.metric("feishu_drop_unusable", labels=(("reason", classified.drop_reason or "unknown"),))
            ctx.halt()
            return

        message = classified.message
        ctx.message = message
        ctx.reply_target = classified.reply_target
        logger.info(
            f"[feishu] inbound message id={message.message_id} chat={message.chat_kind} sender={message.sender.id}"
        )
        await next(ctx)
