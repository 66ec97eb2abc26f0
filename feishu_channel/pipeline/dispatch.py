"""Dispatch middleware: hand the message to the reply dispatcher and deliver replies."""

from __future__ import annotations

from loguru import logger

from feishu_channel.core.models import DispatchInfo, ReplyPayload
from feishu_channel.core.pipeline import NextFn, PipelineContext
from feishu_channel.delivery.engine import ReplyDeliveryEngine
from feishu_channel.delivery.targets import DeliveryTarget


class DispatchMiddleware:
    """Terminal stage: run the reply dispatcher with a delivery callback."""

    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None:
        message = ctx.require_message()
        inbound = ctx.inbound
        reply_target = ctx.reply_target
        if inbound is None or reply_target is None:
            raise RuntimeError("dispatch stage ran before the envelope was built")

        runtime = ctx.runtime
        account = runtime.account
        engine = ReplyDeliveryEngine(
            messaging=runtime.client,
            text=runtime.text,
            account_id=account.account_id,
            table_mode=account.table_mode,
            chunk_mode=account.chunk_mode,
            media_max_bytes=account.media_max_bytes,
            on_outbound=runtime.mark_outbound,
        )
        target = DeliveryTarget(
            receive_id=reply_target.id,
            receive_id_type=reply_target.id_type,
            reply_to_message_id=message.message_id or None,
            mention_id=message.sender.id,
        )

        async def deliver(payload: ReplyPayload) -> None:
            await engine.deliver(payload, target)

        def on_error(err: BaseException, info: DispatchInfo) -> None:
            logger.error(f"[{account.account_id}] Feishu {info.kind} reply failed: {err}")

        ctx.metric("feishu_dispatched", labels=(("chat_type", message.chat_kind),))
        await runtime.dispatcher.dispatch(inbound, deliver=deliver, on_error=on_error)
        await next(ctx)
