"""Envelope construction and session recording."""

from __future__ import annotations

from loguru import logger

from feishu_channel.core.models import InboundContext
from feishu_channel.core.pipeline import NextFn, PipelineContext
from feishu_channel.core.runtime import CHANNEL_ID


class EnvelopeMiddleware:
    """Build the finalized ``InboundContext`` handed to the agent."""

    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None:
        message = ctx.require_message()
        route = ctx.route
        if route is None:
            raise RuntimeError("envelope stage ran before route resolution")
        runtime = ctx.runtime
        sender = message.sender
        sender_name = sender.label
        from_label = f"group:{message.chat_id}" if message.is_group else sender_name or f"user:{sender.id}"

        previous_timestamp = runtime.sessions.read_updated_at(route.session_key, agent_id=route.agent_id)
        raw_body = message.raw_body
        body = runtime.envelope.format_envelope(
            channel="Feishu",
            sender_label=from_label,
            timestamp=message.create_time,
            previous_timestamp=previous_timestamp,
            body=raw_body,
        )

        ctx.inbound = InboundContext(
            body=body,
            raw_body=raw_body,
            command_body=raw_body,
            from_=f"{CHANNEL_ID}:group:{message.chat_id}" if message.is_group else f"{CHANNEL_ID}:{sender.id}",
            to=f"{CHANNEL_ID}:{message.chat_id}",
            session_key=route.session_key,
            account_id=route.account_id,
            agent_id=route.agent_id,
            chat_type=message.chat_kind,
            conversation_label=from_label,
            sender_name=sender_name,
            sender_id=sender.id,
            command_authorized=ctx.command_authorized,
            message_sid=message.message_id,
            timestamp=message.create_time,
            attachments=message.media,
            image_keys=message.image_keys,
            file_key=message.file_key,
        )
        await next(ctx)


class SessionRecordMiddleware:
    """Record the inbound message against its session; failures never stop delivery."""

    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None:
        inbound = ctx.inbound
        if inbound is not None:
            try:
                await ctx.runtime.sessions.record_inbound(inbound.session_key, inbound)
            except Exception as e:
                logger.error(f"[{ctx.runtime.account_id}] feishu: failed updating session meta: {e}")
                ctx.metric("feishu_session_record_failed")
        await next(ctx)
