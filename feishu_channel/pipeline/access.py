"""Access control middleware: command authorization, DM policy, group policy.

Decisions come from the pure functions in ``feishu_channel.policy``; the
stages here add the side effects (store reads, pairing notices, metrics).
"""

from __future__ import annotations

import json

from loguru import logger

from feishu_channel.core.models import AccessOutcome
from feishu_channel.core.pipeline import NextFn, PipelineContext
from feishu_channel.core.runtime import CHANNEL_ID
from feishu_channel.policy.access import (
    evaluate_dm_access,
    evaluate_group_access,
    is_unauthorized_control_command,
    needs_command_authorization,
    pairing_decision,
    requires_mention,
    resolve_command_authorization,
    should_read_pairing_store,
)
from feishu_channel.policy.identity import is_sender_allowed, merge_allow_from
from feishu_channel.policy.mentions import is_bot_mentioned


class CommandAuthorizationMiddleware:
    """Merge the allow lists and compute control-command authorization.

    The pairing store is read only for direct messages whose policy is not
    ``open`` or whose text needs command authorization.
    """

    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None:
        runtime = ctx.runtime
        message = ctx.require_message()
        account = runtime.account
        text = message.raw_body
        needs_auth = needs_command_authorization(runtime.commands, text)

        stored: list[str] = []
        if should_read_pairing_store(
            is_group=message.is_group,
            dm_policy=account.dm_policy,
            needs_authorization=needs_auth,
        ):
            try:
                stored = await runtime.pairing.read_allow_from(CHANNEL_ID)
            except Exception as e:
                logger.warning(f"[{account.account_id}] feishu pairing store read failed: {e}")

        ctx.effective_allow_from = merge_allow_from(account.allow_from, stored)
        ctx.sender_allowed = is_sender_allowed(message.sender.id, ctx.effective_allow_from)
        ctx.command_authorized = resolve_command_authorization(
            runtime.commands,
            text=text,
            use_access_groups=runtime.use_access_groups,
            effective_allow_from=ctx.effective_allow_from,
            sender_allowed=ctx.sender_allowed,
        )
        await next(ctx)


class DirectMessagePolicyMiddleware:
    """Apply ``dmPolicy``; unknown senders under ``pairing`` get one pairing notice."""

    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None:
        message = ctx.require_message()
        if message.is_group:
            await next(ctx)
            return

        runtime = ctx.runtime
        account = runtime.account
        sender = message.sender
        decision = evaluate_dm_access(account.dm_policy, sender_allowed=ctx.sender_allowed)

        if decision.reason == "pairing_required":
            result = await runtime.pairing.upsert_request(CHANNEL_ID, sender.id, {"name": sender.label})
            decision = pairing_decision(created=result.created)
            if result.created:
                logger.info(f"[{account.account_id}] feishu pairing request sender={sender.id}")
                await self._send_pairing_notice(ctx, result.code)
                ctx.metric("feishu_pairing_issued")

        ctx.decision = decision
        if not decision.allowed:
            if decision.outcome is not AccessOutcome.PAIRING_ISSUED:
                logger.debug(
                    f"[{account.account_id}] blocked feishu DM from {sender.id} "
                    f"(dmPolicy={account.dm_policy}, reason={decision.reason})"
                )
            ctx.metric("feishu_drop_policy", labels=(("reason", decision.reason),))
            ctx.halt()
            return

        await next(ctx)

    @staticmethod
    async def _send_pairing_notice(ctx: PipelineContext, code: str) -> None:
        runtime = ctx.runtime
        sender = ctx.require_message().sender
        reply = runtime.pairing.build_reply(CHANNEL_ID, f"Your Feishu user id: {sender.id}", code)
        try:
            await runtime.client.send_message(sender.id, "text", json.dumps({"text": reply}), sender.id_type)
        except Exception as e:
            logger.error(f"[{runtime.account_id}] feishu pairing reply failed for {sender.id}: {e}")
            return
        runtime.mark_outbound()


class GroupPolicyMiddleware:
    """Apply ``groupPolicy`` and the mention gate to group messages."""

    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None:
        message = ctx.require_message()
        if not message.is_group:
            await next(ctx)
            return

        runtime = ctx.runtime
        account = runtime.account
        group_config = account.group_config(message.chat_id)
        decision = evaluate_group_access(
            account.group_policy,
            chat_id=message.chat_id,
            group_allow_from=account.group_allow_from,
            group_config=group_config,
        )
        ctx.decision = decision
        if not decision.allowed:
            logger.debug(f"[{account.account_id}] blocked feishu group {message.chat_id} ({decision.reason})")
            ctx.metric("feishu_drop_policy", labels=(("reason", decision.reason),))
            ctx.halt()
            return

        if requires_mention(group_config) and not is_bot_mentioned(
            message,
            runtime.bot_info.open_id,
            heuristic=account.mention_heuristic,
        ):
            logger.debug(f"[{account.account_id}] ignored feishu group message (no mention)")
            ctx.metric("feishu_drop_no_mention")
            ctx.halt()
            return

        await next(ctx)


class ControlCommandGateMiddleware:
    """Drop group control commands from senders not explicitly authorized."""

    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None:
        message = ctx.require_message()
        runtime = ctx.runtime
        if message.is_group and is_unauthorized_control_command(
            runtime.commands, message.raw_body, ctx.command_authorized
        ):
            logger.debug(
                f"[{runtime.account_id}] feishu: drop control command from unauthorized sender {message.sender.id}"
            )
            ctx.metric("feishu_drop_command")
            ctx.halt()
            return

        await next(ctx)
