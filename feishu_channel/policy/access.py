"""Access decisions for direct messages, groups and control commands.

All functions here are pure: side effects (pairing upserts, notices) are
performed by the pipeline stages that consume the decisions.
"""

from __future__ import annotations

from feishu_channel.config.schema import FeishuGroupConfig
from feishu_channel.core.models import (
    AccessDecision,
    AccessOutcome,
    CommandAuthorizer,
    DmPolicy,
    GroupPolicy,
)
from feishu_channel.core.ports import CommandPort
from feishu_channel.policy.identity import WILDCARD

ALLOW = AccessDecision(outcome=AccessOutcome.ALLOW, reason="allowed")


def should_read_pairing_store(*, is_group: bool, dm_policy: DmPolicy, needs_authorization: bool) -> bool:
    """The pairing store is consulted only for DMs that need the merged allow list."""
    if is_group:
        return False
    return dm_policy != "open" or needs_authorization


def evaluate_dm_access(dm_policy: DmPolicy, *, sender_allowed: bool) -> AccessDecision:
    """Decide a direct message before any pairing side effects.

    A ``pairing`` sender that is not yet allowed gets ``reason="pairing_required"``;
    the caller upserts the pairing request and refines the outcome.
    """
    if dm_policy == "disabled":
        return AccessDecision(outcome=AccessOutcome.BLOCK_DISABLED, reason="dm_disabled")
    if dm_policy == "open" or sender_allowed:
        return ALLOW
    if dm_policy == "pairing":
        return AccessDecision(outcome=AccessOutcome.BLOCK_UNAUTHORIZED, reason="pairing_required")
    return AccessDecision(outcome=AccessOutcome.BLOCK_UNAUTHORIZED, reason="not_in_allowlist")


def pairing_decision(*, created: bool) -> AccessDecision:
    if created:
        return AccessDecision(outcome=AccessOutcome.PAIRING_ISSUED, reason="pairing_issued")
    return AccessDecision(outcome=AccessOutcome.BLOCK_UNAUTHORIZED, reason="pairing_pending")


def evaluate_group_access(
    group_policy: GroupPolicy,
    *,
    chat_id: str,
    group_allow_from: tuple[str, ...] | list[str],
    group_config: FeishuGroupConfig | None,
) -> AccessDecision:
    """Group admission; in allowlist mode a group passes unless its override sets ``enabled: false``."""
    if group_policy == "disabled":
        return AccessDecision(outcome=AccessOutcome.BLOCK_DISABLED, reason="group_disabled")
    if group_policy == "open":
        return ALLOW

    listed = WILDCARD in group_allow_from or chat_id in group_allow_from
    enabled = group_config is None or group_config.enabled is not False
    if listed or enabled:
        return ALLOW
    return AccessDecision(outcome=AccessOutcome.BLOCK_UNAUTHORIZED, reason="group_not_allowed")


def requires_mention(group_config: FeishuGroupConfig | None) -> bool:
    """Groups require a mention unless their override sets ``requireMention: false``."""
    return group_config is None or group_config.require_mention is not False


def needs_command_authorization(commands: CommandPort, text: str) -> bool:
    """Authorization is computed for control commands even if the collaborator does not ask for it."""
    return commands.should_compute_authorization(text) or commands.is_control_command(text)


def resolve_command_authorization(
    commands: CommandPort,
    *,
    text: str,
    use_access_groups: bool,
    effective_allow_from: tuple[str, ...],
    sender_allowed: bool,
) -> bool | None:
    """``None`` when the text needs no authorization, otherwise the combined verdict."""
    if not needs_command_authorization(commands, text):
        return None
    authorizer = CommandAuthorizer(configured=bool(effective_allow_from), allowed=sender_allowed)
    return commands.resolve_authorized(use_access_groups=use_access_groups, authorizers=[authorizer])


def is_unauthorized_control_command(commands: CommandPort, text: str, authorized: bool | None) -> bool:
    """Default-deny: anything but an explicit ``True`` blocks a control command."""
    return commands.is_control_command(text) and authorized is not True
