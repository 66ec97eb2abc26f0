"""Access policy: DM pairing/allowlist, group admission, mention gate."""

from feishu_channel.policy.access import (
    evaluate_dm_access,
    evaluate_group_access,
    is_unauthorized_control_command,
    pairing_decision,
    requires_mention,
    resolve_command_authorization,
    should_read_pairing_store,
)
from feishu_channel.policy.identity import is_sender_allowed, merge_allow_from, normalize_allow_entry
from feishu_channel.policy.mentions import is_bot_mentioned

__all__ = [
    "evaluate_dm_access",
    "evaluate_group_access",
    "is_bot_mentioned",
    "is_sender_allowed",
    "is_unauthorized_control_command",
    "merge_allow_from",
    "normalize_allow_entry",
    "pairing_decision",
    "requires_mention",
    "resolve_command_authorization",
    "should_read_pairing_store",
]
