import pytest

from feishu_channel.adapters.local import SlashCommandAuthorizer
from feishu_channel.config.schema import FeishuGroupConfig
from feishu_channel.core.models import AccessOutcome
from feishu_channel.inbound.classifier import classify_event
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
from tests.conftest import BOT_OPEN_ID, bot_mention, message_event


# ── Identity ────────────────────────────────────────────────────────


@pytest.mark.parametrize("entry", ["ou_abc", "OU_ABC", "feishu:ou_abc", "Lark:OU_abc", " fs:ou_abc "])
def test_allow_entry_matches_case_and_prefix_insensitively(entry: str) -> None:
    assert is_sender_allowed("ou_abc", [entry])


def test_wildcard_allows_anyone() -> None:
    assert is_sender_allowed("ou_anyone", ["ou_other", "*"])


def test_sender_not_in_list() -> None:
    assert not is_sender_allowed("ou_abc", ["ou_def"])
    assert not is_sender_allowed("", ["ou_def"])
    assert not is_sender_allowed("ou_abc", [])


def test_normalize_allow_entry() -> None:
    assert normalize_allow_entry("  FEISHU:OU_X ") == "ou_x"


def test_merge_allow_from_dedupes_in_order() -> None:
    assert merge_allow_from(["ou_a", " ou_b "], ["ou_b", "ou_c", ""]) == ("ou_a", "ou_b", "ou_c")


# ── Direct messages ─────────────────────────────────────────────────


def test_dm_disabled_blocks_everyone() -> None:
    decision = evaluate_dm_access("disabled", sender_allowed=True)

    assert decision.outcome is AccessOutcome.BLOCK_DISABLED
    assert decision.reason == "dm_disabled"


def test_dm_open_allows_unknown_sender() -> None:
    assert evaluate_dm_access("open", sender_allowed=False).allowed


def test_dm_allowlist() -> None:
    assert evaluate_dm_access("allowlist", sender_allowed=True).allowed
    blocked = evaluate_dm_access("allowlist", sender_allowed=False)
    assert blocked.outcome is AccessOutcome.BLOCK_UNAUTHORIZED
    assert blocked.reason == "not_in_allowlist"


def test_dm_pairing_requires_pairing_for_unknown_sender() -> None:
    assert evaluate_dm_access("pairing", sender_allowed=True).allowed
    assert evaluate_dm_access("pairing", sender_allowed=False).reason == "pairing_required"


def test_pairing_decision() -> None:
    assert pairing_decision(created=True).outcome is AccessOutcome.PAIRING_ISSUED
    pending = pairing_decision(created=False)
    assert pending.outcome is AccessOutcome.BLOCK_UNAUTHORIZED
    assert pending.reason == "pairing_pending"


def test_pairing_store_read_only_for_dms() -> None:
    assert not should_read_pairing_store(is_group=True, dm_policy="pairing", needs_authorization=True)
    assert should_read_pairing_store(is_group=False, dm_policy="pairing", needs_authorization=False)
    assert not should_read_pairing_store(is_group=False, dm_policy="open", needs_authorization=False)
    assert should_read_pairing_store(is_group=False, dm_policy="open", needs_authorization=True)


# ── Groups ──────────────────────────────────────────────────────────


def test_group_disabled() -> None:
    decision = evaluate_group_access("disabled", chat_id="oc_1", group_allow_from=["*"], group_config=None)

    assert decision.outcome is AccessOutcome.BLOCK_DISABLED
    assert decision.reason == "group_disabled"


def test_group_open_ignores_overrides() -> None:
    decision = evaluate_group_access(
        "open", chat_id="oc_1", group_allow_from=[], group_config=FeishuGroupConfig(enabled=False)
    )

    assert decision.allowed


def test_group_allowlist_admits_unconfigured_group() -> None:
    decision = evaluate_group_access("allowlist", chat_id="oc_1", group_allow_from=[], group_config=None)

    assert decision.allowed


def test_group_allowlist_blocks_disabled_override_unless_listed() -> None:
    disabled = FeishuGroupConfig(enabled=False)

    blocked = evaluate_group_access("allowlist", chat_id="oc_1", group_allow_from=[], group_config=disabled)
    listed = evaluate_group_access("allowlist", chat_id="oc_1", group_allow_from=["oc_1"], group_config=disabled)

    assert blocked.reason == "group_not_allowed"
    assert listed.allowed


def test_requires_mention_defaults_on() -> None:
    assert requires_mention(None)
    assert requires_mention(FeishuGroupConfig())
    assert not requires_mention(FeishuGroupConfig(require_mention=False))


# ── Mentions ────────────────────────────────────────────────────────


def _group_message(text: str, mentions: list[dict]):
    return classify_event(message_event(text, chat_type="group", chat_id="oc_g", mentions=mentions)).message


def test_structured_mention_of_bot() -> None:
    message = _group_message("@_user_1 hi", [bot_mention()])

    assert is_bot_mentioned(message, BOT_OPEN_ID)


def test_mention_of_someone_else_is_not_bot_mention_without_heuristic() -> None:
    other = bot_mention(name="Alice", open_id="ou_alice")
    message = _group_message("@_user_1 hi", [other])

    assert not is_bot_mentioned(message, BOT_OPEN_ID, heuristic=False)


def test_all_mention_counts() -> None:
    message = _group_message("@_all standup", [{"key": "@_all", "name": "@_all", "id": {}}])

    assert is_bot_mentioned(message, BOT_OPEN_ID, heuristic=False)


def test_heuristic_prefix_used_when_bot_id_unknown() -> None:
    message = _group_message("@Bot what time is it", [bot_mention(key="@_user_1", name="Bot", open_id="ou_x")])

    assert is_bot_mentioned(message, None)
    assert not is_bot_mentioned(message, None, heuristic=False)


def test_no_mentions() -> None:
    assert not is_bot_mentioned(_group_message("just chatting", []), BOT_OPEN_ID)


# ── Control commands ────────────────────────────────────────────────


def test_non_command_needs_no_authorization() -> None:
    result = resolve_command_authorization(
        SlashCommandAuthorizer(),
        text="hello",
        use_access_groups=True,
        effective_allow_from=(),
        sender_allowed=False,
    )

    assert result is None


def test_command_authorized_when_sender_in_configured_list() -> None:
    result = resolve_command_authorization(
        SlashCommandAuthorizer(),
        text="/reset",
        use_access_groups=True,
        effective_allow_from=("ou_user",),
        sender_allowed=True,
    )

    assert result is True


def test_command_denied_with_empty_allow_list() -> None:
    commands = SlashCommandAuthorizer()
    result = resolve_command_authorization(
        commands,
        text="/reset",
        use_access_groups=True,
        effective_allow_from=(),
        sender_allowed=False,
    )

    assert result is False
    assert is_unauthorized_control_command(commands, "/reset", result)


def test_command_allowed_when_access_groups_disabled() -> None:
    result = resolve_command_authorization(
        SlashCommandAuthorizer(),
        text="/reset",
        use_access_groups=False,
        effective_allow_from=(),
        sender_allowed=False,
    )

    assert result is True


def test_unknown_authorization_is_denied_for_commands() -> None:
    commands = SlashCommandAuthorizer()

    assert is_unauthorized_control_command(commands, "/reset", None)
    assert not is_unauthorized_control_command(commands, "/reset", True)
    assert not is_unauthorized_control_command(commands, "hello", None)


class _LazyCommands(SlashCommandAuthorizer):
    def should_compute_authorization(self, text: str) -> bool:
        return False


def test_authorization_computed_for_commands_even_if_not_requested() -> None:
    result = resolve_command_authorization(
        _LazyCommands(),
        text="/reset",
        use_access_groups=True,
        effective_allow_from=("ou_user",),
        sender_allowed=True,
    )

    assert result is True
