import json

import pytest

from feishu_channel.delivery.cards import STREAMING_CURSOR, render_card, render_markdown
from feishu_channel.delivery.targets import infer_receive_id_type, normalize_target, parse_target


def test_card_structure() -> None:
    card = json.loads(render_card("**hello**"))

    assert card["config"] == {"wide_screen_mode": True, "enable_forward": True}
    assert card["elements"] == [{"tag": "markdown", "content": "**hello**"}]


def test_card_with_mention_prefix() -> None:
    card = json.loads(render_card("done", mention_id="ou_1"))

    assert card["elements"][0]["content"] == "<at id=ou_1></at> done"


def test_blank_mention_is_ignored() -> None:
    assert render_markdown("done", mention_id="  ") == "done"


def test_streaming_cursor_is_appended_after_text() -> None:
    content = render_markdown("partial", mention_id="ou_1", streaming=True)

    assert content == "<at id=ou_1></at> partial ▌"
    assert content.endswith(STREAMING_CURSOR)


def test_card_keeps_non_ascii_text() -> None:
    raw = render_card("你好")

    assert "你好" in raw


@pytest.mark.parametrize(
    ("target", "expected"),
    [
        ("oc_123", "chat_id"),
        ("ou_456", "open_id"),
        ("on_789", "union_id"),
        ("a1b2c3", "user_id"),
        ("someone@example.com", "email"),
        ("odd-id", "open_id"),
    ],
)
def test_infer_receive_id_type(target: str, expected: str) -> None:
    assert infer_receive_id_type(target) == expected


def test_prefix_is_stripped() -> None:
    assert normalize_target("  feishu:oc_1 ") == "oc_1"
    assert parse_target("LARK:ou_2") == ("ou_2", "open_id")
