"""Bot mention detection for group messages."""

from __future__ import annotations

from feishu_channel.core.models import InboundMessage


def has_all_mention(message: InboundMessage) -> bool:
    return any(mention.is_all for mention in message.mentions)


def has_structured_mention(message: InboundMessage, bot_open_id: str | None) -> bool:
    if not bot_open_id:
        return False
    return any(mention.open_id == bot_open_id for mention in message.mentions)


def has_heuristic_prefix_mention(message: InboundMessage) -> bool:
    """Best-effort: the text starts with a mention's ``@name`` or placeholder key.

    Some message shapes carry no reliable structured self-mention. This can
    misfire when a message starts by addressing another user.
    """
    text = message.text
    for mention in message.mentions:
        if not mention.key or not mention.name:
            continue
        if text.startswith(f"@{mention.name}") or text.startswith(mention.key):
            return True
    return False


def is_bot_mentioned(message: InboundMessage, bot_open_id: str | None, *, heuristic: bool = True) -> bool:
    """``@_all`` first, then the bot's open id, then the prefix heuristic."""
    if has_all_mention(message):
        return True
    if has_structured_mention(message, bot_open_id):
        return True
    return heuristic and has_heuristic_prefix_mention(message)
