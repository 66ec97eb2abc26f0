"""Target string parsing for the send API."""

from __future__ import annotations

import re
from dataclasses import dataclass

from feishu_channel.core.models import ReceiveIdType

_CHANNEL_PREFIX_RE = re.compile(r"^(feishu|lark|fs):", re.IGNORECASE)
_ALNUM_RE = re.compile(r"^[A-Za-z0-9]+$")


def normalize_target(target: str) -> str:
    """Strip whitespace and an optional ``feishu:``/``lark:``/``fs:`` prefix."""
    return _CHANNEL_PREFIX_RE.sub("", target.strip())


def infer_receive_id_type(target: str) -> ReceiveIdType:
    """Infer the addressing type from the id's shape."""
    value = normalize_target(target)
    if value.startswith("oc_"):
        return "chat_id"
    if value.startswith("ou_"):
        return "open_id"
    if value.startswith("on_"):
        return "union_id"
    if _ALNUM_RE.match(value):
        return "user_id"
    if "@" in value:
        return "email"
    return "open_id"


def parse_target(target: str) -> tuple[str, ReceiveIdType]:
    value = normalize_target(target)
    return value, infer_receive_id_type(value)


@dataclass(frozen=True, slots=True, kw_only=True)
class DeliveryTarget:
    """Addressing for one reply: recipient, quoted message and mention."""

    receive_id: str
    receive_id_type: ReceiveIdType
    reply_to_message_id: str | None = None
    mention_id: str | None = None
