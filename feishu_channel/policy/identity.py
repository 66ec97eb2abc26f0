"""Sender id normalization for allow-list matching."""

from __future__ import annotations

import re
from collections.abc import Iterable

WILDCARD = "*"
_CHANNEL_PREFIX_RE = re.compile(r"^(feishu|lark|fs):", re.IGNORECASE)


def normalize_allow_entry(entry: str) -> str:
    """Lowercase one allow-list entry and strip an optional channel prefix."""
    return _CHANNEL_PREFIX_RE.sub("", entry.strip().lower())


def is_sender_allowed(sender_id: str, allow_from: Iterable[str]) -> bool:
    """Whether ``sender_id`` matches an entry (case-insensitive) or the list holds ``*``."""
    entries = list(allow_from)
    if WILDCARD in entries:
        return True
    normalized_sender = sender_id.strip().lower()
    if not normalized_sender:
        return False
    return any(normalize_allow_entry(entry) == normalized_sender for entry in entries)


def merge_allow_from(configured: Iterable[str], stored: Iterable[str]) -> tuple[str, ...]:
    """Configured entries followed by pairing-approved entries, duplicates removed."""
    merged: dict[str, None] = {}
    for entry in (*configured, *stored):
        value = str(entry).strip()
        if value:
            merged.setdefault(value, None)
    return tuple(merged)
