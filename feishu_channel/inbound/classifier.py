"""Turn raw ``im.message.receive_v1`` payloads into normalized messages.

Content decoding never raises: a malformed ``content`` string yields an
empty field and a ``parse_error`` note on the message instead.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from feishu_channel.core.models import (
    InboundMessage,
    Mention,
    MessageKind,
    ReceiveIdType,
    ReplyTarget,
    SenderIdentity,
)

IMAGE_PLACEHOLDER = "[Image]"
FILE_PLACEHOLDER = "[File]"

_SENDER_ID_ORDER: tuple[ReceiveIdType, ...] = ("open_id", "user_id", "union_id")
_POST_LOCALES = ("zh_cn", "en_us", "ja_jp")
_KNOWN_KINDS: frozenset[str] = frozenset({"text", "image", "file", "post"})


@dataclass(frozen=True, slots=True, kw_only=True)
class ParsedContent:
    """Fields extracted from one message ``content`` string."""

    text: str = ""
    image_keys: tuple[str, ...] = ()
    file_key: str | None = None
    file_name: str | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class ClassifiedEvent:
    """Classifier output: a message plus its reply target, or a drop reason."""

    message: InboundMessage | None = None
    reply_target: ReplyTarget | None = None
    drop_reason: str | None = None

    @property
    def dropped(self) -> bool:
        return self.message is None


@dataclass(slots=True)
class _PostWalk:
    parts: list[str] = field(default_factory=list)
    image_keys: list[str] = field(default_factory=list)


def decode_content(raw: Any) -> tuple[dict[str, Any] | None, str | None]:
    """Decode a JSON-encoded content field; returns ``(content, error)``."""
    if isinstance(raw, dict):
        return raw, None
    if not isinstance(raw, str) or not raw.strip():
        return None, "content missing"
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        return None, f"invalid content JSON: {e.msg}"
    if not isinstance(value, dict):
        return None, "content is not an object"
    return value, None


def _unwrap_post(content: dict[str, Any]) -> dict[str, Any]:
    if "content" in content or "title" in content:
        return content
    for locale in _POST_LOCALES:
        localized = content.get(locale)
        if isinstance(localized, dict):
            return localized
    for value in content.values():
        if isinstance(value, dict) and "content" in value:
            return value
    return content


def _walk_post(items: list[Any], acc: _PostWalk) -> None:
    for item in items:
        if isinstance(item, list):
            _walk_post(item, acc)
            continue
        if not isinstance(item, dict):
            continue
        tag = item.get("tag")
        if tag == "text" and isinstance(item.get("text"), str):
            acc.parts.append(item["text"])
        elif tag == "at" and isinstance(item.get("user_name"), str):
            acc.parts.append(f"@{item['user_name']}")
        elif tag == "img" and item.get("image_key"):
            acc.image_keys.append(str(item["image_key"]))
        nested = item.get("content")
        if isinstance(nested, list):
            _walk_post(nested, acc)


def parse_post(content: dict[str, Any]) -> ParsedContent:
    """Flatten a rich ``post`` body into text and image keys."""
    post = _unwrap_post(content)
    acc = _PostWalk()
    paragraphs = post.get("content")
    if isinstance(paragraphs, list):
        _walk_post(paragraphs, acc)
    text = "".join(acc.parts)
    title = post.get("title")
    if not text and isinstance(title, str):
        text = title
    return ParsedContent(text=text, image_keys=tuple(acc.image_keys))


def parse_content(message_type: str, raw: Any) -> ParsedContent:
    """Extract text and media references for one message type."""
    content, error = decode_content(raw)
    if content is None:
        return ParsedContent(error=error)

    if message_type == "text":
        text = content.get("text")
        return ParsedContent(text=text if isinstance(text, str) else "")
    if message_type == "image":
        image_key = content.get("image_key")
        return ParsedContent(
            text=IMAGE_PLACEHOLDER,
            image_keys=(str(image_key),) if image_key else (),
        )
    if message_type == "file":
        file_name = content.get("file_name") or None
        return ParsedContent(
            text=f"[File: {file_name}]" if file_name else FILE_PLACEHOLDER,
            file_key=content.get("file_key") or None,
            file_name=file_name,
        )
    if message_type == "post":
        return parse_post(content)

    text = content.get("text")
    return ParsedContent(text=text if isinstance(text, str) else "")


def resolve_sender(sender: Any) -> SenderIdentity | None:
    """Pick the first present of open_id, user_id, union_id."""
    if not isinstance(sender, dict):
        return None
    ids = sender.get("sender_id")
    if not isinstance(ids, dict):
        return None
    sender_type = sender.get("sender_type") or "user"
    for id_type in _SENDER_ID_ORDER:
        value = ids.get(id_type)
        if value:
            return SenderIdentity(id=str(value), id_type=id_type, sender_type=str(sender_type))
    return None


def parse_mentions(raw: Any) -> tuple[Mention, ...]:
    if not isinstance(raw, list):
        return ()
    mentions: list[Mention] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        ids = item.get("id") if isinstance(item.get("id"), dict) else {}
        mentions.append(
            Mention(
                key=str(item.get("key") or ""),
                name=str(item.get("name") or ""),
                open_id=ids.get("open_id") or None,
                user_id=ids.get("user_id") or None,
                union_id=ids.get("union_id") or None,
            )
        )
    return tuple(mentions)


def _parse_create_time(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def resolve_reply_target(message: InboundMessage) -> ReplyTarget:
    if message.is_group:
        return ReplyTarget(id=message.chat_id, id_type="chat_id")
    return ReplyTarget(id=message.sender.id, id_type=message.sender.id_type)


def classify_event(event: dict[str, Any]) -> ClassifiedEvent:
    """Classify one raw message event.

    Returns a dropped result (``message is None``) for events with no
    usable content or no resolvable sender identity.
    """
    message = event.get("message")
    if not isinstance(message, dict):
        logger.debug("[feishu] dropping event without message body")
        return ClassifiedEvent(drop_reason="malformed")

    message_type = str(message.get("message_type") or "")
    parsed = parse_content(message_type, message.get("content"))
    if parsed.error:
        logger.debug(f"[feishu] message {message.get('message_id')} content unreadable: {parsed.error}")

    if not parsed.text.strip() and not parsed.image_keys and not parsed.file_key:
        logger.debug(f"[feishu] dropping empty message {message.get('message_id')}")
        return ClassifiedEvent(drop_reason="empty")

    sender = resolve_sender(event.get("sender"))
    if sender is None:
        logger.debug("[feishu] unable to resolve sender id for feishu message")
        return ClassifiedEvent(drop_reason="no_sender")

    kind: MessageKind = message_type if message_type in _KNOWN_KINDS else "other"  # type: ignore[assignment]
    inbound = InboundMessage(
        message_id=str(message.get("message_id") or ""),
        chat_id=str(message.get("chat_id") or ""),
        chat_kind="group" if message.get("chat_type") == "group" else "direct",
        kind=kind,
        text=parsed.text,
        sender=sender,
        image_keys=parsed.image_keys,
        file_key=parsed.file_key,
        file_name=parsed.file_name,
        create_time=_parse_create_time(message.get("create_time")),
        mentions=parse_mentions(message.get("mentions")),
        parse_error=parsed.error,
    )
    return ClassifiedEvent(message=inbound, reply_target=resolve_reply_target(inbound))
