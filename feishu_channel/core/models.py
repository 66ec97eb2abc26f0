"""Domain models shared by the classifier, pipeline and delivery engine."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

type ReceiveIdType = Literal["open_id", "user_id", "union_id", "chat_id", "email"]
type ChatKind = Literal["direct", "group"]
type MessageKind = Literal["text", "image", "file", "post", "other"]
type DmPolicy = Literal["pairing", "allowlist", "open", "disabled"]
type GroupPolicy = Literal["allowlist", "open", "disabled"]
type TableMode = Literal["off", "code", "bullets"]
type ChunkMode = Literal["length", "newline"]
type MediaType = Literal["image", "file"]


@dataclass(frozen=True, slots=True, kw_only=True)
class SenderIdentity:
    """Resolved sender id (open_id > user_id > union_id)."""

    id: str
    id_type: ReceiveIdType
    sender_type: str = "user"

    @property
    def label(self) -> str:
        return "User" if self.sender_type == "user" else self.sender_type


@dataclass(frozen=True, slots=True, kw_only=True)
class ReplyTarget:
    """Where replies for one inbound message are addressed."""

    id: str
    id_type: ReceiveIdType


@dataclass(frozen=True, slots=True, kw_only=True)
class Mention:
    """One structured mention from an inbound message."""

    key: str = ""
    name: str = ""
    open_id: str | None = None
    user_id: str | None = None
    union_id: str | None = None

    @property
    def is_all(self) -> bool:
        return self.name == "@_all" or self.key == "@_all"


@dataclass(frozen=True, slots=True, kw_only=True)
class MediaRef:
    """Reference to platform-hosted media carried by a message."""

    type: MediaType
    key: str


@dataclass(frozen=True, slots=True, kw_only=True)
class InboundMessage:
    """Normalized inbound message produced by the event classifier."""

    message_id: str
    chat_id: str
    chat_kind: ChatKind
    kind: MessageKind
    text: str
    sender: SenderIdentity
    image_keys: tuple[str, ...] = ()
    file_key: str | None = None
    file_name: str | None = None
    create_time: int | None = None
    mentions: tuple[Mention, ...] = ()
    parse_error: str | None = None

    @property
    def is_group(self) -> bool:
        return self.chat_kind == "group"

    @property
    def raw_body(self) -> str:
        return self.text.strip()

    @property
    def media(self) -> tuple[MediaRef, ...]:
        refs = [MediaRef(type="image", key=key) for key in self.image_keys]
        if self.file_key:
            refs.append(MediaRef(type="file", key=self.file_key))
        return tuple(refs)

    def is_empty(self) -> bool:
        return not self.raw_body and not self.image_keys and not self.file_key


class AccessOutcome(Enum):
    """Result of evaluating access policy for one message."""

    ALLOW = "allow"
    BLOCK_DISABLED = "block_disabled"
    BLOCK_UNAUTHORIZED = "block_unauthorized"
    PAIRING_ISSUED = "pairing_issued"


@dataclass(frozen=True, slots=True, kw_only=True)
class AccessDecision:
    """Access decision plus a short machine-readable reason."""

    outcome: AccessOutcome
    reason: str

    @property
    def allowed(self) -> bool:
        return self.outcome is AccessOutcome.ALLOW


@dataclass(frozen=True, slots=True, kw_only=True)
class CommandAuthorizer:
    """One source of command authorization (e.g. the DM allow list)."""

    configured: bool
    allowed: bool


@dataclass(frozen=True, slots=True, kw_only=True)
class PairingResult:
    """Outcome of a pairing-store upsert."""

    code: str
    created: bool


@dataclass(frozen=True, slots=True, kw_only=True)
class AgentRoute:
    """Agent/session resolved for one conversation."""

    agent_id: str
    session_key: str
    account_id: str


@dataclass(frozen=True, slots=True, kw_only=True)
class BotInfo:
    """Subset of ``GET /bot/v3/info`` used for mention detection."""

    open_id: str | None = None
    app_name: str | None = None
    avatar_url: str | None = None
    activate_status: int | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> BotInfo:
        bot = payload.get("bot")
        if not isinstance(bot, dict):
            data = payload.get("data")
            bot = data.get("bot") if isinstance(data, dict) else None
        if not isinstance(bot, dict):
            bot = {}
        return cls(
            open_id=bot.get("open_id") or None,
            app_name=bot.get("app_name") or None,
            avatar_url=bot.get("avatar_url") or None,
            activate_status=bot.get("activate_status"),
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class SentMessage:
    """Identifiers returned by send/reply calls."""

    message_id: str | None
    chat_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, response: dict[str, Any]) -> SentMessage:
        data = response.get("data")
        if not isinstance(data, dict):
            data = {}
        return cls(
            message_id=data.get("message_id") or None,
            chat_id=data.get("chat_id") or None,
            raw=data,
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class DownloadedMedia:
    """Binary payload fetched from the media endpoints."""

    data: bytes
    content_type: str | None = None
    file_name: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class InboundContext:
    """Finalized inbound context handed to the session store and dispatcher."""

    body: str
    raw_body: str
    command_body: str
    from_: str
    to: str
    session_key: str
    account_id: str
    agent_id: str
    chat_type: ChatKind
    conversation_label: str
    sender_name: str
    sender_id: str
    command_authorized: bool | None
    message_sid: str
    timestamp: int | None = None
    attachments: tuple[MediaRef, ...] = ()
    image_keys: tuple[str, ...] = ()
    file_key: str | None = None
    provider: str = "feishu"


@dataclass(slots=True, kw_only=True)
class ReplyPayload:
    """One delivery from the reply dispatcher: a text block or a live stream."""

    text: str | None = None
    stream: AsyncIterator[str] | None = None
    media_paths: tuple[str, ...] = ()

    @property
    def is_stream(self) -> bool:
        return self.stream is not None


@dataclass(frozen=True, slots=True, kw_only=True)
class DispatchInfo:
    """Metadata passed with dispatcher errors."""

    kind: str = "final"
