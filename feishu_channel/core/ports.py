"""Port interfaces for the collaborators the channel consumes."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol, runtime_checkable

from feishu_channel.core.models import (
    AgentRoute,
    BotInfo,
    ChatKind,
    ChunkMode,
    CommandAuthorizer,
    DispatchInfo,
    InboundContext,
    PairingResult,
    ReceiveIdType,
    ReplyPayload,
    SentMessage,
    TableMode,
)

type DeliverFn = Callable[[ReplyPayload], Awaitable[None]]
type ErrorFn = Callable[[BaseException, DispatchInfo], None]


class MessagingPort(Protocol):
    """Outbound message operations used by the delivery engine."""

    async def send_message(
        self,
        receive_id: str,
        msg_type: str,
        content: str,
        receive_id_type: ReceiveIdType = "open_id",
    ) -> SentMessage:
        """Send a new message to a user or chat."""

    async def reply_message(self, message_id: str, msg_type: str, content: str) -> SentMessage:
        """Reply to an existing message (quoted)."""

    async def update_message_card(self, message_id: str, content: str) -> None:
        """Patch an interactive card previously sent by the bot."""

    async def upload_image(self, data: bytes, image_type: Any = "message", filename: str = "image.png") -> str:
        """Upload image bytes, returning the image key."""

    async def upload_file(self, data: bytes, file_name: str, file_type: Any = "stream") -> str:
        """Upload file bytes, returning the file key."""

    async def get_bot_info(self) -> BotInfo:
        """Identity of the bot itself (open id used for mention detection)."""


class PairingStorePort(Protocol):
    """Pairing request store (must guarantee at-most-one create per key)."""

    async def upsert_request(self, channel: str, sender_id: str, meta: dict[str, str] | None = None) -> PairingResult:
        """Create or refresh a pending pairing request."""

    async def read_allow_from(self, channel: str) -> list[str]:
        """Return sender ids approved through pairing."""

    def build_reply(self, channel: str, id_line: str, code: str) -> str:
        """Render the one-time pairing notice sent to the sender."""


class CommandPort(Protocol):
    """Control-command classification and authorization."""

    def should_compute_authorization(self, text: str) -> bool:
        """Whether command authorization must be computed for this text."""

    def is_control_command(self, text: str) -> bool:
        """Whether the text is a control command."""

    def resolve_authorized(self, *, use_access_groups: bool, authorizers: Sequence[CommandAuthorizer]) -> bool:
        """Combine authorizer results into one verdict."""


class RoutingPort(Protocol):
    """Agent route resolution."""

    def resolve_route(self, *, channel: str, account_id: str, peer_kind: ChatKind, peer_id: str) -> AgentRoute:
        """Resolve which agent/session handles a conversation."""


class SessionStorePort(Protocol):
    """Session bookkeeping."""

    def read_updated_at(self, session_key: str, *, agent_id: str) -> int | None:
        """Last update timestamp (ms) of a session, if known."""

    async def record_inbound(self, session_key: str, ctx: InboundContext) -> None:
        """Record one inbound message against a session."""


class EnvelopePort(Protocol):
    """Agent envelope formatting."""

    def format_envelope(
        self,
        *,
        channel: str,
        sender_label: str,
        timestamp: int | None,
        previous_timestamp: int | None,
        body: str,
    ) -> str:
        """Wrap the raw body with sender/time context for the agent."""


class TextPort(Protocol):
    """Markdown table conversion and chunking."""

    def convert_tables(self, text: str, mode: TableMode) -> str:
        """Rewrite markdown tables for a platform without table support."""

    def chunk(self, text: str, limit: int, mode: ChunkMode) -> list[str]:
        """Split text into ordered chunks of at most ``limit`` characters."""


class ReplyDispatcherPort(Protocol):
    """Buffered block reply dispatcher (drives reply generation)."""

    async def dispatch(self, ctx: InboundContext, *, deliver: DeliverFn, on_error: ErrorFn) -> None:
        """Generate replies for ``ctx`` and hand each to ``deliver``."""


@runtime_checkable
class TelemetryPort(Protocol):
    """Counter sink."""

    def incr(self, name: str, value: int = 1, labels: tuple[tuple[str, str], ...] = ()) -> None:
        """Increase named counter with optional labels."""


type StatusSink = Callable[[dict[str, Any]], None]
"""Receives partial status updates such as ``{"last_inbound_at": ms}``."""
