"""In-process collaborators for running the channel standalone.

The gateway normally supplies pairing, sessions, routing, envelopes, text
tools and reply generation. These adapters implement the same ports in
memory so the CLI ``run`` command and the tests work without a gateway.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
import secrets
import time
from collections.abc import AsyncIterator, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger

from feishu_channel.core.models import (
    AgentRoute,
    ChatKind,
    ChunkMode,
    CommandAuthorizer,
    DispatchInfo,
    InboundContext,
    PairingResult,
    ReplyPayload,
    TableMode,
)
from feishu_channel.core.ports import DeliverFn, ErrorFn

PAIRING_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


# ── Pairing ─────────────────────────────────────────────────────────


@dataclass(slots=True)
class PendingPairing:
    channel: str
    sender_id: str
    code: str
    created_at: float
    meta: dict[str, str] = field(default_factory=dict)


class InMemoryPairingStore:
    """Pending pairing requests and approved senders, keyed by channel.

    ``upsert_request`` runs under a lock so concurrent first messages from
    one sender create at most one request.
    """

    def __init__(self, *, code_length: int = 8, approved: dict[str, Iterable[str]] | None = None):
        self._code_length = code_length
        self._lock = asyncio.Lock()
        self._pending: dict[tuple[str, str], PendingPairing] = {}
        self._approved: dict[str, list[str]] = {channel: list(ids) for channel, ids in (approved or {}).items()}
        self.upserts: list[tuple[str, str, bool]] = []

    def _new_code(self) -> str:
        return "".join(secrets.choice(PAIRING_CODE_ALPHABET) for _ in range(self._code_length))

    async def upsert_request(self, channel: str, sender_id: str, meta: dict[str, str] | None = None) -> PairingResult:
        async with self._lock:
            key = (channel, sender_id)
            existing = self._pending.get(key)
            if existing is not None:
                if meta:
                    existing.meta.update(meta)
                self.upserts.append((channel, sender_id, False))
                return PairingResult(code=existing.code, created=False)
            pending = PendingPairing(
                channel=channel,
                sender_id=sender_id,
                code=self._new_code(),
                created_at=time.time(),
                meta=dict(meta or {}),
            )
            self._pending[key] = pending
            self.upserts.append((channel, sender_id, True))
            return PairingResult(code=pending.code, created=True)

    async def read_allow_from(self, channel: str) -> list[str]:
        return list(self._approved.get(channel, []))

    def build_reply(self, channel: str, id_line: str, code: str) -> str:
        return "\n".join(
            [
                f"This bot does not know you yet ({channel}).",
                "",
                id_line,
                f"Pairing code: {code}",
                "",
                "Ask the bot owner to approve this code.",
            ]
        )

    def pending(self, channel: str) -> list[PendingPairing]:
        return [item for (ch, _), item in self._pending.items() if ch == channel]

    async def approve(self, channel: str, code: str) -> str | None:
        """Approve a pending request by code; returns the approved sender id."""
        async with self._lock:
            wanted = code.strip().upper()
            for key, item in list(self._pending.items()):
                if key[0] == channel and item.code == wanted:
                    del self._pending[key]
                    self._approved.setdefault(channel, []).append(item.sender_id)
                    logger.info(f"[{channel}] approved pairing for {item.sender_id}")
                    return item.sender_id
        return None


# ── Sessions ────────────────────────────────────────────────────────


class InMemorySessionStore:
    """Per-session last-update timestamps and recorded inbound contexts."""

    def __init__(self) -> None:
        self._updated_at: dict[str, int] = {}
        self.recorded: list[InboundContext] = []

    def read_updated_at(self, session_key: str, *, agent_id: str) -> int | None:
        return self._updated_at.get(session_key)

    async def record_inbound(self, session_key: str, ctx: InboundContext) -> None:
        self._updated_at[session_key] = ctx.timestamp or int(time.time() * 1000)
        self.recorded.append(ctx)


class JsonSessionStore(InMemorySessionStore):
    """Session timestamps persisted to a JSON file so they survive restarts."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = path
        self._updated_at.update(self._load())

    def _load(self) -> dict[str, int]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"[feishu] ignoring unreadable session store {self.path}: {e}")
            return {}
        if not isinstance(raw, dict):
            logger.warning(f"[feishu] ignoring session store {self.path}: root is not an object")
            return {}
        return {key: value for key, value in raw.items() if isinstance(value, int)}

    async def record_inbound(self, session_key: str, ctx: InboundContext) -> None:
        await super().record_inbound(session_key, ctx)
        self._save()

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f".{self.path.name}.tmp-{os.getpid()}")
        tmp_path.write_text(json.dumps(self._updated_at, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, self.path)


# ── Commands and routing ────────────────────────────────────────────


class SlashCommandAuthorizer:
    """Control commands are messages starting with ``prefix`` (default ``/``)."""

    def __init__(self, prefix: str = "/"):
        self.prefix = prefix

    def is_control_command(self, text: str) -> bool:
        body = text.strip()
        return len(body) > len(self.prefix) and body.startswith(self.prefix)

    def should_compute_authorization(self, text: str) -> bool:
        return self.is_control_command(text)

    def resolve_authorized(self, *, use_access_groups: bool, authorizers: Sequence[CommandAuthorizer]) -> bool:
        if not use_access_groups:
            return True
        return any(item.configured and item.allowed for item in authorizers)


class StaticRouter:
    """Route every conversation to one agent, one session per peer."""

    def __init__(self, agent_id: str = "main"):
        self.agent_id = agent_id

    def resolve_route(self, *, channel: str, account_id: str, peer_kind: ChatKind, peer_id: str) -> AgentRoute:
        return AgentRoute(
            agent_id=self.agent_id,
            session_key=f"agent:{self.agent_id}:{channel}:{peer_kind}:{peer_id}",
            account_id=account_id,
        )


# ── Envelope ────────────────────────────────────────────────────────


def _format_elapsed(ms: int) -> str:
    seconds = max(0, ms // 1000)
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


class PlainEnvelopeFormatter:
    """``[Channel sender +elapsed timestamp] body``."""

    def format_envelope(
        self,
        *,
        channel: str,
        sender_label: str,
        timestamp: int | None,
        previous_timestamp: int | None,
        body: str,
    ) -> str:
        parts = [channel, sender_label]
        if timestamp is not None and previous_timestamp is not None:
            parts.append(f"+{_format_elapsed(timestamp - previous_timestamp)}")
        if timestamp is not None:
            when = datetime.fromtimestamp(timestamp / 1000, tz=UTC)
            parts.append(when.strftime("%Y-%m-%d %H:%M UTC"))
        return f"[{' '.join(parts)}] {body}"


# ── Text tools ──────────────────────────────────────────────────────


class MarkdownTextTools:
    """Markdown table rewriting and chunking for card content."""

    # Header row, separator row, one or more data rows.
    _TABLE_RE = re.compile(
        r"((?:^[ \t]*\|.+\|[ \t]*\n)(?:^[ \t]*\|[-:\s|]+\|[ \t]*\n)(?:^[ \t]*\|.+\|[ \t]*\n?)+)",
        re.MULTILINE,
    )
    _CODE_BLOCK_RE = re.compile(r"(```[\s\S]*?```)")

    def convert_tables(self, text: str, mode: TableMode) -> str:
        if mode == "off" or "|" not in text:
            return text
        pieces: list[str] = []
        for index, segment in enumerate(self._CODE_BLOCK_RE.split(text)):
            # Odd segments are fenced code blocks.
            if index % 2:
                pieces.append(segment)
            else:
                pieces.append(self._TABLE_RE.sub(lambda m: self._rewrite_table(m.group(1), mode), segment))
        return "".join(pieces)

    @staticmethod
    def _split_row(line: str) -> list[str]:
        return [cell.strip() for cell in line.strip().strip("|").split("|")]

    def _rewrite_table(self, table: str, mode: TableMode) -> str:
        trailing = "\n" if table.endswith("\n") else ""
        lines = [line for line in table.strip("\n").split("\n") if line.strip()]
        if mode == "code":
            return "```\n" + "\n".join(line.strip() for line in lines) + "\n```" + trailing
        headers = self._split_row(lines[0])
        bullets: list[str] = []
        for line in lines[2:]:
            cells = self._split_row(line)
            pairs = [
                f"{header}: {cells[i] if i < len(cells) else ''}" if header else (cells[i] if i < len(cells) else "")
                for i, header in enumerate(headers)
            ]
            bullets.append("- " + "; ".join(pairs))
        return "\n".join(bullets) + trailing

    def chunk(self, text: str, limit: int, mode: ChunkMode) -> list[str]:
        if limit <= 0:
            raise ValueError("chunk limit must be positive")
        if mode == "newline":
            chunks = self._chunk_by_paragraph(text, limit)
        else:
            chunks = self._chunk_by_length(text, limit)
        return [chunk for chunk in chunks if chunk.strip()]

    @staticmethod
    def _chunk_by_length(text: str, limit: int) -> list[str]:
        chunks: list[str] = []
        rest = text
        while len(rest) > limit:
            window = rest[:limit]
            cut = 0
            for sep in ("\n\n", "\n", " "):
                idx = window.rfind(sep)
                if idx > 0:
                    cut = idx + len(sep)
                    break
            if cut <= 0:
                cut = limit
            chunks.append(rest[:cut])
            rest = rest[cut:]
        if rest:
            chunks.append(rest)
        return chunks

    def _chunk_by_paragraph(self, text: str, limit: int) -> list[str]:
        paragraphs = re.split(r"(?<=\n\n)", text)
        chunks: list[str] = []
        current = ""
        for paragraph in paragraphs:
            if len(current) + len(paragraph) <= limit:
                current += paragraph
                continue
            if current:
                chunks.append(current)
                current = ""
            if len(paragraph) <= limit:
                current = paragraph
            else:
                chunks.extend(self._chunk_by_length(paragraph, limit))
        if current:
            chunks.append(current)
        return chunks


# ── Reply generation ────────────────────────────────────────────────


async def _word_stream(text: str, delay: float) -> AsyncIterator[str]:
    for word in re.findall(r"\S+\s*", text):
        yield word
        if delay:
            await asyncio.sleep(delay)


class EchoDispatcher:
    """Reply with the inbound raw body, as one block or as a word stream."""

    def __init__(self, *, prefix: str = "", streaming: bool = False, word_delay: float = 0.05):
        self.prefix = prefix
        self.streaming = streaming
        self.word_delay = word_delay
        self.dispatched: list[InboundContext] = []

    async def dispatch(self, ctx: InboundContext, *, deliver: DeliverFn, on_error: ErrorFn) -> None:
        self.dispatched.append(ctx)
        text = f"{self.prefix}{ctx.raw_body}"
        if self.streaming:
            payload = ReplyPayload(stream=_word_stream(text, self.word_delay))
        else:
            payload = ReplyPayload(text=text)
        try:
            await deliver(payload)
        except Exception as e:
            on_error(e, DispatchInfo(kind="final"))
