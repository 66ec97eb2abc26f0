"""Reply delivery: batch chunking, streaming edits and media attachments."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator, Callable
from pathlib import Path

from loguru import logger

from feishu_channel.core.models import ChunkMode, ReplyPayload, SentMessage, TableMode
from feishu_channel.core.ports import MessagingPort, TextPort
from feishu_channel.delivery.cards import render_card
from feishu_channel.delivery.streaming import STREAMING_UPDATE_INTERVAL_SECONDS, StreamingReply
from feishu_channel.delivery.targets import DeliveryTarget

# Below the nominal text limit to leave room for the card JSON envelope.
FEISHU_CARD_CONTENT_LIMIT = 3800
DEFAULT_MEDIA_MAX_BYTES = 20 * 1024 * 1024

IMAGE_EXTENSIONS = frozenset({".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp", ".ico", ".tiff", ".tif", ".heic"})
_FILE_TYPES = {
    ".opus": "opus",
    ".mp4": "mp4",
    ".pdf": "pdf",
    ".doc": "doc",
    ".docx": "doc",
    ".xls": "xls",
    ".xlsx": "xls",
    ".ppt": "ppt",
    ".pptx": "ppt",
}


def file_type_for(path: Path) -> str:
    return _FILE_TYPES.get(path.suffix.lower(), "stream")


class ReplyDeliveryEngine:
    """Sends agent replies for one inbound message."""

    def __init__(
        self,
        *,
        messaging: MessagingPort,
        text: TextPort,
        account_id: str = "default",
        table_mode: TableMode = "code",
        chunk_mode: ChunkMode = "length",
        content_limit: int = FEISHU_CARD_CONTENT_LIMIT,
        media_max_bytes: int = DEFAULT_MEDIA_MAX_BYTES,
        stream_interval: float = STREAMING_UPDATE_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        on_outbound: Callable[[], None] | None = None,
    ):
        self._messaging = messaging
        self._text = text
        self._account_id = account_id
        self._table_mode = table_mode
        self._chunk_mode = chunk_mode
        self._content_limit = content_limit
        self._media_max_bytes = media_max_bytes
        self._stream_interval = stream_interval
        self._clock = clock
        self._on_outbound = on_outbound

    async def deliver(self, payload: ReplyPayload, target: DeliveryTarget) -> None:
        """Deliver one dispatcher payload: a live stream or a text block, then any media."""
        if payload.stream is not None:
            await self.deliver_stream(payload.stream, target)
        elif payload.text:
            await self.deliver_batch(payload.text, target)
        if payload.media_paths:
            await self.deliver_media(payload.media_paths, target)

    # ── Batch ───────────────────────────────────────────────────────

    async def deliver_batch(self, text: str, target: DeliveryTarget) -> list[SentMessage]:
        """Chunk and send; only the first chunk quotes the original and mentions the sender."""
        converted = self._text.convert_tables(text, self._table_mode)
        if not converted:
            return []
        chunks = self._text.chunk(converted, self._content_limit, self._chunk_mode)
        sent: list[SentMessage] = []
        for index, chunk in enumerate(chunks):
            first = index == 0
            content = render_card(chunk, target.mention_id if first else None)
            try:
                if first and target.reply_to_message_id:
                    result = await self._messaging.reply_message(target.reply_to_message_id, "interactive", content)
                else:
                    result = await self._messaging.send_message(
                        target.receive_id, "interactive", content, target.receive_id_type
                    )
            except Exception as e:
                logger.error(f"[{self._account_id}] feishu message send failed (chunk {index + 1}/{len(chunks)}): {e}")
                continue
            sent.append(result)
            self._mark_outbound()
        return sent

    # ── Streaming ───────────────────────────────────────────────────

    def start_stream(self, target: DeliveryTarget) -> StreamingReply:
        return StreamingReply(
            messaging=self._messaging,
            target=target,
            prepare=lambda text: self._text.convert_tables(text, self._table_mode),
            interval=self._stream_interval,
            clock=self._clock,
            on_outbound=self._on_outbound,
            account_id=self._account_id,
        )

    async def deliver_stream(self, stream: AsyncIterator[str], target: DeliveryTarget) -> StreamingReply:
        reply = self.start_stream(target)
        await reply.run(stream)
        return reply

    # ── Media ───────────────────────────────────────────────────────

    async def deliver_media(self, paths: tuple[str, ...] | list[str], target: DeliveryTarget) -> list[SentMessage]:
        """Upload local files and send each as its own image or file message."""
        sent: list[SentMessage] = []
        for raw_path in paths:
            path = Path(raw_path).expanduser()
            try:
                result = await self._send_media_file(path, target)
            except Exception as e:
                logger.error(f"[{self._account_id}] feishu media send failed for {path.name}: {e}")
                continue
            if result is not None:
                sent.append(result)
                self._mark_outbound()
        return sent

    async def _send_media_file(self, path: Path, target: DeliveryTarget) -> SentMessage | None:
        if not path.is_file():
            logger.warning(f"[{self._account_id}] feishu media not found: {path}")
            return None
        size = path.stat().st_size
        if size > self._media_max_bytes:
            logger.warning(
                f"[{self._account_id}] feishu media {path.name} is {size} bytes, "
                f"over the {self._media_max_bytes} byte limit; skipped"
            )
            return None
        data = await asyncio.to_thread(path.read_bytes)
        if path.suffix.lower() in IMAGE_EXTENSIONS:
            image_key = await self._messaging.upload_image(data, "message", path.name)
            msg_type, content = "image", {"image_key": image_key}
        else:
            file_key = await self._messaging.upload_file(data, path.name, file_type_for(path))
            msg_type, content = "file", {"file_key": file_key}
        return await self._messaging.send_message(
            target.receive_id, msg_type, json.dumps(content), target.receive_id_type
        )

    def _mark_outbound(self) -> None:
        if self._on_outbound is not None:
            self._on_outbound()
