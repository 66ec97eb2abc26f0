"""Progressive card edits that approximate token streaming.

Feishu has no streaming message primitive, so a streaming reply sends one
interactive card and then patches it in place, at most once per
``interval`` seconds, with a trailing cursor while generation continues.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Literal

from loguru import logger

from feishu_channel.api.errors import DeliveryError
from feishu_channel.core.ports import MessagingPort
from feishu_channel.delivery.cards import render_card
from feishu_channel.delivery.targets import DeliveryTarget

STREAMING_UPDATE_INTERVAL_SECONDS = 0.3

type StreamState = Literal["idle", "live", "finished", "failed"]


@dataclass(slots=True)
class StreamingContext:
    """Per-reply streaming state, owned by one ``StreamingReply``."""

    message_id: str | None = None
    text: str = ""
    last_flush_at: float | None = None
    mention_id: str | None = None
    first_chunk: bool = True
    state: StreamState = "idle"
    flushes: int = 0


class StreamingReply:
    """State machine for one streaming reply: ``idle → live → finished | failed``."""

    def __init__(
        self,
        *,
        messaging: MessagingPort,
        target: DeliveryTarget,
        prepare: Callable[[str], str] = lambda text: text,
        interval: float = STREAMING_UPDATE_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        on_outbound: Callable[[], None] | None = None,
        account_id: str = "default",
    ):
        self._messaging = messaging
        self._target = target
        self._prepare = prepare
        self._interval = interval
        self._clock = clock
        self._on_outbound = on_outbound
        self._account_id = account_id
        self._lock = asyncio.Lock()
        self.ctx = StreamingContext(mention_id=target.mention_id)

    @property
    def state(self) -> StreamState:
        return self.ctx.state

    async def run(self, stream: AsyncIterator[str]) -> None:
        """Consume the whole stream, then finalize the card."""
        try:
            async for increment in stream:
                await self.push(increment)
        except Exception as e:
            self.ctx.state = "failed"
            logger.error(f"[{self._account_id}] feishu streaming delivery failed: {e}")
            raise
        await self.finish()

    async def push(self, increment: str) -> bool:
        """Accumulate ``increment``; flush when the interval has elapsed. Returns whether it flushed."""
        async with self._lock:
            if self.ctx.state in ("finished", "failed"):
                raise DeliveryError("streaming reply already closed", operation="stream")
            self.ctx.text += increment
            now = self._clock()
            last = self.ctx.last_flush_at
            if last is not None and now - last < self._interval:
                return False
            return await self._flush(now)

    async def finish(self) -> None:
        """Final edit without the cursor (or a first send if nothing went out yet)."""
        async with self._lock:
            if self.ctx.state in ("finished", "failed"):
                return
            if not self.ctx.text:
                self.ctx.state = "finished"
                return
            content = render_card(self._prepare(self.ctx.text), self.ctx.mention_id, streaming=False)
            try:
                if self.ctx.message_id:
                    await self._messaging.update_message_card(self.ctx.message_id, content)
                else:
                    await self._send_new(content)
            except Exception as e:
                self.ctx.state = "failed"
                logger.error(f"[{self._account_id}] feishu final streaming update failed: {e}")
                raise DeliveryError(f"final streaming update failed: {e}", operation="stream_final") from e
            self._mark_outbound()
            self.ctx.state = "finished"

    async def _flush(self, now: float) -> bool:
        content = render_card(self._prepare(self.ctx.text), self.ctx.mention_id, streaming=True)
        try:
            if self.ctx.first_chunk:
                self.ctx.message_id = await self._send_new(content)
                self.ctx.first_chunk = False
                if not self.ctx.message_id:
                    logger.warning(f"[{self._account_id}] feishu streaming send returned no message id")
            elif self.ctx.message_id:
                await self._messaging.update_message_card(self.ctx.message_id, content)
            else:
                return False
        except Exception as e:
            logger.error(f"[{self._account_id}] feishu streaming update failed: {e}")
            return False
        self.ctx.state = "live"
        self.ctx.last_flush_at = now
        self.ctx.flushes += 1
        self._mark_outbound()
        return True

    async def _send_new(self, content: str) -> str | None:
        target = self._target
        if target.reply_to_message_id:
            sent = await self._messaging.reply_message(target.reply_to_message_id, "interactive", content)
        else:
            sent = await self._messaging.send_message(
                target.receive_id, "interactive", content, target.receive_id_type
            )
        return sent.message_id

    def _mark_outbound(self) -> None:
        if self._on_outbound is not None:
            self._on_outbound()
