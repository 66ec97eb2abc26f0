"""Drop redelivered events.

Feishu's long connection replays any event it did not see acknowledged in
time, so the same message id can reach the pipeline more than once.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable

from loguru import logger

from feishu_channel.core.pipeline import NextFn, PipelineContext

type MessageKey = tuple[str, str, str]


class RecentMessageIds:
    """Bounded set of message keys that forgets each key after ``ttl_seconds``.

    Keys are stored in arrival order with their expiry; with one TTL and a
    monotonic clock that is also expiry order, so pruning only looks at the
    front.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = max(1.0, float(ttl_seconds))
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._expiry: OrderedDict[MessageKey, float] = OrderedDict()

    def __len__(self) -> int:
        return len(self._expiry)

    def check_and_add(self, key: MessageKey) -> bool:
        """Remember ``key``; ``False`` if it was already live."""
        now = self._clock()
        self._prune(now)
        if key in self._expiry:
            return False
        self._expiry[key] = now + self.ttl_seconds
        while len(self._expiry) > self.max_entries:
            self._expiry.popitem(last=False)
        return True

    def _prune(self, now: float) -> None:
        while self._expiry:
            oldest, expires_at = next(iter(self._expiry.items()))
            if expires_at > now:
                return
            del self._expiry[oldest]


class DeduplicationMiddleware:
    """Halt events whose ``(account, chat, message id)`` was seen within the TTL."""

    def __init__(
        self,
        *,
        ttl_seconds: float = 20 * 60,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.recent = RecentMessageIds(ttl_seconds=ttl_seconds, max_entries=max_entries, clock=clock)

    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None:
        message = ctx.message
        if message is None or not message.message_id:
            await next(ctx)
            return

        account_id = ctx.runtime.account_id
        if not self.recent.check_and_add((account_id, message.chat_id, message.message_id)):
            logger.debug(f"[{account_id}] dropping redelivered feishu message {message.message_id}")
            ctx.metric("feishu_drop_duplicate")
            ctx.halt()
            return
        await next(ctx)
