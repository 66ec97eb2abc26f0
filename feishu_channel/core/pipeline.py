"""Middleware pipeline for inbound Feishu events.

Each stage is a small callable class: it calls ``next()`` to pass the
context on, or ``ctx.halt()`` to drop the event.  See ``pipeline/`` for
the stages and ``build_inbound_pipeline`` for the canonical order.

Usage::

    pipeline = Pipeline([
        ClassificationMiddleware(),
        DeduplicationMiddleware(ttl_seconds=1200),
        DirectMessagePolicyMiddleware(),
        DispatchMiddleware(),
    ])
    ctx = await pipeline.run(runtime, raw_event)
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from feishu_channel.core.models import (
    AccessDecision,
    AgentRoute,
    InboundContext,
    InboundMessage,
    ReplyTarget,
)

if TYPE_CHECKING:
    from feishu_channel.core.runtime import ChannelRuntime


@dataclass
class PipelineContext:
    """Mutable state flowing through the middleware chain.

    Attributes:
        runtime: Account, client and collaborators for this monitor.
        event: The raw event payload as delivered by the connection.
        message: Set by classification.
        reply_target: Where replies to this message are addressed.
        effective_allow_from: Configured allow list merged with the pairing store.
        command_authorized: ``None`` when authorization was not computed.
        decision: Last access decision taken for this event.
        route: Resolved agent route.
        inbound: Finalized context handed to the session store and dispatcher.
        halted: When ``True``, the pipeline stops executing further middleware.
    """

    runtime: ChannelRuntime
    event: dict[str, Any]
    message: InboundMessage | None = None
    reply_target: ReplyTarget | None = None
    effective_allow_from: tuple[str, ...] = ()
    sender_allowed: bool = False
    command_authorized: bool | None = None
    decision: AccessDecision | None = None
    route: AgentRoute | None = None
    inbound: InboundContext | None = None
    halted: bool = False
    metrics: list[tuple[str, int, tuple[tuple[str, str], ...]]] = field(default_factory=list)

    # ── Convenience helpers ──────────────────────────────────────────

    def metric(
        self,
        name: str,
        value: int = 1,
        labels: tuple[tuple[str, str], ...] = (),
    ) -> None:
        """Record a counter on the runtime telemetry sink."""
        labels = (("account", self.runtime.account.account_id), *labels)
        self.metrics.append((name, value, labels))
        telemetry = self.runtime.telemetry
        if telemetry is not None:
            telemetry.incr(name, value, labels)

    def halt(self) -> None:
        """Signal the pipeline to stop after this middleware."""
        self.halted = True

    def require_message(self) -> InboundMessage:
        if self.message is None:
            raise RuntimeError("pipeline stage ran before classification")
        return self.message


NextFn = Callable[[PipelineContext], Awaitable[None]]
"""Signature for the ``next`` callback passed to each middleware."""


@runtime_checkable
class Middleware(Protocol):
    """Protocol for pipeline middleware.

    Implementations must be callable with ``(ctx, next)`` and may:

    1. Modify ``ctx`` and call ``await next(ctx)`` to pass through.
    2. Call ``ctx.halt()`` to short-circuit.
    3. Call ``await next(ctx)`` then inspect the result to post-process.
    """

    async def __call__(self, ctx: PipelineContext, next: NextFn) -> None: ...


class Pipeline:
    """Ordered chain of middleware that processes one inbound event."""

    __slots__ = ("_layers",)

    def __init__(self, layers: list[Middleware]) -> None:
        self._layers = list(layers)

    async def run(self, runtime: ChannelRuntime, event: dict[str, Any]) -> PipelineContext:
        """Process *event* through the full middleware chain and return the final context."""
        ctx = PipelineContext(runtime=runtime, event=event)
        await self._execute(ctx, index=0)
        return ctx

    async def _execute(self, ctx: PipelineContext, index: int) -> None:
        if ctx.halted or index >= len(self._layers):
            return
        layer = self._layers[index]
        await layer(ctx, lambda c: self._execute(c, index + 1))

    def __len__(self) -> int:
        return len(self._layers)

    def __repr__(self) -> str:
        names = [type(m).__name__ for m in self._layers]
        return f"Pipeline({' → '.join(names)})"
