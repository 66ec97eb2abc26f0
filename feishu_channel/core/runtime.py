"""Explicit runtime context threaded through every pipeline stage."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from feishu_channel.config.accounts import ResolvedAccount
from feishu_channel.core.models import BotInfo
from feishu_channel.core.ports import (
    CommandPort,
    EnvelopePort,
    MessagingPort,
    PairingStorePort,
    ReplyDispatcherPort,
    RoutingPort,
    SessionStorePort,
    StatusSink,
    TelemetryPort,
    TextPort,
)

CHANNEL_ID = "feishu"


@dataclass(slots=True, kw_only=True)
class ChannelRuntime:
    """Everything one monitoring session needs, built once at startup."""

    account: ResolvedAccount
    client: MessagingPort
    pairing: PairingStorePort
    commands: CommandPort
    routing: RoutingPort
    sessions: SessionStorePort
    envelope: EnvelopePort
    text: TextPort
    dispatcher: ReplyDispatcherPort
    use_access_groups: bool = True
    telemetry: TelemetryPort | None = None
    status: StatusSink | None = None
    bot_info: BotInfo = field(default_factory=BotInfo)
    abort: asyncio.Event = field(default_factory=asyncio.Event)
    clock: Callable[[], float] = time.time

    @property
    def account_id(self) -> str:
        return self.account.account_id

    def now_ms(self) -> int:
        return int(self.clock() * 1000)

    def mark_inbound(self) -> None:
        if self.status is not None:
            self.status({"last_inbound_at": self.now_ms()})

    def mark_outbound(self) -> None:
        if self.status is not None:
            self.status({"last_outbound_at": self.now_ms()})
