from __future__ import annotations

import json
from typing import Any

import pytest

from feishu_channel.adapters.local import (
    InMemoryPairingStore,
    InMemorySessionStore,
    MarkdownTextTools,
    PlainEnvelopeFormatter,
    SlashCommandAuthorizer,
    StaticRouter,
)
from feishu_channel.adapters.telemetry import InMemoryTelemetry
from feishu_channel.config.accounts import resolve_account
from feishu_channel.config.schema import ChannelsConfig, CommandsConfig, Config, FeishuConfig
from feishu_channel.core.models import BotInfo, DispatchInfo, InboundContext, ReplyPayload, SentMessage
from feishu_channel.core.ports import DeliverFn, ErrorFn
from feishu_channel.core.runtime import ChannelRuntime

BOT_OPEN_ID = "ou_bot"


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.t = start

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


class FakeMessaging:
    """Records every outbound call; ``fail`` maps an operation to how many calls should raise."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.fail: dict[str, int] = {}
        self._seq = 0

    def _maybe_fail(self, op: str) -> None:
        remaining = self.fail.get(op, 0)
        if remaining:
            self.fail[op] = remaining - 1
            raise RuntimeError(f"{op} failed")

    def _next_id(self) -> str:
        self._seq += 1
        return f"om_sent_{self._seq}"

    def ops(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def send_message(self, receive_id, msg_type, content, receive_id_type="open_id") -> SentMessage:
        self.calls.append(("send", receive_id, msg_type, content, receive_id_type))
        self._maybe_fail("send")
        return SentMessage(message_id=self._next_id())

    async def reply_message(self, message_id, msg_type, content) -> SentMessage:
        self.calls.append(("reply", message_id, msg_type, content))
        self._maybe_fail("reply")
        return SentMessage(message_id=self._next_id())

    async def update_message_card(self, message_id, content) -> None:
        self.calls.append(("update", message_id, content))
        self._maybe_fail("update")

    async def upload_image(self, data, image_type="message", filename="image.png") -> str:
        self.calls.append(("upload_image", filename, len(data)))
        self._maybe_fail("upload_image")
        return "img_key_1"

    async def upload_file(self, data, file_name, file_type="stream") -> str:
        self.calls.append(("upload_file", file_name, file_type))
        self._maybe_fail("upload_file")
        return "file_key_1"

    async def get_bot_info(self) -> BotInfo:
        self._maybe_fail("bot_info")
        return BotInfo(open_id=BOT_OPEN_ID, app_name="Bot")


class RecordingDispatcher:
    """Replies with a fixed text block (or stream) and records contexts."""

    def __init__(self, reply: str = "ok", *, stream: list[str] | None = None) -> None:
        self.reply = reply
        self.stream = stream
        self.dispatched: list[InboundContext] = []
        self.errors: list[tuple[BaseException, DispatchInfo]] = []

    async def dispatch(self, ctx: InboundContext, *, deliver: DeliverFn, on_error: ErrorFn) -> None:
        self.dispatched.append(ctx)
        if self.stream is not None:
            payload = ReplyPayload(stream=_aiter(self.stream))
        else:
            payload = ReplyPayload(text=self.reply)
        try:
            await deliver(payload)
        except Exception as e:
            self.errors.append((e, DispatchInfo(kind="final")))
            on_error(e, DispatchInfo(kind="final"))


async def _aiter(items: list[str]):
    for item in items:
        yield item


def card_content(raw: str) -> str:
    """Markdown content of a rendered interactive card."""
    return json.loads(raw)["elements"][0]["content"]


def make_config(*, use_access_groups: bool = True, **feishu: Any) -> Config:
    values: dict[str, Any] = {"enabled": True, "app_id": "cli_test", "app_secret": "secret"}
    values.update(feishu)
    return Config(
        channels=ChannelsConfig(feishu=FeishuConfig(**values)),
        commands=CommandsConfig(use_access_groups=use_access_groups),
    )


def make_runtime(
    *,
    messaging: FakeMessaging | None = None,
    dispatcher: RecordingDispatcher | None = None,
    pairing: InMemoryPairingStore | None = None,
    sessions: Any = None,
    bot_open_id: str | None = BOT_OPEN_ID,
    use_access_groups: bool = True,
    **feishu: Any,
) -> ChannelRuntime:
    config = make_config(use_access_groups=use_access_groups, **feishu)
    return ChannelRuntime(
        account=resolve_account(config),
        client=messaging or FakeMessaging(),
        pairing=pairing or InMemoryPairingStore(),
        commands=SlashCommandAuthorizer(),
        routing=StaticRouter(),
        sessions=sessions or InMemorySessionStore(),
        envelope=PlainEnvelopeFormatter(),
        text=MarkdownTextTools(),
        dispatcher=dispatcher or RecordingDispatcher(),
        use_access_groups=config.commands.use_access_groups,
        telemetry=InMemoryTelemetry(),
        bot_info=BotInfo(open_id=bot_open_id),
    )


def message_event(
    text: str | None = "hello",
    *,
    chat_type: str = "p2p",
    chat_id: str = "oc_dm",
    sender: str | None = "ou_user",
    message_id: str = "om_1",
    message_type: str = "text",
    content: Any = None,
    mentions: list[dict[str, Any]] | None = None,
    create_time: str = "1700000000000",
) -> dict[str, Any]:
    if content is None:
        content = json.dumps({"text": text})
    elif not isinstance(content, str):
        content = json.dumps(content)
    message: dict[str, Any] = {
        "message_id": message_id,
        "chat_id": chat_id,
        "chat_type": chat_type,
        "message_type": message_type,
        "content": content,
        "create_time": create_time,
    }
    if mentions is not None:
        message["mentions"] = mentions
    sender_ids = {"open_id": sender} if sender else {}
    return {"sender": {"sender_id": sender_ids, "sender_type": "user"}, "message": message}


def bot_mention(key: str = "@_user_1", name: str = "Bot", open_id: str = BOT_OPEN_ID) -> dict[str, Any]:
    return {"key": key, "name": name, "id": {"open_id": open_id}}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def messaging() -> FakeMessaging:
    return FakeMessaging()
