"""Runtime wiring for a standalone monitor."""

from __future__ import annotations

import asyncio

from feishu_channel.adapters.local import (
    EchoDispatcher,
    InMemoryPairingStore,
    InMemorySessionStore,
    JsonSessionStore,
    MarkdownTextTools,
    PlainEnvelopeFormatter,
    SlashCommandAuthorizer,
    StaticRouter,
)
from feishu_channel.adapters.telemetry import InMemoryTelemetry
from feishu_channel.api.client import FeishuClient
from feishu_channel.api.token_cache import TokenCache
from feishu_channel.config.accounts import ResolvedAccount, resolve_account
from feishu_channel.config.loader import resolve_data_file
from feishu_channel.config.schema import Config
from feishu_channel.core.ports import ReplyDispatcherPort, SessionStorePort
from feishu_channel.core.runtime import ChannelRuntime


def build_client(
    account: ResolvedAccount,
    *,
    token_cache: TokenCache | None = None,
    abort: asyncio.Event | None = None,
) -> FeishuClient:
    return FeishuClient(
        account.app_id,
        account.app_secret,
        domain=account.domain,
        token_cache=token_cache,
        timeout_seconds=account.request_timeout_seconds,
        abort=abort,
    )


def build_session_store(config: Config) -> SessionStorePort:
    """File-backed when ``session.store`` is set, in memory otherwise."""
    if config.session.store:
        return JsonSessionStore(resolve_data_file(config.session.store))
    return InMemorySessionStore()


def build_local_runtime(
    config: Config,
    account_id: str | None = None,
    *,
    dispatcher: ReplyDispatcherPort | None = None,
    agent_id: str = "main",
) -> ChannelRuntime:
    """Runtime backed by in-memory collaborators and an echo dispatcher by default."""
    account = resolve_account(config, account_id)
    abort = asyncio.Event()
    return ChannelRuntime(
        account=account,
        client=build_client(account, abort=abort),
        pairing=InMemoryPairingStore(),
        commands=SlashCommandAuthorizer(),
        routing=StaticRouter(agent_id),
        sessions=build_session_store(config),
        envelope=PlainEnvelopeFormatter(),
        text=MarkdownTextTools(),
        dispatcher=dispatcher or EchoDispatcher(streaming=account.streaming),
        use_access_groups=config.commands.use_access_groups,
        telemetry=InMemoryTelemetry(),
        abort=abort,
    )
