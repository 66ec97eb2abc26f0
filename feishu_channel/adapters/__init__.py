"""Adapters implementing the core ports in-process."""

from feishu_channel.adapters.local import (
    EchoDispatcher,
    InMemoryPairingStore,
    InMemorySessionStore,
    MarkdownTextTools,
    PlainEnvelopeFormatter,
    SlashCommandAuthorizer,
    StaticRouter,
)
from feishu_channel.adapters.telemetry import InMemoryTelemetry

__all__ = [
    "EchoDispatcher",
    "InMemoryPairingStore",
    "InMemorySessionStore",
    "InMemoryTelemetry",
    "MarkdownTextTools",
    "PlainEnvelopeFormatter",
    "SlashCommandAuthorizer",
    "StaticRouter",
]
