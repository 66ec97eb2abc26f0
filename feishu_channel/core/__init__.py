"""Typed core domain and pipeline primitives."""

from feishu_channel.core.models import (
    AccessDecision,
    AccessOutcome,
    AgentRoute,
    BotInfo,
    InboundContext,
    InboundMessage,
    Mention,
    ReplyPayload,
    ReplyTarget,
    SenderIdentity,
)
from feishu_channel.core.pipeline import Middleware, NextFn, Pipeline, PipelineContext

__all__ = [
    "AccessDecision",
    "AccessOutcome",
    "AgentRoute",
    "BotInfo",
    "InboundContext",
    "InboundMessage",
    "Mention",
    "Middleware",
    "NextFn",
    "Pipeline",
    "PipelineContext",
    "ReplyPayload",
    "ReplyTarget",
    "SenderIdentity",
]
