"""Inbound pipeline stages.

Each module holds middleware classes; ``build_inbound_pipeline`` wires them
in order. See ``core/pipeline.py`` for the runner.
"""

import time
from collections.abc import Callable

from feishu_channel.core.pipeline import Pipeline
from feishu_channel.pipeline.access import (
    CommandAuthorizationMiddleware,
    ControlCommandGateMiddleware,
    DirectMessagePolicyMiddleware,
    GroupPolicyMiddleware,
)
from feishu_channel.pipeline.dedup import DeduplicationMiddleware
from feishu_channel.pipeline.dispatch import DispatchMiddleware
from feishu_channel.pipeline.envelope import EnvelopeMiddleware, SessionRecordMiddleware
from feishu_channel.pipeline.normalize import ClassificationMiddleware
from feishu_channel.pipeline.route import RouteMiddleware


def build_inbound_pipeline(
    *,
    dedup_ttl_seconds: float = 20 * 60,
    clock: Callable[[], float] = time.monotonic,
) -> Pipeline:
    """Canonical stage order for one inbound Feishu message."""
    return Pipeline(
        [
            ClassificationMiddleware(),
            DeduplicationMiddleware(ttl_seconds=dedup_ttl_seconds, clock=clock),
            CommandAuthorizationMiddleware(),
            DirectMessagePolicyMiddleware(),
            GroupPolicyMiddleware(),
            RouteMiddleware(),
            ControlCommandGateMiddleware(),
            EnvelopeMiddleware(),
            SessionRecordMiddleware(),
            DispatchMiddleware(),
        ]
    )


__all__ = [
    "ClassificationMiddleware",
    "CommandAuthorizationMiddleware",
    "ControlCommandGateMiddleware",
    "DeduplicationMiddleware",
    "DirectMessagePolicyMiddleware",
    "DispatchMiddleware",
    "EnvelopeMiddleware",
    "GroupPolicyMiddleware",
    "RouteMiddleware",
    "SessionRecordMiddleware",
    "build_inbound_pipeline",
]
