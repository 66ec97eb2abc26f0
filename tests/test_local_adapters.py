import asyncio

import pytest

from feishu_channel.adapters.local import (
    EchoDispatcher,
    InMemoryPairingStore,
    JsonSessionStore,
    MarkdownTextTools,
    PlainEnvelopeFormatter,
    StaticRouter,
)
from feishu_channel.adapters.telemetry import InMemoryTelemetry
from feishu_channel.core.models import ReplyPayload
from feishu_channel.pipeline import build_inbound_pipeline
from tests.conftest import make_runtime, message_event


# ── Pairing store ───────────────────────────────────────────────────


async def test_concurrent_first_messages_create_one_request() -> None:
    store = InMemoryPairingStore()

    results = await asyncio.gather(*(store.upsert_request("feishu", "ou_1") for _ in range(5)))

    assert sum(result.created for result in results) == 1
    assert len({result.code for result in results}) == 1
    assert len(store.pending("feishu")) == 1


async def test_approve_moves_sender_to_allow_list() -> None:
    store = InMemoryPairingStore(code_length=6)
    result = await store.upsert_request("feishu", "ou_1", {"name": "User"})

    approved = await store.approve("feishu", result.code.lower())

    assert approved == "ou_1"
    assert await store.read_allow_from("feishu") == ["ou_1"]
    assert store.pending("feishu") == []
    assert await store.approve("feishu", "NOPE") is None


async def test_concurrent_pipeline_runs_issue_one_pairing_notice() -> None:
    runtime = make_runtime()
    pipeline = build_inbound_pipeline()

    await asyncio.gather(
        *(pipeline.run(runtime, message_event("hi", message_id=f"om_{i}")) for i in range(4))
    )

    assert runtime.client.ops() == ["send"]


# ── Session store ───────────────────────────────────────────────────


async def test_json_session_store_survives_restart(tmp_path) -> None:
    path = tmp_path / "state" / "sessions.json"
    store = JsonSessionStore(path)
    runtime = make_runtime(sessions=store, dm_policy="open")

    ctx = await build_inbound_pipeline().run(runtime, message_event("hi"))
    key = ctx.inbound.session_key
    recorded_at = store.read_updated_at(key, agent_id="main")

    reopened = JsonSessionStore(path)

    assert recorded_at is not None
    assert reopened.read_updated_at(key, agent_id="main") == recorded_at
    assert reopened.recorded == []


def test_json_session_store_ignores_corrupt_file(tmp_path) -> None:
    path = tmp_path / "sessions.json"
    path.write_text("[not json")

    store = JsonSessionStore(path)

    assert store.read_updated_at("agent:main:feishu:direct:ou_user", agent_id="main") is None


# ── Text tools ──────────────────────────────────────────────────────


def test_newline_chunking_keeps_paragraphs_together() -> None:
    text = "alpha alpha\n\nbeta beta\n\ngamma"

    chunks = MarkdownTextTools().chunk(text, 24, "newline")

    assert chunks == ["alpha alpha\n\nbeta beta\n\n", "gamma"]


def test_length_chunking_hard_splits_unbroken_text() -> None:
    chunks = MarkdownTextTools().chunk("x" * 25, 10, "length")

    assert chunks == ["x" * 10, "x" * 10, "x" * 5]


def test_chunk_rejects_non_positive_limit() -> None:
    with pytest.raises(ValueError):
        MarkdownTextTools().chunk("abc", 0, "length")


def test_code_table_mode_fences_table() -> None:
    text = "| a | b |\n|---|---|\n| 1 | 2 |"

    converted = MarkdownTextTools().convert_tables(text, "code")

    assert converted == "```\n| a | b |\n|---|---|\n| 1 | 2 |\n```"


def test_tables_inside_code_blocks_are_untouched() -> None:
    text = "```\n| a | b |\n|---|---|\n| 1 | 2 |\n```"

    assert MarkdownTextTools().convert_tables(text, "bullets") == text


def test_table_mode_off() -> None:
    text = "| a | b |\n|---|---|\n| 1 | 2 |\n"

    assert MarkdownTextTools().convert_tables(text, "off") == text


# ── Envelope, routing, echo ─────────────────────────────────────────


def test_envelope_includes_elapsed_and_timestamp() -> None:
    body = PlainEnvelopeFormatter().format_envelope(
        channel="Feishu",
        sender_label="group:oc_1",
        timestamp=1_700_000_000_000,
        previous_timestamp=1_700_000_000_000 - 2 * 3600 * 1000,
        body="hello",
    )

    assert body == "[Feishu group:oc_1 +2h 2023-11-14 22:13 UTC] hello"


def test_envelope_without_timestamp() -> None:
    body = PlainEnvelopeFormatter().format_envelope(
        channel="Feishu", sender_label="User", timestamp=None, previous_timestamp=None, body="x"
    )

    assert body == "[Feishu User] x"


def test_static_router_session_key() -> None:
    route = StaticRouter("helper").resolve_route(
        channel="feishu", account_id="work", peer_kind="direct", peer_id="oc_9"
    )

    assert route.agent_id == "helper"
    assert route.account_id == "work"
    assert route.session_key == "agent:helper:feishu:direct:oc_9"


async def test_echo_dispatcher_streams_words() -> None:
    runtime = make_runtime(dm_policy="open")
    ctx = await build_inbound_pipeline().run(runtime, message_event("hi"))
    delivered: list[ReplyPayload] = []

    async def deliver(payload: ReplyPayload) -> None:
        delivered.append(payload)
        assert payload.stream is not None
        parts = [part async for part in payload.stream]
        assert "".join(parts) == "> hi"

    dispatcher = EchoDispatcher(prefix="> ", streaming=True, word_delay=0)
    await dispatcher.dispatch(ctx.inbound, deliver=deliver, on_error=lambda e, info: None)

    assert len(delivered) == 1
    assert dispatcher.dispatched == [ctx.inbound]


# ── Telemetry ───────────────────────────────────────────────────────


def test_telemetry_filters_by_labels() -> None:
    telemetry = InMemoryTelemetry()
    telemetry.incr("feishu_drop_policy", labels=(("account", "a"), ("reason", "dm_disabled")))
    telemetry.incr("feishu_drop_policy", labels=(("account", "b"), ("reason", "dm_disabled")))
    telemetry.incr("feishu_dispatched")

    assert telemetry.get("feishu_drop_policy") == 2
    assert telemetry.get("feishu_drop_policy", account="a") == 1
    assert telemetry.get("feishu_drop_policy", reason="dm_disabled") == 2
    assert telemetry.snapshot() == {"feishu_dispatched": 1, "feishu_drop_policy": 2}
