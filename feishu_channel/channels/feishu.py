"""Feishu/Lark monitor using the lark-oapi WebSocket long connection."""

from __future__ import annotations

import asyncio
import json
import threading
import time
from typing import TYPE_CHECKING, Any

import lark_oapi as lark
import lark_oapi.ws.client as lark_ws_client
from loguru import logger

from feishu_channel.channels.status import ChannelStatus, ProbeResult
from feishu_channel.core.pipeline import Pipeline, PipelineContext
from feishu_channel.core.runtime import ChannelRuntime
from feishu_channel.pipeline import build_inbound_pipeline

if TYPE_CHECKING:
    from lark_oapi.api.im.v1 import P2ImMessageReceiveV1

RECONNECT_DELAY_SECONDS = 5.0


def _sdk_domain(domain: str) -> str:
    if domain == "lark":
        return lark.LARK_DOMAIN
    if domain.startswith(("http://", "https://")):
        return domain.rstrip("/")
    return lark.FEISHU_DOMAIN


def bind_sdk_loop() -> asyncio.AbstractEventLoop:
    """Give the calling thread its own loop and point the SDK's WebSocket client at it.

    ``lark_oapi.ws.client`` captures a module-level loop at import time and
    ``Client.start()`` runs on it. That loop belongs to the importing thread,
    so a worker thread must swap in its own before starting the client. This
    is the only place that writes the SDK's module state.
    """
    thread_loop = asyncio.new_event_loop()
    asyncio.set_event_loop(thread_loop)
    lark_ws_client.loop = thread_loop
    return thread_loop


class FeishuMonitor:
    """Owns one account's event connection and runs every event through the pipeline.

    Events arrive on the SDK's worker thread and are scheduled onto the
    asyncio loop as independent tasks. Once stopped, further deliveries are
    ignored and the runtime's abort event cancels outstanding API calls.
    """

    def __init__(
        self,
        runtime: ChannelRuntime,
        *,
        pipeline: Pipeline | None = None,
        status: ChannelStatus | None = None,
    ):
        self.runtime = runtime
        self.pipeline = pipeline or build_inbound_pipeline()
        self.status = status or ChannelStatus.for_account(runtime.account)
        if runtime.status is None:
            runtime.status = self.status.apply
        self._stopped = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._ws_client: Any = None
        self._ws_thread: threading.Thread | None = None

    @property
    def account_id(self) -> str:
        return self.runtime.account_id

    @property
    def stopped(self) -> bool:
        return self._stopped

    # ── Probe ───────────────────────────────────────────────────────

    async def probe(self) -> ProbeResult:
        """Fetch bot info so mention detection knows the bot's open id."""
        started = time.monotonic()
        try:
            info = await self.runtime.client.get_bot_info()
        except Exception as e:
            result = ProbeResult(ok=False, error=str(e))
            logger.warning(f"[{self.account_id}] Feishu bot probe failed: {e}")
        else:
            self.runtime.bot_info = info
            result = ProbeResult(ok=True, bot_open_id=info.open_id, bot_name=info.app_name)
        result.elapsed_ms = int((time.monotonic() - started) * 1000)
        self.status.probe = result
        self.status.last_probe_at = self.runtime.now_ms()
        return result

    # ── Event handling ──────────────────────────────────────────────

    async def handle_event(self, event: dict[str, Any]) -> PipelineContext | None:
        """Run one raw message event through the pipeline; failures are logged, never raised."""
        if self._stopped:
            return None
        self.runtime.mark_inbound()
        try:
            return await self.pipeline.run(self.runtime, event)
        except Exception as e:
            logger.error(f"[{self.account_id}] Feishu event handler failed: {e}")
            return None

    def submit(self, event: dict[str, Any]) -> asyncio.Task[PipelineContext | None] | None:
        """Schedule ``event`` as its own task on the running loop."""
        if self._stopped:
            return None
        task = asyncio.get_running_loop().create_task(self.handle_event(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _on_message_sync(self, data: P2ImMessageReceiveV1) -> None:
        """Called on the SDK thread; hands the event to the asyncio loop."""
        if self._stopped or self._loop is None or not self._loop.is_running():
            return
        try:
            event = json.loads(lark.JSON.marshal(data.event))
        except (TypeError, ValueError) as e:
            logger.warning(f"[{self.account_id}] undecodable Feishu event: {e}")
            return
        self._loop.call_soon_threadsafe(self.submit, event)

    # ── Lifecycle ───────────────────────────────────────────────────

    def _build_event_handler(self) -> Any:
        return (
            lark.EventDispatcherHandler.builder("", "", lark.LogLevel.WARNING)
            .register_p2_im_message_receive_v1(self._on_message_sync)
            .build()
        )

    def _run_ws(self) -> None:
        thread_loop = bind_sdk_loop()
        try:
            while not self._stopped:
                try:
                    self._ws_client.start()
                except Exception as e:
                    logger.warning(f"[{self.account_id}] Feishu WebSocket error: {e}")
                    self._report({"last_error": str(e)})
                if not self._stopped:
                    time.sleep(RECONNECT_DELAY_SECONDS)
        finally:
            thread_loop.close()

    def _report(self, patch: dict[str, Any]) -> None:
        if self._loop is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(self.status.apply, patch)

    async def start(self) -> None:
        """Probe the bot and open the long connection."""
        account = self.runtime.account
        if not account.configured:
            raise RuntimeError(f"Feishu account {account.account_id} has no app credentials")
        self._loop = asyncio.get_running_loop()
        self._stopped = False
        self.status.apply({"running": True, "last_start_at": self.runtime.now_ms(), "last_error": None})

        await self.probe()

        self._ws_client = lark.ws.Client(
            account.app_id,
            account.app_secret,
            event_handler=self._build_event_handler(),
            log_level=lark.LogLevel.WARNING,
            domain=_sdk_domain(account.domain),
        )
        self._ws_thread = threading.Thread(target=self._run_ws, name=f"feishu-ws-{account.account_id}", daemon=True)
        self._ws_thread.start()
        logger.info(f"[feishu] WebSocket connection started for account={account.account_id}")

    async def stop(self) -> None:
        """Ignore further events and cancel in-flight API calls."""
        if self._stopped:
            return
        self._stopped = True
        self.runtime.abort.set()
        self.status.apply({"running": False, "last_stop_at": self.runtime.now_ms()})
        logger.info(f"[feishu] monitor stopped for account={self.account_id}")

    async def run(self) -> None:
        """Start, then block until the runtime's abort event is set."""
        await self.start()
        try:
            await self.runtime.abort.wait()
        finally:
            await self.stop()
