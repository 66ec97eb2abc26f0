"""Feishu Open Platform API client.

Thin async wrapper over the IM endpoints the channel needs. Every call
acquires a tenant access token (cached per app id), treats a non-zero
``code`` in the response body as a failure regardless of HTTP status, and
honours both a per-call timeout and a connection-wide cancellation event.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable
from email.message import Message
from typing import Any, Literal

import httpx
from loguru import logger

from feishu_channel.api.errors import ApiError, AuthError, RequestCancelledError, RequestTimeoutError
from feishu_channel.api.token_cache import TokenCache
from feishu_channel.core.models import BotInfo, DownloadedMedia, ReceiveIdType, SentMessage

FEISHU_DOMAIN = "https://open.feishu.cn"
LARK_DOMAIN = "https://open.larksuite.com"
API_PREFIX = "/open-apis"
TOKEN_REFRESH_BUFFER_SECONDS = 5 * 60
DEFAULT_TOKEN_TTL_SECONDS = 7200
DEFAULT_TIMEOUT_SECONDS = 30.0

type ImageType = Literal["message", "avatar"]
type FileType = Literal["opus", "mp4", "pdf", "doc", "xls", "ppt", "stream"]


def resolve_base_url(domain: str) -> str:
    """Map ``feishu``/``lark`` (or an explicit URL) to an API origin."""
    value = (domain or "").strip()
    if value.lower() == "lark":
        return LARK_DOMAIN
    if value.startswith(("http://", "https://")):
        return value.rstrip("/")
    return FEISHU_DOMAIN


def parse_content_disposition(header: str | None) -> str | None:
    """Extract a filename from a ``Content-Disposition`` header, if any.

    Handles quoted values (spaces and ``;`` included) and RFC 2231
    ``filename*=`` encoding; an undecodable name yields ``None``.
    """
    if not header:
        return None
    message = Message()
    message["content-disposition"] = header
    name = message.get_filename()
    if not name or "\ufffd" in name:
        return None
    return name.strip() or None


class FeishuClient:
    """Authenticated Feishu API client for one app (bot account)."""

    def __init__(
        self,
        app_id: str,
        app_secret: str,
        *,
        domain: str = "feishu",
        token_cache: TokenCache | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        abort: asyncio.Event | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.app_id = app_id
        self.app_secret = app_secret
        self.base_url = resolve_base_url(domain)
        self.token_cache = token_cache or TokenCache()
        self.timeout_seconds = timeout_seconds
        self.abort = abort
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    async def __aenter__(self) -> FeishuClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(base_url=self.base_url, transport=self._transport)
        return self._http

    # ── Transport helpers ───────────────────────────────────────────

    async def _guarded(
        self,
        request: Awaitable[httpx.Response],
        *,
        timeout: float,
        abort: asyncio.Event | None,
        operation: str,
    ) -> httpx.Response:
        """Await ``request`` racing the deadline and the cancellation event."""
        signal = abort or self.abort
        request_task = asyncio.ensure_future(request)
        waiters: set[asyncio.Future[Any]] = {request_task}
        abort_task: asyncio.Future[Any] | None = None
        if signal is not None:
            abort_task = asyncio.ensure_future(signal.wait())
            waiters.add(abort_task)
        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if abort_task is not None:
                abort_task.cancel()
            if not request_task.done():
                request_task.cancel()
                with contextlib.suppress(asyncio.CancelledError, httpx.HTTPError):
                    await request_task

        if request_task in done and not request_task.cancelled():
            try:
                return request_task.result()
            except httpx.TimeoutException as e:
                raise RequestTimeoutError(f"{operation} timed out after {timeout:.1f}s") from e
            except httpx.HTTPError as e:
                raise ApiError(f"{operation} failed: {e}", endpoint=operation) from e
        if abort_task is not None and abort_task in done:
            raise RequestCancelledError(f"{operation} cancelled")
        raise RequestTimeoutError(f"{operation} timed out after {timeout:.1f}s")

    async def _send(
        self,
        method: str,
        path: str,
        *,
        timeout: float | None = None,
        abort: asyncio.Event | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        effective_timeout = timeout if timeout is not None else self.timeout_seconds
        signal = abort or self.abort
        if signal is not None and signal.is_set():
            raise RequestCancelledError(f"{method} {path} cancelled")
        request = self._client().request(
            method,
            f"{API_PREFIX}{path}",
            timeout=effective_timeout,
            **kwargs,
        )
        return await self._guarded(
            request,
            timeout=effective_timeout,
            abort=signal,
            operation=f"{method} {path}",
        )

    @staticmethod
    def _decode(response: httpx.Response, endpoint: str) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise ApiError(
                f"Feishu API returned non-JSON body: {endpoint} (HTTP {response.status_code})",
                code=response.status_code,
                endpoint=endpoint,
            ) from e
        if not isinstance(data, dict):
            raise ApiError(f"Feishu API returned unexpected body: {endpoint}", endpoint=endpoint)
        return data

    @staticmethod
    def _check(data: dict[str, Any], endpoint: str, fallback: str) -> dict[str, Any]:
        code = data.get("code", 0)
        if code != 0:
            msg = data.get("msg")
            raise ApiError(msg or fallback, code=code, msg=msg, endpoint=endpoint)
        return data

    # ── Token management ────────────────────────────────────────────

    async def get_access_token(
        self,
        *,
        timeout: float | None = None,
        abort: asyncio.Event | None = None,
    ) -> str:
        """Return a tenant access token, exchanging credentials when needed."""
        cached = self.token_cache.get(self.app_id)
        if cached and cached.is_fresh(self.token_cache.now(), TOKEN_REFRESH_BUFFER_SECONDS):
            return cached.token

        endpoint = "/auth/v3/tenant_access_token/internal"
        response = await self._send(
            "POST",
            endpoint,
            json={"app_id": self.app_id, "app_secret": self.app_secret},
            timeout=timeout,
            abort=abort,
        )
        try:
            data = self._decode(response, endpoint)
        except ApiError as e:
            raise AuthError(str(e), code=e.code) from e

        token = data.get("tenant_access_token")
        code = data.get("code", 0)
        if code != 0 or not token:
            msg = data.get("msg")
            raise AuthError(msg or "Failed to get tenant access token", code=code, msg=msg)

        expire = data.get("expire") or DEFAULT_TOKEN_TTL_SECONDS
        self.token_cache.set(self.app_id, token, expire)
        logger.debug(f"[feishu] refreshed tenant access token for app={self.app_id} (expires in {expire}s)")
        return token

    def clear_token(self) -> None:
        self.token_cache.clear(self.app_id)

    # ── Generic call ────────────────────────────────────────────────

    async def call(
        self,
        endpoint: str,
        *,
        method: str = "POST",
        body: dict[str, Any] | None = None,
        query: dict[str, str] | None = None,
        timeout: float | None = None,
        abort: asyncio.Event | None = None,
    ) -> dict[str, Any]:
        """Issue an authenticated JSON request and return the decoded body."""
        token = await self.get_access_token(timeout=timeout, abort=abort)
        response = await self._send(
            method,
            endpoint,
            params=query,
            json=body,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            abort=abort,
        )
        data = self._decode(response, endpoint)
        return self._check(data, endpoint, f"Feishu API error: {endpoint}")

    # ── Bot info ────────────────────────────────────────────────────

    async def get_bot_info(self, *, timeout: float | None = None) -> BotInfo:
        data = await self.call("/bot/v3/info", method="GET", timeout=timeout)
        return BotInfo.from_payload(data)

    # ── Messages ────────────────────────────────────────────────────

    async def send_message(
        self,
        receive_id: str,
        msg_type: str,
        content: str,
        receive_id_type: ReceiveIdType = "open_id",
        *,
        timeout: float | None = None,
    ) -> SentMessage:
        data = await self.call(
            "/im/v1/messages",
            body={"receive_id": receive_id, "msg_type": msg_type, "content": content},
            query={"receive_id_type": receive_id_type},
            timeout=timeout,
        )
        return SentMessage.from_response(data)

    async def reply_message(
        self,
        message_id: str,
        msg_type: str,
        content: str,
        *,
        timeout: float | None = None,
    ) -> SentMessage:
        """Reply to ``message_id``; the recipient is implied by the target message."""
        data = await self.call(
            f"/im/v1/messages/{message_id}/reply",
            body={"msg_type": msg_type, "content": content},
            timeout=timeout,
        )
        return SentMessage.from_response(data)

    async def update_message_card(
        self,
        message_id: str,
        content: str,
        *,
        timeout: float | None = None,
    ) -> None:
        """Patch an interactive card previously sent by this bot."""
        await self.call(
            f"/im/v1/messages/{message_id}",
            method="PATCH",
            body={"content": content},
            timeout=timeout,
        )

    async def get_message(self, message_id: str, *, timeout: float | None = None) -> dict[str, Any]:
        data = await self.call(f"/im/v1/messages/{message_id}", method="GET", timeout=timeout)
        payload = data.get("data")
        return payload if isinstance(payload, dict) else {}

    # ── Media ───────────────────────────────────────────────────────

    async def _upload(
        self,
        endpoint: str,
        *,
        form: dict[str, str],
        field_name: str,
        filename: str,
        data: bytes,
        key_name: str,
        timeout: float | None,
    ) -> str:
        token = await self.get_access_token(timeout=timeout)
        response = await self._send(
            "POST",
            endpoint,
            data=form,
            files={field_name: (filename, data)},
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
        )
        body = self._check(self._decode(response, endpoint), endpoint, f"Failed to upload via {endpoint}")
        payload = body.get("data") if isinstance(body.get("data"), dict) else {}
        key = payload.get(key_name)
        if not key:
            raise ApiError(f"Upload returned no {key_name}", endpoint=endpoint)
        return str(key)

    async def upload_image(
        self,
        data: bytes,
        image_type: ImageType = "message",
        filename: str = "image.png",
        *,
        timeout: float | None = None,
    ) -> str:
        """Upload image bytes and return the ``image_key``."""
        return await self._upload(
            "/im/v1/images",
            form={"image_type": image_type},
            field_name="image",
            filename=filename,
            data=data,
            key_name="image_key",
            timeout=timeout,
        )

    async def upload_file(
        self,
        data: bytes,
        file_name: str,
        file_type: FileType = "stream",
        *,
        timeout: float | None = None,
    ) -> str:
        """Upload file bytes and return the ``file_key``."""
        return await self._upload(
            "/im/v1/files",
            form={"file_type": file_type, "file_name": file_name},
            field_name="file",
            filename=file_name,
            data=data,
            key_name="file_key",
            timeout=timeout,
        )

    async def _download(self, endpoint: str, *, timeout: float | None) -> httpx.Response:
        token = await self.get_access_token(timeout=timeout)
        response = await self._send(
            "GET",
            endpoint,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
        )
        if response.is_error:
            raise ApiError(
                f"Failed to download {endpoint}: {response.status_code}",
                code=response.status_code,
                endpoint=endpoint,
            )
        return response

    async def download_image(self, image_key: str, *, timeout: float | None = None) -> DownloadedMedia:
        response = await self._download(f"/im/v1/images/{image_key}", timeout=timeout)
        return DownloadedMedia(
            data=response.content,
            content_type=response.headers.get("content-type"),
        )

    async def download_file(self, file_key: str, *, timeout: float | None = None) -> DownloadedMedia:
        response = await self._download(f"/im/v1/files/{file_key}", timeout=timeout)
        return DownloadedMedia(
            data=response.content,
            content_type=response.headers.get("content-type"),
            file_name=parse_content_disposition(response.headers.get("content-disposition")),
        )
