"""Outbound send API used outside the reply pipeline (CLI, agent tools).

Every operation returns a result object instead of raising, so callers can
report failures without wrapping each call.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from loguru import logger

from feishu_channel.api.client import FeishuClient, FileType, ImageType
from feishu_channel.core.models import ReceiveIdType
from feishu_channel.delivery.cards import render_card
from feishu_channel.delivery.targets import infer_receive_id_type, normalize_target

NO_CREDENTIALS = "No Feishu app credentials configured"
NO_RECIPIENT = "No recipient provided"


@dataclass(frozen=True, slots=True, kw_only=True)
class SendResult:
    ok: bool
    message_id: str | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class UploadResult:
    ok: bool
    image_key: str | None = None
    file_key: str | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class DownloadResult:
    ok: bool
    data: bytes | None = None
    content_type: str | None = None
    file_name: str | None = None
    error: str | None = None


class FeishuSender:
    """Send text, images and files to ``feishu:``-style targets."""

    def __init__(self, client: FeishuClient):
        self.client = client

    @property
    def configured(self) -> bool:
        return bool(self.client.app_id and self.client.app_secret)

    def _resolve(self, to: str, receive_id_type: ReceiveIdType | None) -> tuple[str, ReceiveIdType]:
        target = normalize_target(to)
        return target, receive_id_type or infer_receive_id_type(target)

    def _precheck(self, to: str | None, key: str | None = None, key_label: str = "") -> str | None:
        if not self.configured:
            return NO_CREDENTIALS
        if to is not None and not to.strip():
            return NO_RECIPIENT
        if key is not None and not key.strip():
            return f"No {key_label} provided"
        return None

    async def send_text(
        self,
        to: str,
        text: str,
        *,
        reply_to_message_id: str | None = None,
        mention_user_id: str | None = None,
        receive_id_type: ReceiveIdType | None = None,
    ) -> SendResult:
        """Send markdown ``text`` as an interactive card, optionally quoting a message.

        ``mention_user_id`` only applies to quoted replies.
        """
        if error := self._precheck(to):
            return SendResult(ok=False, error=error)
        target, id_type = self._resolve(to, receive_id_type)
        content = render_card(text, mention_user_id if reply_to_message_id else None)
        try:
            if reply_to_message_id:
                sent = await self.client.reply_message(reply_to_message_id, "interactive", content)
            else:
                sent = await self.client.send_message(target, "interactive", content, id_type)
        except Exception as e:
            logger.error(f"[feishu] send to {target} failed: {e}")
            return SendResult(ok=False, error=str(e))
        return SendResult(ok=True, message_id=sent.message_id)

    async def _send_keyed(
        self,
        to: str,
        msg_type: str,
        content: dict[str, str],
        receive_id_type: ReceiveIdType | None,
    ) -> SendResult:
        target, id_type = self._resolve(to, receive_id_type)
        try:
            sent = await self.client.send_message(target, msg_type, json.dumps(content), id_type)
        except Exception as e:
            logger.error(f"[feishu] {msg_type} send to {target} failed: {e}")
            return SendResult(ok=False, error=str(e))
        return SendResult(ok=True, message_id=sent.message_id)

    async def send_image(self, to: str, image_key: str, *, receive_id_type: ReceiveIdType | None = None) -> SendResult:
        if error := self._precheck(to, image_key, "image key"):
            return SendResult(ok=False, error=error)
        return await self._send_keyed(to, "image", {"image_key": image_key.strip()}, receive_id_type)

    async def send_file(self, to: str, file_key: str, *, receive_id_type: ReceiveIdType | None = None) -> SendResult:
        if error := self._precheck(to, file_key, "file key"):
            return SendResult(ok=False, error=error)
        return await self._send_keyed(to, "file", {"file_key": file_key.strip()}, receive_id_type)

    # ── Media ───────────────────────────────────────────────────────

    async def upload_image(self, data: bytes, *, image_type: ImageType = "message", filename: str = "image.png") -> UploadResult:
        if error := self._precheck(None):
            return UploadResult(ok=False, error=error)
        try:
            image_key = await self.client.upload_image(data, image_type, filename)
        except Exception as e:
            return UploadResult(ok=False, error=str(e))
        return UploadResult(ok=True, image_key=image_key)

    async def upload_file(self, data: bytes, file_name: str, file_type: FileType = "stream") -> UploadResult:
        if error := self._precheck(None):
            return UploadResult(ok=False, error=error)
        try:
            file_key = await self.client.upload_file(data, file_name, file_type)
        except Exception as e:
            return UploadResult(ok=False, error=str(e))
        return UploadResult(ok=True, file_key=file_key)

    async def download_image(self, image_key: str) -> DownloadResult:
        if error := self._precheck(None, image_key, "image key"):
            return DownloadResult(ok=False, error=error)
        try:
            media = await self.client.download_image(image_key.strip())
        except Exception as e:
            return DownloadResult(ok=False, error=str(e))
        return DownloadResult(ok=True, data=media.data, content_type=media.content_type)

    async def download_file(self, file_key: str) -> DownloadResult:
        if error := self._precheck(None, file_key, "file key"):
            return DownloadResult(ok=False, error=error)
        try:
            media = await self.client.download_file(file_key.strip())
        except Exception as e:
            return DownloadResult(ok=False, error=str(e))
        return DownloadResult(
            ok=True,
            data=media.data,
            content_type=media.content_type,
            file_name=media.file_name,
        )

    async def upload_and_send_image(
        self,
        to: str,
        data: bytes,
        *,
        image_type: ImageType = "message",
        filename: str = "image.png",
    ) -> SendResult:
        uploaded = await self.upload_image(data, image_type=image_type, filename=filename)
        if not uploaded.ok or not uploaded.image_key:
            return SendResult(ok=False, error=uploaded.error or "Failed to upload image")
        return await self.send_image(to, uploaded.image_key)

    async def upload_and_send_file(
        self,
        to: str,
        data: bytes,
        file_name: str,
        file_type: FileType = "stream",
    ) -> SendResult:
        uploaded = await self.upload_file(data, file_name, file_type)
        if not uploaded.ok or not uploaded.file_key:
            return SendResult(ok=False, error=uploaded.error or "Failed to upload file")
        return await self.send_file(to, uploaded.file_key)
