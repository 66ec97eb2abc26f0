"""Feishu Open Platform API client."""

from feishu_channel.api.client import FeishuClient, parse_content_disposition, resolve_base_url
from feishu_channel.api.errors import (
    ApiError,
    AuthError,
    DeliveryError,
    FeishuError,
    RequestCancelledError,
    RequestTimeoutError,
)
from feishu_channel.api.token_cache import CachedToken, TokenCache

__all__ = [
    "ApiError",
    "AuthError",
    "CachedToken",
    "DeliveryError",
    "FeishuClient",
    "FeishuError",
    "RequestCancelledError",
    "RequestTimeoutError",
    "TokenCache",
    "parse_content_disposition",
    "resolve_base_url",
]
