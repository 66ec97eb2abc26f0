"""Error taxonomy for Feishu API calls and reply delivery."""

from __future__ import annotations


class FeishuError(Exception):
    """Base class for every error raised by feishu-channel."""


class AuthError(FeishuError):
    """Tenant access token exchange failed or returned no token."""

    def __init__(self, message: str, *, code: int | None = None, msg: str | None = None):
        super().__init__(message)
        self.code = code
        self.msg = msg


class ApiError(FeishuError):
    """Feishu reported a non-zero status code (or a failed HTTP status)."""

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        msg: str | None = None,
        endpoint: str = "",
    ):
        super().__init__(message)
        self.code = code
        self.msg = msg
        self.endpoint = endpoint

    def __str__(self) -> str:
        base = super().__str__()
        if self.code is None:
            return base
        return f"{base} (code={self.code})"


class RequestTimeoutError(FeishuError, TimeoutError):
    """A request exceeded its caller-specified deadline."""


class RequestCancelledError(FeishuError):
    """A request was abandoned because the owning connection was stopped."""


class DeliveryError(FeishuError):
    """Sending or editing an outbound message failed."""

    def __init__(self, message: str, *, operation: str = ""):
        super().__init__(message)
        self.operation = operation
