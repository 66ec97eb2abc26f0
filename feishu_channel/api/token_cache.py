"""Per-app tenant access token cache."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class CachedToken:
    """Access token plus its absolute expiry (epoch seconds)."""

    token: str
    expires_at: float

    def is_fresh(self, now: float, buffer_seconds: float) -> bool:
        return self.expires_at > now + buffer_seconds


class TokenCache:
    """Mapping of app id -> cached token.

    Concurrent misses for the same app may both exchange credentials; the
    last write wins.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._tokens: dict[str, CachedToken] = {}

    def now(self) -> float:
        return self._clock()

    def get(self, app_id: str) -> CachedToken | None:
        return self._tokens.get(app_id)

    def set(self, app_id: str, token: str, expires_in: float) -> CachedToken:
        cached = CachedToken(token=token, expires_at=self._clock() + float(expires_in))
        self._tokens[app_id] = cached
        return cached

    def clear(self, app_id: str | None = None) -> None:
        if app_id is None:
            self._tokens.clear()
        else:
            self._tokens.pop(app_id, None)

    def __len__(self) -> int:
        return len(self._tokens)
