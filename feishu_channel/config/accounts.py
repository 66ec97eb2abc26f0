"""Resolve one bot account from channel defaults plus per-account overrides."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Literal

from loguru import logger

from feishu_channel.config.schema import Config, FeishuAccountConfig, FeishuConfig, FeishuGroupConfig
from feishu_channel.core.models import ChunkMode, DmPolicy, GroupPolicy, TableMode

DEFAULT_ACCOUNT_ID = "default"

type CredentialSource = Literal["config", "file", "none"]


@dataclass(frozen=True, slots=True, kw_only=True)
class ResolvedAccount:
    """Immutable bot identity and policy for one monitoring session."""

    account_id: str
    name: str | None
    enabled: bool
    app_id: str
    app_secret: str
    credential_source: CredentialSource
    domain: str = "feishu"
    dm_policy: DmPolicy = "pairing"
    allow_from: tuple[str, ...] = ()
    group_policy: GroupPolicy = "allowlist"
    group_allow_from: tuple[str, ...] = ()
    groups: MappingProxyType[str, FeishuGroupConfig] = field(default_factory=lambda: MappingProxyType({}))
    media_max_mb: int = 20
    table_mode: TableMode = "code"
    chunk_mode: ChunkMode = "length"
    mention_heuristic: bool = True
    streaming: bool = False
    request_timeout_seconds: float = 30.0

    @property
    def configured(self) -> bool:
        return bool(self.app_id and self.app_secret)

    @property
    def media_max_bytes(self) -> int:
        return self.media_max_mb * 1024 * 1024

    def group_config(self, chat_id: str) -> FeishuGroupConfig | None:
        return self.groups.get(chat_id)


def list_account_ids(config: Config) -> list[str]:
    """Configured account ids; the implicit default account when none are declared."""
    ids = sorted(config.channels.feishu.accounts)
    return ids or [DEFAULT_ACCOUNT_ID]


def resolve_default_account_id(config: Config) -> str:
    feishu = config.channels.feishu
    if feishu.default_account and feishu.default_account in feishu.accounts:
        return feishu.default_account
    return list_account_ids(config)[0]


def _read_secret_file(path_value: str) -> str:
    path = Path(path_value).expanduser()
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError as e:
        logger.warning(f"Failed to read Feishu app secret file {path}: {e}")
        return ""


def _pick[T](override: T | None, fallback: T) -> T:
    return fallback if override is None else override


def resolve_account(config: Config, account_id: str | None = None) -> ResolvedAccount:
    """Merge ``channels.feishu.accounts.<id>`` over the channel-level defaults."""
    feishu: FeishuConfig = config.channels.feishu
    resolved_id = (account_id or "").strip() or resolve_default_account_id(config)
    override = feishu.accounts.get(resolved_id) or FeishuAccountConfig()

    app_id = (_pick(override.app_id, feishu.app_id) or "").strip()
    app_secret = (_pick(override.app_secret, feishu.app_secret) or "").strip()
    source: CredentialSource = "config" if app_secret else "none"
    secret_file = _pick(override.app_secret_file, feishu.app_secret_file)
    if not app_secret and secret_file:
        app_secret = _read_secret_file(secret_file)
        source = "file" if app_secret else "none"

    groups = dict(feishu.groups)
    if override.groups:
        groups.update(override.groups)

    return ResolvedAccount(
        account_id=resolved_id,
        name=_pick(override.name, feishu.name),
        enabled=feishu.enabled and _pick(override.enabled, True),
        app_id=app_id,
        app_secret=app_secret,
        credential_source=source,
        domain=_pick(override.domain, feishu.domain),
        dm_policy=_pick(override.dm_policy, feishu.dm_policy),
        allow_from=tuple(_pick(override.allow_from, feishu.allow_from)),
        group_policy=_pick(override.group_policy, feishu.group_policy),
        group_allow_from=tuple(_pick(override.group_allow_from, feishu.group_allow_from)),
        groups=MappingProxyType(groups),
        media_max_mb=_pick(override.media_max_mb, feishu.media_max_mb),
        table_mode=_pick(override.table_mode, feishu.table_mode),
        chunk_mode=_pick(override.chunk_mode, feishu.chunk_mode),
        mention_heuristic=_pick(override.mention_heuristic, feishu.mention_heuristic),
        streaming=_pick(override.streaming, feishu.streaming),
        request_timeout_seconds=feishu.request_timeout_seconds,
    )
