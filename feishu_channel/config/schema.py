"""Configuration schema using Pydantic."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings

DEFAULT_MEDIA_MAX_MB = 20


class FeishuGroupConfig(BaseModel):
    """Per-group overrides keyed by chat id."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool | None = None
    require_mention: bool | None = None


class FeishuAccountConfig(BaseModel):
    """Per-account overrides; unset fields fall back to the channel defaults."""

    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    enabled: bool | None = None
    app_id: str | None = None
    app_secret: str | None = None
    app_secret_file: str | None = None
    domain: Literal["feishu", "lark"] | None = None
    dm_policy: Literal["pairing", "allowlist", "open", "disabled"] | None = None
    allow_from: list[str] | None = None
    group_policy: Literal["allowlist", "open", "disabled"] | None = None
    group_allow_from: list[str] | None = None
    groups: dict[str, FeishuGroupConfig] | None = None
    media_max_mb: int | None = None
    table_mode: Literal["off", "code", "bullets"] | None = None
    chunk_mode: Literal["length", "newline"] | None = None
    mention_heuristic: bool | None = None
    streaming: bool | None = None


class FeishuConfig(BaseModel):
    """Feishu/Lark channel configuration (WebSocket long connection)."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = False
    name: str | None = None
    app_id: str = ""  # App ID from Feishu Open Platform
    app_secret: str = ""  # App Secret from Feishu Open Platform
    app_secret_file: str | None = None
    domain: Literal["feishu", "lark"] = "feishu"
    dm_policy: Literal["pairing", "allowlist", "open", "disabled"] = "pairing"
    allow_from: list[str] = Field(default_factory=list)
    group_policy: Literal["allowlist", "open", "disabled"] = "allowlist"
    group_allow_from: list[str] = Field(default_factory=list)
    groups: dict[str, FeishuGroupConfig] = Field(default_factory=dict)
    media_max_mb: int = Field(default=DEFAULT_MEDIA_MAX_MB, ge=1)
    table_mode: Literal["off", "code", "bullets"] = "code"
    chunk_mode: Literal["length", "newline"] = "length"
    mention_heuristic: bool = True  # prefix-sniffing fallback for self-mentions
    streaming: bool = False  # patch one card instead of sending chunks
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    default_account: str | None = None
    accounts: dict[str, FeishuAccountConfig] = Field(default_factory=dict)


class ChannelsConfig(BaseModel):
    """Configuration for chat channels."""

    feishu: FeishuConfig = Field(default_factory=FeishuConfig)


class CommandsConfig(BaseModel):
    """Control-command authorization settings."""

    use_access_groups: bool = True


class SessionConfig(BaseModel):
    """Session store settings."""

    store: str | None = None  # JSON file for session timestamps; relative to the data dir


class Config(BaseSettings):
    """Root configuration for feishu-channel."""

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        env_prefix="FEISHU_CHANNEL_",
        env_nested_delimiter="__",
    )

    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
