"""Per-account runtime status and the issues derived from it."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Literal

from feishu_channel.config.accounts import ResolvedAccount

type IssueKind = Literal["config", "runtime"]


@dataclass(slots=True)
class ProbeResult:
    ok: bool
    bot_open_id: str | None = None
    bot_name: str | None = None
    error: str | None = None
    elapsed_ms: int | None = None


@dataclass(slots=True, kw_only=True)
class ChannelStatus:
    """Mutable status snapshot for one account, updated by the monitor."""

    account_id: str
    name: str | None = None
    enabled: bool = True
    configured: bool = False
    running: bool = False
    last_start_at: int | None = None
    last_stop_at: int | None = None
    last_inbound_at: int | None = None
    last_outbound_at: int | None = None
    last_error: str | None = None
    last_probe_at: int | None = None
    probe: ProbeResult | None = None

    @classmethod
    def for_account(cls, account: ResolvedAccount) -> ChannelStatus:
        return cls(
            account_id=account.account_id,
            name=account.name,
            enabled=account.enabled,
            configured=account.configured,
        )

    def apply(self, patch: dict[str, Any]) -> None:
        """Merge a partial update such as ``{"last_inbound_at": ms}``."""
        for key, value in patch.items():
            if key not in self.__dataclass_fields__:
                raise KeyError(f"unknown status field: {key}")
            setattr(self, key, value)


@dataclass(frozen=True, slots=True, kw_only=True)
class StatusIssue:
    channel: str
    account_id: str
    kind: IssueKind
    message: str
    fix: str | None = None


def collect_status_issues(snapshots: Iterable[ChannelStatus]) -> list[StatusIssue]:
    """Problems worth surfacing for enabled accounts."""
    issues: list[StatusIssue] = []
    for entry in snapshots:
        if not entry.enabled:
            continue
        if not entry.configured:
            issues.append(
                StatusIssue(
                    channel="feishu",
                    account_id=entry.account_id,
                    kind="config",
                    message="Feishu app credentials are missing.",
                    fix="Set channels.feishu.appId and channels.feishu.appSecret (or appSecretFile).",
                )
            )
            continue
        if entry.probe is not None and not entry.probe.ok:
            issues.append(
                StatusIssue(
                    channel="feishu",
                    account_id=entry.account_id,
                    kind="runtime",
                    message=f"Feishu bot probe failed: {entry.probe.error or 'unknown error'}",
                    fix="Check the app credentials and that the bot capability is enabled.",
                )
            )
        if entry.last_error:
            issues.append(
                StatusIssue(
                    channel="feishu",
                    account_id=entry.account_id,
                    kind="runtime",
                    message=f"Feishu connection error: {entry.last_error}",
                )
            )
    return issues
