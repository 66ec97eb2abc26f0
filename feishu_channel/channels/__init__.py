"""Feishu channel monitor and status reporting."""

from feishu_channel.channels.status import ChannelStatus, ProbeResult, StatusIssue, collect_status_issues

__all__ = ["ChannelStatus", "ProbeResult", "StatusIssue", "collect_status_issues"]
