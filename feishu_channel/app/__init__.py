"""Application wiring."""

from feishu_channel.app.bootstrap import build_client, build_local_runtime

__all__ = ["build_client", "build_local_runtime"]
