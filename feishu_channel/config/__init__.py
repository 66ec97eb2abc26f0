"""Configuration module for feishu-channel."""

from feishu_channel.config.accounts import ResolvedAccount, list_account_ids, resolve_account
from feishu_channel.config.loader import get_config_path, load_config, save_config
from feishu_channel.config.schema import Config

__all__ = [
    "Config",
    "ResolvedAccount",
    "get_config_path",
    "list_account_ids",
    "load_config",
    "resolve_account",
    "save_config",
]
