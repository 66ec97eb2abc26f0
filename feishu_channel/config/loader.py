"""Configuration loading utilities."""

import json
import os
from pathlib import Path
from typing import Any

from loguru import logger

from feishu_channel.config.schema import Config

# Maps whose keys are ids (chat ids, account ids) and must not be case-converted.
_ID_KEYED_MAPS = frozenset({"groups", "accounts"})


def get_data_path() -> Path:
    """Get the feishu-channel data directory.

    Respects FEISHU_CHANNEL_HOME; falls back to ~/.feishu-channel.
    """
    home = os.environ.get("FEISHU_CHANNEL_HOME", "").strip()
    path = Path(home).expanduser() if home else Path.home() / ".feishu-channel"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return get_data_path() / "config.json"


def resolve_data_file(value: str) -> Path:
    """Expand ``~``; relative paths resolve under the data directory."""
    path = Path(value).expanduser()
    return path if path.is_absolute() else get_data_path() / path


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file or fall back to defaults.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Loaded configuration object.
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            with open(path) as f:
                raw = json.load(f)
            if not isinstance(raw, dict):
                raise ValueError("Config root must be a JSON object")
            return Config.model_validate(convert_keys(raw))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            logger.warning("Using default configuration.")

    return Config()


def save_config(config: Config, config_path: Path | None = None) -> None:
    """Atomically write config as camelCase JSON with secure permissions."""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    data = convert_to_camel(config.model_dump(exclude_none=True))
    tmp_path = path.with_name(f".{path.name}.tmp-{os.getpid()}")
    with open(tmp_path, "w") as f:
        json.dump(data, f, indent=2)
    try:
        tmp_path.chmod(0o600)
    except OSError:
        pass
    os.replace(tmp_path, path)


def convert_keys(data: Any, *, preserve_keys: bool = False) -> Any:
    """Convert camelCase keys to snake_case for Pydantic.

    Keys of id-keyed maps (``groups``, ``accounts``) are kept verbatim.
    """
    if isinstance(data, dict):
        converted: dict[str, Any] = {}
        for key, value in data.items():
            new_key = key if preserve_keys else camel_to_snake(key)
            converted[new_key] = convert_keys(value, preserve_keys=new_key in _ID_KEYED_MAPS and not preserve_keys)
        return converted
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any, *, preserve_keys: bool = False) -> Any:
    """Convert snake_case keys to camelCase."""
    if isinstance(data, dict):
        converted: dict[str, Any] = {}
        for key, value in data.items():
            new_key = key if preserve_keys else snake_to_camel(key)
            converted[new_key] = convert_to_camel(value, preserve_keys=key in _ID_KEYED_MAPS and not preserve_keys)
        return converted
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0:
            result.append("_")
        result.append(char.lower())
    return "".join(result)


def snake_to_camel(name: str) -> str:
    """Convert snake_case to camelCase."""
    components = name.split("_")
    return components[0] + "".join(x.title() for x in components[1:])
