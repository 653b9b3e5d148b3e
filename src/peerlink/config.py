"""
PeerLink - Configuration Management

This module handles loading, merging, and managing configuration from
TOML files and environment variables. Supports default values and
runtime configuration updates.

Author: peerlink contributors
Version: 1.0.0
"""

import copy
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

# Python 3.11+ has tomllib built-in, older versions need tomli
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from .constants import (
    CLOSE_RETRY_DELAY,
    CONFIG_FILENAME,
    DEFAULT_DATA_DIR,
    DEFAULT_PEERS,
    GLARE_ADOPT_INCOMING,
    GLARE_BY_IDENTITY,
    IDENTITY_PREFIX,
    MAX_ATTACHMENT_SIZE,
    MAX_MESSAGE_SIZE,
    MAX_RETRY_DELAY,
    REINIT_DELAY,
    RETRY_BACKOFF_MULTIPLIER,
    UNAVAILABLE_RETRY_DELAY,
)
from .errors import ConfigError, ErrorCode

# Default configuration dictionary
DEFAULT_CONFIG: Dict[str, Any] = {
    "identity": {
        "prefix": IDENTITY_PREFIX,
    },
    "peers": dict(DEFAULT_PEERS),
    "connection": {
        "unavailable_retry_delay": UNAVAILABLE_RETRY_DELAY,
        "close_retry_delay": CLOSE_RETRY_DELAY,
        "reinit_delay": REINIT_DELAY,
        "backoff_multiplier": RETRY_BACKOFF_MULTIPLIER,
        "max_retry_delay": MAX_RETRY_DELAY,
        "glare_resolution": GLARE_ADOPT_INCOMING,
        "reliable": True,
    },
    "calls": {
        "auto_answer": False,
        "audio": True,
        "video": True,
    },
    "limits": {
        "max_message_size": MAX_MESSAGE_SIZE,
        "max_attachment_size": MAX_ATTACHMENT_SIZE,
    },
    "logging": {
        "level": "INFO",
        "file_logging": False,
        "console_logging": True,
    },
}


class Config:
    """Configuration manager for PeerLink.

    Loads configuration from TOML files, merges with defaults,
    and applies environment variable overrides.

    Attributes:
        config_path: Path to the configuration file
        data: Configuration dictionary
    """

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration file (optional)
                If not provided, uses default location
        """
        if config_path is None:
            data_dir = Path(DEFAULT_DATA_DIR).expanduser()
            config_path = data_dir / CONFIG_FILENAME

        self.config_path = Path(config_path)
        self.data = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file and merge with defaults.

        Raises:
            ConfigError: If configuration loading or parsing fails
        """
        config = copy.deepcopy(DEFAULT_CONFIG)

        if self.config_path.exists():
            try:
                with open(self.config_path, "rb") as f:
                    file_config = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigError(
                    ErrorCode.E704_CONFIG_PARSE_ERROR,
                    f"Failed to parse configuration file: {e}",
                    {"path": str(self.config_path), "error": str(e)},
                )

            config = self._merge_config(config, file_config)

        return self._apply_env_overrides(config)

    def _merge_config(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge override config into base config."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration.

        Environment variables follow the pattern: PEERLINK_SECTION_KEY
        For example: PEERLINK_CONNECTION_CLOSE_RETRY_DELAY=1.5

        The ``peers`` table is not overridable from the environment.
        """
        result = copy.deepcopy(config)

        for section, settings in config.items():
            if not isinstance(settings, dict) or section == "peers":
                continue

            for key in settings:
                env_var = f"PEERLINK_{section.upper()}_{key.upper()}"
                env_value = os.environ.get(env_var)

                if env_value is not None:
                    original_type = type(settings[key])
                    try:
                        if original_type == bool:
                            result[section][key] = env_value.lower() in ("true", "1", "yes")
                        elif original_type == int:
                            result[section][key] = int(env_value)
                        elif original_type == float:
                            result[section][key] = float(env_value)
                        else:
                            result[section][key] = env_value
                    except ValueError:
                        # Keep original value if conversion fails
                        pass

        return result

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """Get a configuration value."""
        return self.data.get(section, {}).get(key, default)

    def set(self, section: str, key: str, value: Any) -> None:
        """Set a configuration value."""
        if section not in self.data:
            self.data[section] = {}

        self.data[section][key] = value

    def save(self) -> None:
        """Save current configuration to file.

        Raises:
            ConfigError: If saving fails
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

            with open(self.config_path, "w") as f:
                self._write_toml(f, self.data)

        except OSError as e:
            raise ConfigError(
                ErrorCode.E702_CONFIG_SAVE_FAILED,
                f"Failed to save configuration: {e}",
                {"path": str(self.config_path), "error": str(e)},
            )

    @staticmethod
    def _write_toml(file, data: Dict[str, Any]) -> None:
        """Write configuration data as TOML format."""
        for section, settings in data.items():
            if isinstance(settings, dict):
                file.write(f"[{section}]\n")
                for key, value in settings.items():
                    if isinstance(value, bool):
                        file.write(f"{key} = {str(value).lower()}\n")
                    elif isinstance(value, (int, float)):
                        file.write(f"{key} = {value}\n")
                    elif isinstance(value, str):
                        file.write(f'{key} = "{value}"\n')
                file.write("\n")

    def to_dict(self) -> Dict[str, Any]:
        """Get configuration as dictionary."""
        return copy.deepcopy(self.data)

    @classmethod
    def create_example(cls, path: Path) -> None:
        """Create an example configuration file.

        Raises:
            ConfigError: If file creation fails
        """
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)

            with open(path, "w") as f:
                f.write("# PeerLink Configuration File\n")
                f.write("# Generated example configuration\n\n")
                cls._write_toml(f, DEFAULT_CONFIG)

        except OSError as e:
            raise ConfigError(
                ErrorCode.E702_CONFIG_SAVE_FAILED,
                f"Failed to create example configuration: {e}",
                {"path": str(path), "error": str(e)},
            )


@dataclass
class SessionSettings:
    """Typed view of the settings the session components read."""

    identity_prefix: str = IDENTITY_PREFIX
    unavailable_retry_delay: float = UNAVAILABLE_RETRY_DELAY
    close_retry_delay: float = CLOSE_RETRY_DELAY
    reinit_delay: float = REINIT_DELAY
    backoff_multiplier: float = RETRY_BACKOFF_MULTIPLIER
    max_retry_delay: float = MAX_RETRY_DELAY
    glare_resolution: str = GLARE_ADOPT_INCOMING
    reliable: bool = True
    auto_answer: bool = False
    audio: bool = True
    video: bool = True
    max_message_size: int = MAX_MESSAGE_SIZE
    max_attachment_size: int = MAX_ATTACHMENT_SIZE

    def __post_init__(self):
        if self.glare_resolution not in (GLARE_ADOPT_INCOMING, GLARE_BY_IDENTITY):
            raise ConfigError(
                ErrorCode.E703_INVALID_CONFIG,
                f"Unknown glare resolution policy: {self.glare_resolution}",
                {"glare_resolution": self.glare_resolution},
            )
        for name in ("unavailable_retry_delay", "close_retry_delay", "reinit_delay"):
            if getattr(self, name) < 0:
                raise ConfigError(
                    ErrorCode.E703_INVALID_CONFIG,
                    f"{name} must not be negative",
                    {name: getattr(self, name)},
                )
        if self.backoff_multiplier < 1.0:
            raise ConfigError(
                ErrorCode.E703_INVALID_CONFIG,
                "backoff_multiplier must be at least 1.0",
                {"backoff_multiplier": self.backoff_multiplier},
            )

    @classmethod
    def from_config(cls, config: Config) -> "SessionSettings":
        """Build settings from a loaded configuration."""
        return cls(
            identity_prefix=config.get("identity", "prefix", IDENTITY_PREFIX),
            unavailable_retry_delay=float(
                config.get("connection", "unavailable_retry_delay", UNAVAILABLE_RETRY_DELAY)
            ),
            close_retry_delay=float(config.get("connection", "close_retry_delay", CLOSE_RETRY_DELAY)),
            reinit_delay=float(config.get("connection", "reinit_delay", REINIT_DELAY)),
            backoff_multiplier=float(
                config.get("connection", "backoff_multiplier", RETRY_BACKOFF_MULTIPLIER)
            ),
            max_retry_delay=float(config.get("connection", "max_retry_delay", MAX_RETRY_DELAY)),
            glare_resolution=config.get("connection", "glare_resolution", GLARE_ADOPT_INCOMING),
            reliable=bool(config.get("connection", "reliable", True)),
            auto_answer=bool(config.get("calls", "auto_answer", False)),
            audio=bool(config.get("calls", "audio", True)),
            video=bool(config.get("calls", "video", True)),
            max_message_size=int(config.get("limits", "max_message_size", MAX_MESSAGE_SIZE)),
            max_attachment_size=int(
                config.get("limits", "max_attachment_size", MAX_ATTACHMENT_SIZE)
            ),
        )
