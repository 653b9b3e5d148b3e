"""
Unit tests for peerlink.config module.

Tests TOML loading, environment overrides and settings validation.
"""

import pytest

from peerlink.config import Config, SessionSettings
from peerlink.constants import GLARE_BY_IDENTITY
from peerlink.errors import ConfigError, ErrorCode


class TestConfig:
    """Test configuration loading."""

    def test_defaults_without_file(self, temp_dir):
        config = Config(temp_dir / "missing.toml")
        assert config.get("connection", "unavailable_retry_delay") == 3.0
        assert config.get("connection", "close_retry_delay") == 2.0
        assert config.get("identity", "prefix") == "secure-chat-v2-"
        assert config.data["peers"] == {"aryaveer": "guest", "guest": "aryaveer"}

    def test_file_overrides_defaults(self, temp_dir):
        path = temp_dir / "config.toml"
        path.write_text(
            "[connection]\n"
            "close_retry_delay = 0.5\n"
            'glare_resolution = "identity"\n'
            "\n"
            "[peers]\n"
            'alice = "bob"\n'
            'bob = "alice"\n'
        )
        config = Config(path)

        assert config.get("connection", "close_retry_delay") == 0.5
        assert config.get("connection", "unavailable_retry_delay") == 3.0
        assert config.data["peers"]["alice"] == "bob"

    def test_invalid_toml_raises(self, temp_dir):
        path = temp_dir / "config.toml"
        path.write_text("[connection\nbroken")
        with pytest.raises(ConfigError) as exc_info:
            Config(path)
        assert exc_info.value.code == ErrorCode.E704_CONFIG_PARSE_ERROR

    def test_env_override(self, temp_dir, monkeypatch):
        monkeypatch.setenv("PEERLINK_CONNECTION_CLOSE_RETRY_DELAY", "1.5")
        monkeypatch.setenv("PEERLINK_CALLS_AUTO_ANSWER", "yes")
        monkeypatch.setenv("PEERLINK_LIMITS_MAX_MESSAGE_SIZE", "not-a-number")
        config = Config(temp_dir / "missing.toml")

        assert config.get("connection", "close_retry_delay") == 1.5
        assert config.get("calls", "auto_answer") is True
        assert config.get("limits", "max_message_size") == 10 * 1024 * 1024

    def test_save_and_reload(self, temp_dir):
        path = temp_dir / "nested" / "config.toml"
        config = Config(path)
        config.set("connection", "reinit_delay", 7.5)
        config.save()

        reloaded = Config(path)
        assert reloaded.get("connection", "reinit_delay") == 7.5
        assert reloaded.data["peers"] == config.data["peers"]

    def test_create_example(self, temp_dir):
        path = temp_dir / "example.toml"
        Config.create_example(path)
        text = path.read_text()
        assert "[connection]" in text
        assert 'glare_resolution = "adopt"' in text

        assert Config(path).get("connection", "close_retry_delay") == 2.0


class TestSessionSettings:
    """Test typed settings."""

    def test_from_config(self, temp_dir, monkeypatch):
        monkeypatch.setenv("PEERLINK_CONNECTION_GLARE_RESOLUTION", GLARE_BY_IDENTITY)
        settings = SessionSettings.from_config(Config(temp_dir / "missing.toml"))

        assert settings.glare_resolution == GLARE_BY_IDENTITY
        assert settings.unavailable_retry_delay == 3.0
        assert settings.auto_answer is False

    def test_rejects_unknown_glare_policy(self):
        with pytest.raises(ConfigError) as exc_info:
            SessionSettings(glare_resolution="coin-toss")
        assert exc_info.value.code == ErrorCode.E703_INVALID_CONFIG

    def test_rejects_negative_delay(self):
        with pytest.raises(ConfigError):
            SessionSettings(close_retry_delay=-1)

    def test_rejects_shrinking_backoff(self):
        with pytest.raises(ConfigError):
            SessionSettings(backoff_multiplier=0.5)
