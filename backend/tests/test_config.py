"""Tests for settings loading and validation."""
import pytest
from pydantic import ValidationError as PydanticValidationError

from connecthub.config import (
    AppSettings,
    AutoReplySettings,
    ChatSettings,
    get_config,
    load_settings,
    set_config,
)


class TestDefaults:
    def test_default_settings(self):
        settings = AppSettings()
        assert settings.server.port == 8000
        assert settings.server.ws_ping_interval == 20.0
        assert settings.auth.issuer == "ConnectHub"
        assert settings.auth.access_expire_minutes == 15
        assert settings.auth.refresh_expire_days == 7
        assert settings.cache.max_messages == 50
        assert settings.cache.ttl_seconds == 3600
        assert settings.chat.max_content_length == 2000
        assert settings.autoreply.synthetic_prefix == "sample-"
        assert settings.secrets.jwt.algorithm == "HS256"
        assert settings.secrets.redis.password is None


class TestValidation:
    def test_delay_bounds(self):
        with pytest.raises(PydanticValidationError):
            AutoReplySettings(min_delay_seconds=5, max_delay_seconds=2)

    def test_negative_delay(self):
        with pytest.raises(PydanticValidationError):
            AutoReplySettings(min_delay_seconds=-1)

    def test_page_sizes(self):
        with pytest.raises(PydanticValidationError):
            ChatSettings(default_page_size=200, max_page_size=100)

    def test_zero_page_size(self):
        with pytest.raises(PydanticValidationError):
            ChatSettings(default_page_size=0)


class TestLoadSettings:
    def test_missing_files_fall_back_to_defaults(self, tmp_path):
        settings = load_settings(tmp_path / "nope.yaml", tmp_path / "nope-secrets.yaml")
        assert settings == AppSettings()

    def test_merges_settings_and_secrets(self, tmp_path):
        settings_file = tmp_path / "connecthub.settings.yaml"
        secrets_file = tmp_path / "connecthub.secrets.yaml"
        settings_file.write_text(
            "server:\n"
            "  port: 9001\n"
            "database:\n"
            "  path: ':memory:'\n"
            "cache:\n"
            "  enabled: false\n"
            "autoreply:\n"
            "  min_delay_seconds: 0\n"
            "  max_delay_seconds: 1\n"
        )
        secrets_file.write_text(
            "jwt:\n"
            "  access_secret: abc\n"
            "  refresh_secret: def\n"
            "redis:\n"
            "  password: hunter2\n"
        )

        settings = load_settings(settings_file, secrets_file)

        assert settings.server.port == 9001
        assert settings.database.path == ":memory:"
        assert settings.cache.enabled is False
        assert settings.autoreply.max_delay_seconds == 1
        assert settings.secrets.jwt.access_secret == "abc"
        assert settings.secrets.redis.password == "hunter2"

    def test_empty_file(self, tmp_path):
        settings_file = tmp_path / "empty.yaml"
        settings_file.write_text("")
        assert load_settings(settings_file, tmp_path / "missing.yaml") == AppSettings()

    def test_invalid_file_raises(self, tmp_path):
        settings_file = tmp_path / "bad.yaml"
        settings_file.write_text("chat:\n  max_page_size: 0\n")
        with pytest.raises(PydanticValidationError):
            load_settings(settings_file, tmp_path / "missing.yaml")


def test_set_config_overrides_global():
    original = get_config()
    try:
        custom = AppSettings(server={"port": 1234})
        set_config(custom)
        assert get_config() is custom
    finally:
        set_config(original)
