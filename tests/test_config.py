"""
Unit Tests for Settings.from_env
"""

import pytest

from qrforall.config import (
    DEFAULT_BASE_URL,
    DEFAULT_DB_PATH,
    DEFAULT_EXPORT_SIZE,
    DEFAULT_PORT,
    Settings,
)


class TestFromEnv:
    """Tests for Settings.from_env()."""

    def test_from_env_when_empty_then_defaults(self):
        settings = Settings.from_env({})
        assert settings == Settings()
        assert settings.port == DEFAULT_PORT
        assert settings.base_url == DEFAULT_BASE_URL
        assert settings.db_path == DEFAULT_DB_PATH
        assert settings.default_export_size == DEFAULT_EXPORT_SIZE
        assert settings.debug is True

    def test_from_env_when_values_set_then_parsed(self):
        settings = Settings.from_env({
            "APP_ENV": "production",
            "PORT": "8080",
            "BASE_URL": "https://qr.example.org",
            "LOG_LEVEL": "debug",
            "LOG_FILE": "/tmp/qr.log",
            "LOGO_FETCH_TIMEOUT": "2.5",
            "LOGO_MAX_BYTES": "1024",
            "SLUG_MAX_ATTEMPTS": "3",
            "LOGO_FETCH_CONCURRENCY": "2",
            "DEFAULT_EXPORT_SIZE": "512",
        })
        assert settings.app_env == "production"
        assert settings.debug is False
        assert settings.port == 8080
        assert settings.log_level == "DEBUG"
        assert settings.log_file == "/tmp/qr.log"
        assert settings.logo_fetch_timeout == 2.5
        assert settings.logo_max_bytes == 1024
        assert settings.slug_max_attempts == 3
        assert settings.logo_fetch_concurrency == 2
        assert settings.default_export_size == 512

    def test_from_env_when_base_url_trailing_slash_then_stripped(self):
        assert Settings.from_env({"BASE_URL": "https://qr.example.org/"}).base_url == "https://qr.example.org"

    def test_from_env_when_db_path_empty_then_in_memory(self):
        assert Settings.from_env({"QR_DB_PATH": ""}).db_path is None

    @pytest.mark.parametrize("env,name", [
        ({"PORT": "eighty"}, "PORT"),
        ({"PORT": "70000"}, "PORT"),
        ({"PORT": "0"}, "PORT"),
        ({"APP_ENV": "staging"}, "APP_ENV"),
        ({"BASE_URL": "qr.example.org"}, "BASE_URL"),
        ({"LOGO_FETCH_TIMEOUT": "-1"}, "LOGO_FETCH_TIMEOUT"),
        ({"SLUG_MAX_ATTEMPTS": "many"}, "SLUG_MAX_ATTEMPTS"),
    ])
    def test_from_env_when_malformed_then_error_names_variable(self, env, name):
        with pytest.raises(ValueError, match=name):
            Settings.from_env(env)
