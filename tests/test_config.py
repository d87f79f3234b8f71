"""Tests for configuration module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from builder_contract.config import Settings, get_settings, print_settings_json


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        settings = Settings(_env_file=None)

        assert settings.cache_dir == (
            Path.home() / ".cache" / "builder-contract" / "build-cache"
        )
        assert settings.work_root == (
            Path.home() / ".local" / "share" / "builder-contract" / "work"
        )
        assert settings.log_level == "INFO"
        assert settings.max_concurrent_builds == 4
        assert settings.dev_server_host == "127.0.0.1"
        assert settings.default_runtime == "nodejs18.x"

    def test_settings_from_env(self) -> None:
        """Settings should be loadable from environment variables."""
        with patch.dict(
            os.environ,
            {
                "BUILDER_CONTRACT_LOG_LEVEL": "DEBUG",
                "BUILDER_CONTRACT_MAX_CONCURRENT_BUILDS": "8",
                "BUILDER_CONTRACT_BUILD_TIMEOUT": "30",
            },
        ):
            settings = Settings()
            assert settings.log_level == "DEBUG"
            assert settings.max_concurrent_builds == 8
            assert settings.build_timeout == 30

    def test_settings_cache_dir_from_env(self) -> None:
        """Cache dir should be configurable via env."""
        with patch.dict(os.environ, {"BUILDER_CONTRACT_CACHE_DIR": "/tmp/test-cache"}):
            settings = Settings()
            assert settings.cache_dir == Path("/tmp/test-cache")

    def test_max_concurrent_builds_bounds(self) -> None:
        """Concurrency must stay within 1..32."""
        with pytest.raises(ValidationError):
            Settings(max_concurrent_builds=0)
        with pytest.raises(ValidationError):
            Settings(max_concurrent_builds=33)

    def test_timeouts_must_be_positive(self) -> None:
        """Zero timeouts are rejected."""
        with pytest.raises(ValidationError):
            Settings(build_timeout=0)


class TestGetSettings:
    """Test get_settings function."""

    def test_get_settings_returns_settings(self) -> None:
        """get_settings should return a Settings instance."""
        assert isinstance(get_settings(), Settings)


class TestPrintSettingsJson:
    """Test print_settings_json function."""

    def test_print_settings_json(self) -> None:
        """print_settings_json should return valid JSON."""
        parsed = json.loads(print_settings_json(Settings()))

        assert "cache_dir" in parsed
        assert "work_root" in parsed
        assert "max_concurrent_builds" in parsed
        assert "blob_base_url" in parsed

    def test_print_settings_json_default(self) -> None:
        """print_settings_json without args should use default settings."""
        parsed = json.loads(print_settings_json())
        assert "cache_dir" in parsed
