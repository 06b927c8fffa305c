"""Unit tests for configuration loading and defaults."""

from __future__ import annotations

from datetime import timedelta

import pytest

from coursecontext.config import CanvasSettings, FileCacheSettings, Settings


class TestDefaults:
    def test_credentials_empty_by_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("COURSECONTEXT__CANVAS__BASE_URL", raising=False)
        monkeypatch.delenv("COURSECONTEXT__CANVAS__ACCESS_TOKEN", raising=False)
        settings = Settings()
        assert settings.canvas.access_token == ""
        assert settings.server.transport == "stdio"
        assert settings.discovery.ttl_seconds == 3600
        assert settings.search.default_max_results == 5

    def test_base_url_trailing_slash_stripped(self) -> None:
        assert CanvasSettings(base_url="https://canvas.example.edu/").base_url == (
            "https://canvas.example.edu"
        )


class TestEnvironmentOverrides:
    def test_nested_env_vars(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("COURSECONTEXT__CANVAS__BASE_URL", "https://lms.test/")
        monkeypatch.setenv("COURSECONTEXT__SERVER__PORT", "9090")
        monkeypatch.setenv("COURSECONTEXT__FILE_CACHE__PREVIEW_MAX_CHARS", "500")

        settings = Settings()

        assert settings.canvas.base_url == "https://lms.test"
        assert settings.server.port == 9090
        assert settings.file_cache.preview_max_chars == 500

    def test_constructor_args_win(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("COURSECONTEXT__SERVER__PORT", "9090")
        settings = Settings(server={"port": 7070})
        assert settings.server.port == 7070


class TestFileCacheSettings:
    def test_hours_converted_to_durations(self) -> None:
        config = FileCacheSettings(ttl_hours=2, revalidate_after_hours=0.5).to_config()
        assert config.ttl == timedelta(hours=2)
        assert config.revalidate_after == timedelta(minutes=30)
        assert config.preview_max_chars == 1500
