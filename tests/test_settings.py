"""Tests for sitechat.settings and sitechat.config modules."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from sitechat import config, settings
from sitechat.settings import ConfigError, Settings, load_config


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in (
            "REDIS_URL",
            "PINECONE_API_KEY",
            "PINECONE_INDEX_NAME",
            "MISTRAL_API_KEY",
            "MISTRAL_BASE_URL",
            "MISTRAL_EMBED_MODEL",
            "MISTRAL_CHAT_MODEL",
            "CRAWL_STALE_AFTER",
        ):
            monkeypatch.delenv(name, raising=False)

        loaded = Settings.from_env()

        assert loaded.redis_url == "redis://localhost:6379/0"
        assert loaded.pinecone_index_name == "chatbot"
        assert loaded.pinecone_api_key is None
        assert loaded.chat_model == "mistral-small-latest"
        assert loaded.crawl_stale_after == 1800.0

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/2")
        monkeypatch.setenv("PINECONE_API_KEY", "pk")
        monkeypatch.setenv("MISTRAL_API_KEY", "mk")
        monkeypatch.setenv("MISTRAL_CHAT_MODEL", "mistral-large-latest")
        monkeypatch.setenv("CRAWL_STALE_AFTER", "60")

        loaded = Settings.from_env()

        assert loaded.redis_url == "redis://cache:6379/2"
        assert loaded.pinecone_api_key == "pk"
        assert loaded.mistral_api_key == "mk"
        assert loaded.chat_model == "mistral-large-latest"
        assert loaded.crawl_stale_after == 60.0

    def test_empty_key_counts_as_missing(self, monkeypatch):
        monkeypatch.setenv("MISTRAL_API_KEY", "")
        assert Settings.from_env().mistral_api_key is None

    def test_require(self):
        Settings(mistral_api_key="k").require("mistral_api_key")
        with pytest.raises(ConfigError) as exc_info:
            Settings().require("mistral_api_key", "pinecone_api_key")
        assert exc_info.value.name == "mistral_api_key"
        assert "MISTRAL_API_KEY" in str(exc_info.value)


class TestLoadConfig:
    def test_prefers_working_directory(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text("REDIS_URL=redis://local:6379/0\n")
        config_file = tmp_path / "config" / ".env"
        config_file.parent.mkdir()
        config_file.write_text("REDIS_URL=redis://global:6379/0\n")
        monkeypatch.setattr(settings, "CONFIG_ENV_FILE", config_file)
        loader = MagicMock()
        monkeypatch.setattr(settings, "load_dotenv", loader)

        assert load_config(tmp_path) == tmp_path / ".env"
        loader.assert_called_once_with(tmp_path / ".env")

    def test_falls_back_to_user_config(self, tmp_path, monkeypatch):
        config_file = tmp_path / "config" / ".env"
        config_file.parent.mkdir()
        config_file.write_text("REDIS_URL=redis://global:6379/0\n")
        monkeypatch.setattr(settings, "CONFIG_ENV_FILE", config_file)
        loader = MagicMock()
        monkeypatch.setattr(settings, "load_dotenv", loader)
        workdir = tmp_path / "work"
        workdir.mkdir()

        assert load_config(workdir) == config_file
        loader.assert_called_once_with(config_file)

    def test_nothing_found(self, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "CONFIG_ENV_FILE", tmp_path / "missing" / ".env")
        loader = MagicMock()
        monkeypatch.setattr(settings, "load_dotenv", loader)

        assert load_config(tmp_path) is None
        loader.assert_not_called()


class TestCrawlerConfigs:
    def test_browser_config(self):
        browser = config.build_browser_config(text_mode=True)
        assert browser.headless is True
        assert browser.viewport_width == 1920
        assert browser.text_mode is True
        assert browser.user_agent == config.DEFAULT_USER_AGENT

    def test_render_run_config(self):
        run = config.build_render_run_config(15, settle_delay=3.0)
        assert run.page_timeout == 15000
        assert run.wait_until == "networkidle"
        assert run.delay_before_return_html == 3.0
        assert run.cache_mode == config.CacheMode.BYPASS
