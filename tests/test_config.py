"""Tests for configuration loading and module mounting."""

import json
import logging
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from amplifier_module_tool_progress import mount
from amplifier_module_tool_progress.config import ConfigError, configure_logging, load_config
from amplifier_module_tool_progress.context import ContextService
from amplifier_module_tool_progress.store import ProgressStore


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self, clean_env):
        config = load_config()

        assert config.db_path == clean_env / ".agent-progress" / "data.db"
        assert config.openai_api_key == ""
        assert config.openai_base_url == "https://api.openai.com/v1"
        assert config.model == "gpt-4o-mini"
        assert config.log_level == "info"
        assert config.summary_timeout == 30.0

    def test_environment(self, clean_env, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        monkeypatch.setenv("OPENAI_BASE_URL", "http://localhost:11434/v1")
        monkeypatch.setenv("AGENT_PROGRESS_MODEL", "llama3.2")
        monkeypatch.setenv("AGENT_PROGRESS_DB_PATH", "~/logs/progress.db")
        monkeypatch.setenv("AGENT_PROGRESS_LOG_LEVEL", "debug")

        config = load_config()

        assert config.openai_api_key == "sk-env"
        assert config.openai_base_url == "http://localhost:11434/v1"
        assert config.model == "llama3.2"
        assert config.db_path == clean_env / "logs" / "progress.db"
        assert config.log_level == "debug"

    def test_invalid_env_log_level_is_ignored(self, clean_env, monkeypatch):
        monkeypatch.setenv("AGENT_PROGRESS_LOG_LEVEL", "loud")
        assert load_config().log_level == "info"

    def test_config_file(self, clean_env, monkeypatch):
        monkeypatch.setenv("MY_KEY", "sk-from-var")
        (clean_env / "agent-progress.config.json").write_text(json.dumps({
            "dbPath": "/var/tmp/progress.db",
            "openai": {"apiKey": "${MY_KEY}", "model": "gpt-4.1-mini"},
            "logging": {"level": "warn"},
        }))

        config = load_config()

        assert config.openai_api_key == "sk-from-var"
        assert config.model == "gpt-4.1-mini"
        assert config.db_path == Path("/var/tmp/progress.db")
        assert config.log_level == "warn"

    def test_config_path_override(self, clean_env, monkeypatch):
        path = clean_env / "custom.json"
        path.write_text(json.dumps({"openai": {"model": "custom-model"}}))
        monkeypatch.setenv("AGENT_PROGRESS_CONFIG_PATH", str(path))

        assert load_config().model == "custom-model"

    def test_unparseable_file_is_skipped(self, clean_env):
        (clean_env / "agent-progress.config.json").write_text("{not json")
        (clean_env / ".agent-progress.config.json").write_text(json.dumps({"openai": {"model": "home-model"}}))

        assert load_config().model == "home-model"

    def test_environment_beats_file_and_overrides_beat_environment(self, clean_env, monkeypatch):
        (clean_env / "agent-progress.config.json").write_text(json.dumps({"openai": {"model": "file-model"}}))
        monkeypatch.setenv("AGENT_PROGRESS_MODEL", "env-model")

        assert load_config().model == "env-model"
        assert load_config({"model": "mount-model"}).model == "mount-model"

    def test_storage_path_override(self, clean_env):
        config = load_config({"storage_path": str(clean_env / "mounted.db")})
        assert config.db_path == clean_env / "mounted.db"

    @pytest.mark.parametrize("url", ["not a url", "ftp://example.com/v1"])
    def test_invalid_base_url(self, clean_env, url):
        with pytest.raises(ConfigError):
            load_config({"openai_base_url": url})

    def test_invalid_log_level_from_file(self, clean_env):
        (clean_env / "agent-progress.config.json").write_text(json.dumps({"logging": {"level": "verbose"}}))
        with pytest.raises(ConfigError):
            load_config()

    @pytest.mark.parametrize("section", ["openai", "logging"])
    def test_non_object_section_from_file(self, clean_env, section):
        (clean_env / "agent-progress.config.json").write_text(json.dumps({section: "sk-abc"}))
        with pytest.raises(ConfigError, match=section):
            load_config()

    def test_non_numeric_timeout_from_file(self, clean_env):
        (clean_env / "agent-progress.config.json").write_text(json.dumps({"openai": {"timeout": "soon"}}))
        with pytest.raises(ConfigError, match="openai.timeout"):
            load_config()

    def test_non_numeric_timeout_override(self, clean_env):
        with pytest.raises(ConfigError, match="summary_timeout"):
            load_config({"summary_timeout": "soon"})

    def test_numeric_timeout_from_file(self, clean_env):
        (clean_env / "agent-progress.config.json").write_text(json.dumps({"openai": {"timeout": "12.5"}}))
        assert load_config().summary_timeout == 12.5

    @pytest.mark.parametrize("path", ["relative/data.db", "/tmp/../etc/data.db", "/tmp/data\n.db"])
    def test_invalid_db_path(self, clean_env, path):
        with pytest.raises(ConfigError):
            load_config({"storage_path": path})

    def test_configure_logging(self):
        configure_logging("debug")
        assert logging.getLogger("amplifier_module_tool_progress").level == logging.DEBUG
        configure_logging("info")


class TestMount:
    """Tests for mounting the module."""

    @pytest.mark.asyncio
    async def test_mounts_three_tools(self, clean_env):
        coordinator = MagicMock()
        coordinator.mount = AsyncMock()

        cleanup = await mount(coordinator, {"storage_path": str(clean_env / "mounted.db")})

        names = [call.kwargs["name"] for call in coordinator.mount.await_args_list]
        assert names == ["log_progress", "search_logs", "get_context"]
        capabilities = {call.args[0]: call.args[1] for call in coordinator.set_capability.call_args_list}
        assert isinstance(capabilities["progress.store"], ProgressStore)
        assert isinstance(capabilities["progress.context"], ContextService)
        assert (clean_env / "mounted.db").exists()

        await cleanup()

    @pytest.mark.asyncio
    async def test_reports_existing_entries(self, clean_env, caplog):
        db_path = clean_env / "existing.db"
        store = ProgressStore(db_path=db_path)
        store.create_entry(project_id="demo", title="T", content="B")
        store.create_entry(project_id="other", title="T", content="B")
        store.close()
        coordinator = MagicMock()
        coordinator.mount = AsyncMock()
        caplog.set_level(logging.INFO, logger="amplifier_module_tool_progress")

        cleanup = await mount(coordinator, {"storage_path": str(db_path)})

        assert any("(2 entries, storage:" in r.getMessage() for r in caplog.records)
        await cleanup()

    @pytest.mark.asyncio
    async def test_malformed_config_file_is_config_error(self, clean_env):
        (clean_env / "agent-progress.config.json").write_text(json.dumps({"openai": "sk-abc"}))
        coordinator = MagicMock()
        coordinator.mount = AsyncMock()

        with pytest.raises(ConfigError):
            await mount(coordinator)

        coordinator.mount.assert_not_awaited()
