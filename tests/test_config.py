"""Tests for configuration loading and the global configuration accessors."""

import json

import pytest
import yaml
from pydantic import ValidationError

import trashkit.config as config_module
from trashkit.config import LogLevel, TrashKitConfig, configure, get_config, set_config


@pytest.fixture(autouse=True)
def reset_global_config(monkeypatch):
    monkeypatch.setattr(config_module, "_config", None)


class TestTrashKitConfig:
    """Test the configuration model."""

    def test_defaults(self):
        config = TrashKitConfig()

        assert config.environment == "production"
        assert config.log_level == LogLevel.INFO
        assert config.database_url.startswith("sqlite+aiosqlite://")
        assert config.default_page_size == 20
        assert config.max_page_size == 200
        assert config.audit_enabled is True
        assert config.audit_require_actor is True

    def test_environment_is_normalized(self):
        assert TrashKitConfig(environment="Staging").environment == "staging"

        with pytest.raises(ValidationError, match="Environment must be one of"):
            TrashKitConfig(environment="qa")

    def test_database_url_needs_async_driver(self):
        with pytest.raises(ValidationError, match="async driver"):
            TrashKitConfig(database_url="sqlite:///./trashkit.db")

        config = TrashKitConfig(database_url="postgresql+asyncpg://db/trash")
        assert config.database_url == "postgresql+asyncpg://db/trash"

    def test_page_size_bounds(self):
        with pytest.raises(ValidationError, match="cannot exceed"):
            TrashKitConfig(default_page_size=50, max_page_size=10)
        with pytest.raises(ValidationError):
            TrashKitConfig(fanout_concurrency=0)

    def test_audit_config(self):
        config = TrashKitConfig(audit_workers=4, audit_require_actor=False)

        assert config.get_audit_config() == {
            "enabled": True,
            "require_actor": False,
            "workers": 4,
            "queue_size": 1000,
        }

    def test_to_dict(self):
        data = TrashKitConfig(log_level="DEBUG").to_dict()

        assert data["log_level"] == "DEBUG"
        assert json.dumps(data)


class TestConfigSources:
    """Test loading configuration from the environment and from files."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("TRASHKIT_AUDIT_WORKERS", "4")
        monkeypatch.setenv("TRASHKIT_AUDIT_REQUIRE_ACTOR", "false")
        monkeypatch.setenv("TRASHKIT_LOG_LEVEL", "debug")
        monkeypatch.setenv("TRASHKIT_ENVIRONMENT", "development")

        config = TrashKitConfig.from_env()

        assert config.audit_workers == 4
        assert config.audit_require_actor is False
        assert config.log_level == LogLevel.DEBUG
        assert config.environment == "development"

    def test_from_env_custom_prefix(self, monkeypatch):
        monkeypatch.setenv("TRASH_MAX_PAGE_SIZE", "500")

        assert TrashKitConfig.from_env(prefix="TRASH_").max_page_size == 500

    def test_from_env_reports_bad_values(self, monkeypatch):
        monkeypatch.setenv("TRASHKIT_AUDIT_WORKERS", "many")

        with pytest.raises(ValidationError):
            TrashKitConfig.from_env()

    def test_from_yaml_file(self, tmp_path):
        path = tmp_path / "trashkit.yaml"
        path.write_text(
            yaml.dump({"environment": "staging", "default_page_size": 10}),
            encoding="utf-8",
        )

        config = TrashKitConfig.from_file(path)

        assert config.environment == "staging"
        assert config.default_page_size == 10

    def test_from_json_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"audit_enabled": False}), encoding="utf-8")

        assert TrashKitConfig.from_file(str(path)).audit_enabled is False

    def test_empty_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("", encoding="utf-8")

        assert TrashKitConfig.from_file(path) == TrashKitConfig()

    def test_unsupported_file_type(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("", encoding="utf-8")

        with pytest.raises(ValueError, match="Unsupported configuration file type"):
            TrashKitConfig.from_file(path)


class TestGlobalConfig:
    """Test the process-wide configuration accessors."""

    def test_get_config_reads_environment_once(self, monkeypatch):
        monkeypatch.setenv("TRASHKIT_DEFAULT_PAGE_SIZE", "30")

        first = get_config()
        monkeypatch.setenv("TRASHKIT_DEFAULT_PAGE_SIZE", "40")

        assert first.default_page_size == 30
        assert get_config() is first

    def test_get_config_falls_back_to_defaults(self, monkeypatch):
        monkeypatch.setenv("TRASHKIT_ENVIRONMENT", "moon")

        assert get_config().environment == "production"

    def test_set_config(self):
        config = TrashKitConfig(environment="test")
        set_config(config)

        assert get_config() is config

    def test_configure(self):
        configure(environment="development")
        updated = configure(max_page_size=100)

        assert updated.environment == "development"
        assert updated.max_page_size == 100
        assert get_config() is updated
