"""Tests for configuration loading and management."""

from pathlib import Path

import pytest

from marketplace_reconciler import config as config_module
from marketplace_reconciler.config import Config, ConfigurationError, get_config, reset_config
from marketplace_reconciler.models import ParameterType

REPOSITORY_CONFIG = Path(__file__).resolve().parents[2] / "config" / "reconciler.yaml"

MINIMAL_YAML = """
database:
  url: sqlite:///./test.sqlite
fulfillment:
  base_url: https://marketplace.test/api
  access_token: from-file
poller:
  interval_seconds: 1
  max_iterations: 10
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "reconciler.yaml"
    path.write_text(MINIMAL_YAML, encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ("CONFIG_PATH", *config_module.ENV_OVERRIDES):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


class TestConfigurationLoading:
    """Test basic configuration loading."""

    def test_repository_config_loads(self):
        """Test that the shipped config/reconciler.yaml is valid."""
        config = Config(str(REPOSITORY_CONFIG))

        assert config.poller.interval_seconds == 5
        assert config.poller.max_iterations == 100
        assert config.notifications.enabled is False
        assert config.automatic_provisioning is True
        assert [a.type for a in config.provisioning.plan_attributes] == [
            ParameterType.INPUT,
            ParameterType.OUTPUT,
        ]

    def test_sections_default_when_omitted(self, config_file):
        config = Config(str(config_file))

        assert config.config_path == config_file
        assert config.fulfillment.access_token == "from-file"
        assert config.provisioning.credential_parameter == "ApiKey"
        assert config.notifications.topic == "subscription-status"

    def test_config_path_from_environment(self, config_file, monkeypatch):
        monkeypatch.setenv("CONFIG_PATH", str(config_file))

        assert Config().config_path == config_file


class TestEnvironmentOverrides:
    """Test secrets and deployment settings taken from the environment."""

    def test_env_overrides_file_values(self, config_file, monkeypatch):
        monkeypatch.setenv("FULFILLMENT_ACCESS_TOKEN", "from-env")
        monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg://db/reconciler")
        monkeypatch.setenv("PROVISIONING_URL", "http://provisioning.test/api/provision")

        config = Config(str(config_file))

        assert config.fulfillment.access_token == "from-env"
        assert config.database.url == "postgresql+psycopg://db/reconciler"
        assert config.provisioning.url == "http://provisioning.test/api/provision"

    def test_reload_picks_up_changes(self, config_file, monkeypatch):
        config = Config(str(config_file))
        monkeypatch.setenv("FULFILLMENT_BASE_URL", "https://other.test/api")

        config.reload()

        assert config.fulfillment.base_url == "https://other.test/api"


class TestConfigurationErrors:
    """Test invalid configuration handling."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            Config(str(tmp_path / "missing.yaml"))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="empty"):
            Config(str(path))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("poller: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="parse"):
            Config(str(path))

    def test_validation_error(self, tmp_path):
        path = tmp_path / "invalid.yaml"
        path.write_text("poller:\n  max_iterations: 0\n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="validation"):
            Config(str(path))


class TestGlobalConfig:
    """Test the process-wide configuration instance."""

    def test_singleton(self, config_file):
        first = get_config(str(config_file))

        assert get_config() is first

    def test_reset(self, config_file):
        first = get_config(str(config_file))
        reset_config()

        assert get_config(str(config_file)) is not first
