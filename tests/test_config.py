"""Tests for configuration loading."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from graphctl.config import (
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_OPERATION_TIMEOUT_SECONDS,
    Config,
    ConfigurationError,
)


class TestConfig:
    """Tests for Config class."""

    def test_valid_config(self) -> None:
        """Test creating a valid configuration."""
        config = Config(project="demo-project")

        assert config.project == "demo-project"
        assert config.max_concurrency == DEFAULT_MAX_CONCURRENCY
        assert config.operation_timeout_seconds == DEFAULT_OPERATION_TIMEOUT_SECONDS
        assert config.state_dir == Path(".graphctl/state")
        assert config.dry_run is False
        assert config.enable_audit_logging is True

    def test_missing_project(self) -> None:
        """Test that a missing project raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(project="")

        assert "GRAPHCTL_PROJECT is required" in str(exc_info.value)

    @pytest.mark.parametrize("project", ["Demo-Project", "abc", "1demo-project", "demo-project-", "demo_project"])
    def test_invalid_project(self, project: str) -> None:
        """Test that malformed project ids are rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(project=project)

        assert "valid project id" in str(exc_info.value)

    def test_missing_topology_path(self, tmp_path: Path) -> None:
        """Test that a nonexistent topology path raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(project="demo-project", topology_path=tmp_path / "missing.yaml")

        assert "Topology path does not exist" in str(exc_info.value)

    @pytest.mark.parametrize("value", [0, 33])
    def test_invalid_concurrency(self, value: int) -> None:
        """Test that out-of-range concurrency raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(project="demo-project", max_concurrency=value)

        assert "GRAPHCTL_MAX_CONCURRENCY" in str(exc_info.value)

    def test_invalid_attempts(self) -> None:
        with pytest.raises(ConfigurationError, match="GRAPHCTL_MAX_ATTEMPTS"):
            Config(project="demo-project", max_attempts=0)

    def test_backoff_max_below_base(self) -> None:
        with pytest.raises(ConfigurationError, match="GRAPHCTL_RETRY_BACKOFF_MAX"):
            Config(project="demo-project", retry_backoff_base_seconds=10, retry_backoff_max_seconds=5)

    def test_invalid_timeout(self) -> None:
        with pytest.raises(ConfigurationError, match="GRAPHCTL_OPERATION_TIMEOUT"):
            Config(project="demo-project", operation_timeout_seconds=0)

    def test_all_errors_reported_together(self) -> None:
        """Test that every problem is listed, not only the first."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(project="", max_concurrency=0, max_attempts=0)

        message = str(exc_info.value)
        assert message.startswith("Configuration validation failed:")
        assert message.count("\n  - ") == 3

    def test_frozen(self) -> None:
        config = Config(project="demo-project")
        with pytest.raises(AttributeError):
            config.project = "other-project"  # type: ignore[misc]


class TestConfigFromEnv:
    """Tests for Config.from_env()."""

    def test_defaults(self) -> None:
        """Test loading with only the required variable."""
        with patch.dict(os.environ, {"GRAPHCTL_PROJECT": "demo-project"}, clear=True):
            config = Config.from_env()

        assert config.project == "demo-project"
        assert config.topology_path is None
        assert config.max_attempts == 5

    def test_all_variables(self, tmp_path: Path) -> None:
        """Test loading every supported variable."""
        topology = tmp_path / "web.yaml"
        topology.write_text("resources: []\n", encoding="utf-8")
        env = {
            "GRAPHCTL_PROJECT": "demo-project",
            "GRAPHCTL_STATE_DIR": str(tmp_path / "state"),
            "GRAPHCTL_TOPOLOGY": str(topology),
            "GRAPHCTL_MAX_CONCURRENCY": "8",
            "GRAPHCTL_MAX_ATTEMPTS": "3",
            "GRAPHCTL_RETRY_BACKOFF_BASE": "0.5",
            "GRAPHCTL_RETRY_BACKOFF_MAX": "10",
            "GRAPHCTL_OPERATION_TIMEOUT": "600",
            "GRAPHCTL_DRY_RUN": "true",
            "GRAPHCTL_ENABLE_AUDIT_LOGGING": "false",
        }

        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.state_dir == tmp_path / "state"
        assert config.topology_path == topology
        assert config.max_concurrency == 8
        assert config.max_attempts == 3
        assert config.retry_backoff_base_seconds == 0.5
        assert config.retry_backoff_max_seconds == 10.0
        assert config.operation_timeout_seconds == 600
        assert config.dry_run is True
        assert config.enable_audit_logging is False

    def test_non_integer_value(self) -> None:
        """Test that a malformed integer names the variable."""
        env = {"GRAPHCTL_PROJECT": "demo-project", "GRAPHCTL_MAX_CONCURRENCY": "four"}

        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "GRAPHCTL_MAX_CONCURRENCY must be an integer" in str(exc_info.value)

    def test_non_numeric_backoff(self) -> None:
        env = {"GRAPHCTL_PROJECT": "demo-project", "GRAPHCTL_RETRY_BACKOFF_BASE": "fast"}

        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ConfigurationError, match="must be a number"):
                Config.from_env()

    @pytest.mark.parametrize("value,expected", [("1", True), ("YES", True), ("no", False), ("", False)])
    def test_boolean_parsing(self, value: str, expected: bool) -> None:
        env = {"GRAPHCTL_PROJECT": "demo-project", "GRAPHCTL_DRY_RUN": value}

        with patch.dict(os.environ, env, clear=True):
            assert Config.from_env().dry_run is expected

    def test_missing_project(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ConfigurationError, match="GRAPHCTL_PROJECT is required"):
                Config.from_env()
