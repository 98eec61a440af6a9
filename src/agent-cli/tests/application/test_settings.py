"""Tests for application settings.

Tests cover:
- Defaults
- Environment variables with the AGENT_CLI_ prefix
- YAML configuration files and their precedence
- Explicit overrides
"""

from pathlib import Path

import pytest

from application.settings import CONFIG_FILE_NAME, Settings, default_config_files, load_settings


class TestSettings:
    """Tests for resolving Settings from its sources."""

    def test_defaults(self, workspace: Path) -> None:
        """Without configuration the local endpoint and default model are used."""
        settings = Settings()

        assert settings.api_url == "http://localhost:3000/v1"
        assert settings.model == "gpt-3.5-turbo"
        assert settings.api_key is None
        assert settings.has_api_key is False
        assert settings.request_timeout is None
        assert settings.auto_confirm is False
        assert settings.log_level == "INFO"
        assert settings.extra_body == {}

    def test_environment_variables(self, workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Prefixed variables configure the client."""
        monkeypatch.setenv("AGENT_CLI_API_KEY", "sk-env")
        monkeypatch.setenv("AGENT_CLI_API_URL", "https://api.example.com/v1/")
        monkeypatch.setenv("AGENT_CLI_MODEL", "gpt-4o-mini")
        monkeypatch.setenv("AGENT_CLI_AUTO_CONFIRM", "true")
        monkeypatch.setenv("AGENT_CLI_LOG_LEVEL", "debug")

        settings = Settings()

        assert settings.api_key == "sk-env"
        assert settings.has_api_key is True
        assert settings.api_url == "https://api.example.com/v1"
        assert settings.model == "gpt-4o-mini"
        assert settings.auto_confirm is True
        assert settings.log_level == "DEBUG"

    def test_blank_api_key_is_not_a_key(self, workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Whitespace does not count as a configured key."""
        monkeypatch.setenv("AGENT_CLI_API_KEY", "   ")

        assert Settings().has_api_key is False

    def test_yaml_file_in_working_directory(self, workspace: Path) -> None:
        """The project file is read."""
        (workspace / CONFIG_FILE_NAME).write_text("model: local-llama\ntemperature: 0.3\n")

        settings = Settings()

        assert settings.model == "local-llama"
        assert settings.temperature == 0.3

    def test_extra_body_from_yaml(self, workspace: Path) -> None:
        """Additional request fields can be configured as a mapping."""
        (workspace / CONFIG_FILE_NAME).write_text("extra_body:\n  top_p: 0.9\n  stop: [\"END\"]\n")

        assert Settings().extra_body == {"top_p": 0.9, "stop": ["END"]}

    def test_project_file_overrides_home_file(self, workspace: Path) -> None:
        """Values in ./.agent-cli.yaml win over ~/.agent-cli.yaml."""
        home_file, project_file = default_config_files()
        home_file.write_text("model: from-home\napi_key: sk-home\n")
        project_file.write_text("model: from-project\n")

        settings = Settings()

        assert settings.model == "from-project"
        assert settings.api_key == "sk-home"

    def test_environment_overrides_yaml(self, workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Environment variables take precedence over files."""
        (workspace / CONFIG_FILE_NAME).write_text("model: from-yaml\n")
        monkeypatch.setenv("AGENT_CLI_MODEL", "from-env")

        assert Settings().model == "from-env"

    def test_load_settings_ignores_unset_overrides(self, workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """None overrides leave the configured value in place."""
        monkeypatch.setenv("AGENT_CLI_MODEL", "from-env")

        settings = load_settings(model=None, api_url="http://other:8080/v1", auto_confirm=True)

        assert settings.model == "from-env"
        assert settings.api_url == "http://other:8080/v1"
        assert settings.auto_confirm is True
