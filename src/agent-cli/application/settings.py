"""Application settings configuration for the Agent CLI.

Values are resolved from, in order of precedence:
1. Explicit overrides (command-line options)
2. Environment variables prefixed with AGENT_CLI_
3. A .env file in the working directory
4. YAML files: ~/.agent-cli.yaml, overridden by ./.agent-cli.yaml
5. Defaults below
"""

from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict, YamlConfigSettingsSource

CONFIG_FILE_NAME = ".agent-cli.yaml"


def default_config_files() -> list[Path]:
    """Candidate YAML files; values from later files win."""
    return [Path.home() / CONFIG_FILE_NAME, Path.cwd() / CONFIG_FILE_NAME]


class Settings(BaseSettings):
    """Agent CLI settings."""

    # Completion endpoint
    api_url: str = Field(default="http://localhost:3000/v1", description="Base URL of the OpenAI-compatible API")
    api_key: str | None = Field(default=None, description="Bearer token for the API")
    model: str = Field(default="gpt-3.5-turbo", description="Model identifier")
    request_timeout: float | None = Field(default=None, description="Request timeout in seconds (unset = wait indefinitely)")
    temperature: float | None = None
    max_tokens: int | None = None
    extra_body: dict[str, Any] = Field(default_factory=dict, description="Additional fields merged into every request body (e.g. top_p, stop)")

    # Agent behavior
    system_prompt: str | None = None
    auto_confirm: bool = False

    # Logging Configuration
    log_level: str = "INFO"
    log_file: str = "logs/agent-cli.log"
    log_to_console: bool = False
    log_to_file: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="AGENT_CLI_",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize the order of settings sources."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=default_config_files()),
        )

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key and self.api_key.strip())


def load_settings(**overrides) -> Settings:
    """Build settings, dropping overrides that were not given (None)."""
    return Settings(**{k: v for k, v in overrides.items() if v is not None})
