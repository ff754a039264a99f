"""
Configuration management for CodeCLI

Uses pydantic-settings for environment variable parsing and validation.
Values are read, highest priority first, from constructor arguments,
environment variables, ``.env``, the project file ``./.codecli.json`` and
the global file ``~/.codecli/config.json``.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

ProviderName = Literal["azure-openai", "ollama", "gemini", "openai", "anthropic", "openrouter"]

PROVIDERS: tuple[str, ...] = ("azure-openai", "ollama", "gemini", "openai", "anthropic", "openrouter")

GLOBAL_CONFIG_DIRNAME = ".codecli"
GLOBAL_CONFIG_FILENAME = "config.json"
PROJECT_CONFIG_FILENAME = ".codecli.json"


def config_files() -> list[Path]:
    """Config files in ascending priority: global, then project."""
    return [
        Path.home() / GLOBAL_CONFIG_DIRNAME / GLOBAL_CONFIG_FILENAME,
        Path.cwd() / PROJECT_CONFIG_FILENAME,
    ]


class LLMConfig(BaseModel):
    """Configuration for a single LLM provider."""

    provider: ProviderName = "gemini"
    model: str = "gemini-2.0-flash"
    api_key: str = ""
    base_url: str | None = None
    api_version: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7
    timeout: float = 120.0


class PermissionSettings(BaseModel):
    """Static permission policy."""

    auto_approve_read: bool = True
    auto_approve_write: bool = False
    auto_approve_execute: bool = False
    allowed_commands: list[str] = Field(default_factory=lambda: [
        "ls", "dir", "cat", "type", "echo", "pwd", "cd",
        "git status", "git diff", "git log",
        "node --version", "npm --version",
    ])
    blocked_commands: list[str] = Field(default_factory=lambda: [
        "rm -rf /", "format", "del /s /q",
    ])


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "CodeCLI"
    debug: bool = False
    log_level: str = "WARNING"
    config_dir: Path = Field(default_factory=lambda: Path.home() / GLOBAL_CONFIG_DIRNAME)

    # Providers
    default_provider: ProviderName = "gemini"

    azure_openai_api_key: str = Field(default="", description="Azure OpenAI API key")
    azure_openai_endpoint: str = Field(default="", description="Azure OpenAI resource endpoint")
    azure_openai_deployment: str = Field(default="gpt-4o", description="Azure OpenAI deployment name")
    azure_openai_api_version: str = Field(default="2024-12-01-preview")

    ollama_host: str = Field(default="http://localhost:11434", description="Ollama server URL")
    ollama_model: str = "llama3.2"

    gemini_api_key: str = Field(default="", description="Google AI API key for Gemini")
    gemini_model: str = "gemini-2.0-flash"

    openai_api_key: str = Field(default="", description="OpenAI API key")
    openai_model: str = "gpt-4o"

    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    anthropic_model: str = "claude-sonnet-4-20250514"

    openrouter_api_key: str = Field(default="", description="OpenRouter API key")
    openrouter_model: str = "anthropic/claude-sonnet-4"

    # Request defaults
    temperature: float = 0.7
    max_tokens: int = Field(default=4096, description="Response token budget")
    request_timeout: float = Field(default=120.0, description="HTTP timeout in seconds")

    # Agent loop
    max_iterations: int = 25
    god_mode_max_iterations: int = 1000
    checkpoint_interval: int = Field(default=10, description="Checkpoint every N messages")

    # Context window
    compaction_threshold: float = Field(default=0.75, description="Fraction of the window that triggers compaction")
    keep_recent_messages: int = 4
    chars_per_token: int = 4
    summary_max_tokens: int = 2000

    # Shell
    command_timeout_ms: int = 30000

    permissions: PermissionSettings = Field(default_factory=PermissionSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonConfigSettingsSource(settings_cls, json_file=config_files()),
        )

    @property
    def sessions_dir(self) -> Path:
        return self.config_dir / "sessions"

    def get_llm_config(self, provider: str | None = None, model: str | None = None) -> LLMConfig:
        """Get LLM configuration for a provider."""
        provider = provider or self.default_provider
        if provider not in PROVIDERS:
            raise ValueError(f"Unknown LLM provider: {provider}")

        api_key_map = {
            "azure-openai": self.azure_openai_api_key,
            "ollama": "",
            "gemini": self.gemini_api_key,
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "openrouter": self.openrouter_api_key,
        }

        model_map = {
            "azure-openai": self.azure_openai_deployment,
            "ollama": self.ollama_model,
            "gemini": self.gemini_model,
            "openai": self.openai_model,
            "anthropic": self.anthropic_model,
            "openrouter": self.openrouter_model,
        }

        base_url_map = {
            "azure-openai": self.azure_openai_endpoint or None,
            "ollama": self.ollama_host,
            "gemini": None,
            "openai": None,
            "anthropic": None,
            "openrouter": "https://openrouter.ai/api/v1",
        }

        return LLMConfig(
            provider=provider,  # type: ignore
            model=model or model_map[provider],
            api_key=api_key_map[provider],
            base_url=base_url_map[provider],
            api_version=self.azure_openai_api_version if provider == "azure-openai" else None,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            timeout=self.request_timeout,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
