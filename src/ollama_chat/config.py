"""Centralized configuration for the chat relay and client."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OllamaConfig(BaseSettings):
    """Upstream Ollama server settings."""

    model_config = SettingsConfigDict(env_prefix="OLLAMA_", frozen=True)

    base_url: str = "http://localhost:11434"
    default_model: str = "llama3.1:8b"
    connect_timeout: float = Field(default=5.0, gt=0)
    # None disables the read timeout; generations can pause for a long time.
    read_timeout: float | None = Field(default=None, gt=0)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class RelayConfig(BaseSettings):
    """Relay HTTP server settings."""

    model_config = SettingsConfigDict(env_prefix="RELAY_", frozen=True)

    host: str = "127.0.0.1"
    port: int = Field(default=8000, gt=0, le=65535)
    max_line_length: int = Field(default=1024 * 1024, gt=0)


class ClientConfig(BaseSettings):
    """Chat client settings."""

    model_config = SettingsConfigDict(env_prefix="CLIENT_", frozen=True)

    relay_url: str = "http://127.0.0.1:8000"
    slow_response_seconds: float = Field(default=10.0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    storage_dir: str = "./chat_history"
    storage_max_bytes: int = Field(default=5 * 1024 * 1024, gt=0)

    @field_validator("relay_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class AppConfig(BaseSettings):
    """Top-level application configuration."""

    model_config = SettingsConfigDict(frozen=True)

    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
