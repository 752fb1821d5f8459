"""Provider settings sourced from the environment.

Nothing here is global: callers build a settings object and hand it to
``Provider.from_settings``.
"""

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class AnthropicSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ANTHROPIC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Stored as SecretStr to avoid accidental logging
    api_key: SecretStr | None = Field(default=None)
    base_url: str = Field(default="https://api.anthropic.com")
    timeout_s: float = Field(default=60.0)


class OpenAISettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="OPENAI_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    api_key: SecretStr | None = Field(default=None)
    # OPENAI_BASE_URL also points this at OpenAI-compatible gateways
    base_url: str = Field(default="https://api.openai.com/v1")
    timeout_s: float = Field(default=60.0)
