"""Process-wide configuration, read once from the environment."""

from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings.

    Values come from environment variables (or a local ``.env`` file). The
    settings object is built once at startup and treated as read-only.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    anthropic_api_key: str | None = Field(default=None, repr=False)
    model: str = "claude-3-5-sonnet-20241022"
    max_tokens: int = 1024
    temperature: float = 0.3

    # Upper bound on model/tool round trips within a single turn
    max_steps: int = Field(default=10, ge=1)
    tool_timeout_seconds: float = Field(default=30.0, gt=0)

    allowed_origins: Annotated[list[str], NoDecode] = Field(default_factory=list)
    session_timeout_minutes: int = 60
    log_level: str = "INFO"
    log_json: bool = False

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def split_origins(cls, v: object) -> object:
        """Accept a comma separated string as well as a JSON list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
