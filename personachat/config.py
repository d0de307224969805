"""Application configuration using Pydantic settings."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent

load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # LLM configuration
    LLM_PROVIDER: str = "google"  # google, openai, anthropic, openai_compatible
    LLM_MODEL: str = "gemini-2.0-flash"
    LLM_API_KEY: str = Field(
        default="",
        validation_alias=AliasChoices("LLM_API_KEY", "GEMINI_API_KEY"),
    )
    LLM_BASE_URL: str = ""  # For openai_compatible
    LLM_TEMPERATURE: float = 0.9
    LLM_TOP_P: float = 0.8
    LLM_TOP_K: int = 16
    LLM_MAX_OUTPUT_TOKENS: int = 1000
    LLM_SAFETY_THRESHOLD: str = ""  # e.g. BLOCK_NONE, google only

    # Deadline for one external generation call, 0 disables
    GENERATION_TIMEOUT_SECONDS: float = 60.0

    # Database
    DATABASE_URL: str = "sqlite:///chats.db"

    # Persona
    PERSONA_FILE: str = ""  # default: packaged data/persona.json

    # Conversation handling
    CONTEXT_LIMIT: int = 10
    SEARCH_LIMIT: int = 5
    HANDLE_REGISTRY_MAX_SIZE: int = 256  # 0 = unbounded

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    STATIC_DIR: str = ""
    CORS_ALLOW_ALL_ORIGINS: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""
    LOG_MAX_BYTES: int = 10_485_760
    LOG_BACKUP_COUNT: int = 5

    @property
    def persona_path(self) -> Path:
        """Resolve the persona document, falling back to the packaged default."""
        if self.PERSONA_FILE:
            return Path(self.PERSONA_FILE).expanduser()
        return BASE_DIR / "data" / "persona.json"

    @property
    def generation_timeout(self) -> float | None:
        """Deadline in seconds for the external call, or None for no deadline."""
        return self.GENERATION_TIMEOUT_SECONDS if self.GENERATION_TIMEOUT_SECONDS > 0 else None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience alias
settings = get_settings()
