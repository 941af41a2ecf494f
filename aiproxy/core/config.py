"""
Configuration management using Pydantic Settings.

All configuration values are loaded from environment variables
with sensible defaults where appropriate.
"""

from functools import lru_cache
from pathlib import Path
from typing import Dict, Literal, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root (where the .env file is located)
# aiproxy is at: /path/to/ai-proxy/aiproxy/core/config.py
ROOT_DIR = Path(__file__).resolve().parent.parent.parent
ENV_FILE = ROOT_DIR / ".env"

# Load .env into environment for nested settings models
from dotenv import load_dotenv
load_dotenv(ENV_FILE)


class AppSettings(BaseSettings):
    """Application-level configuration."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production", "test"] = "development"
    app_name: str = "ai-proxy"
    app_version: str = "1.0.0"
    app_debug: bool = False

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8787
    api_workers: int = 1

    # CORS
    cors_origins: str = "*"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]


class ProviderSettings(BaseSettings):
    """Upstream LLM provider configuration."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_prefix="",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com"

    anthropic_api_key: str = ""
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_version: str = "2023-06-01"
    anthropic_default_max_tokens: int = Field(default=4096, ge=1)

    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com"

    # Only connecting is bounded; streams stay open until the upstream finishes
    upstream_connect_timeout: float = 10.0


class AuthSettings(BaseSettings):
    """Caller authorization configuration."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_prefix="",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    supabase_url: str = ""
    supabase_anon_key: str = ""
    clerk_secret_key: str = ""
    clerk_api_url: str = "https://api.clerk.com"
    subscription_cache_ttl: int = Field(default=300, ge=0)  # 5 minutes


class RateLimitSettings(BaseSettings):
    """Rate limiting configuration (fixed window, per route class)."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_prefix="RATE_LIMIT_",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    enabled: bool = True

    chat_limit: int = Field(default=20, ge=0)
    chat_window: int = Field(default=60, ge=1)
    tts_limit: int = Field(default=10, ge=0)
    tts_window: int = Field(default=60, ge=1)
    voice_limit: int = Field(default=10, ge=0)
    voice_window: int = Field(default=60, ge=1)
    transcription_limit: int = Field(default=10, ge=0)
    transcription_window: int = Field(default=60, ge=1)
    default_limit: int = Field(default=60, ge=0)
    default_window: int = Field(default=60, ge=1)

    @property
    def policies(self) -> Dict[str, Tuple[int, int]]:
        """Route class -> (limit, window_seconds)."""
        return {
            "chat": (self.chat_limit, self.chat_window),
            "tts": (self.tts_limit, self.tts_window),
            "voice": (self.voice_limit, self.voice_window),
            "transcription": (self.transcription_limit, self.transcription_window),
            "default": (self.default_limit, self.default_window),
        }


class DeepgramSettings(BaseSettings):
    """Deepgram speech configuration."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_prefix="DEEPGRAM_",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    api_key: str = ""
    base_url: str = "https://api.deepgram.com"
    transcription_model: str = "nova-3"
    tts_voice: str = "aura-asteria-en"
    max_audio_bytes: int = 10 * 1024 * 1024  # 10 MB


class LogSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_prefix="LOG_",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    level: str = "INFO"
    format: Literal["json", "text"] = "json"
    requests: bool = True


class Settings(BaseSettings):
    """Main settings class that aggregates all configuration sections."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app: AppSettings = Field(default_factory=AppSettings)
    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    deepgram: DeepgramSettings = Field(default_factory=DeepgramSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    dev_auto_reload: bool = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
