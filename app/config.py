"""
Configuration Management
========================

Centralized configuration using Pydantic Settings.
Loads from environment variables and .env file.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Shared config that all settings classes use to load .env
_shared_config = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    env_prefix="",
    extra="ignore",
)

DEFAULT_API_BASE = "https://api.siliconflow.cn/v1/chat/completions"
DEFAULT_MODEL = "zai-org/GLM-4.5V"


class LLMSettings(BaseSettings):
    """Vision-language model configuration (OpenAI-compatible, Groq or Gemini)."""

    model_config = _shared_config

    llm_provider: Literal["openai", "groq", "gemini"] = Field(
        default="openai",
        description="Model provider: 'openai' (any OpenAI-compatible endpoint), 'groq' or 'gemini'",
    )

    # OpenAI-compatible endpoint
    llm_api_base: str = Field(
        default=DEFAULT_API_BASE,
        description="Chat completions URL of the OpenAI-compatible endpoint",
    )
    llm_api_key: str = Field(default="", description="Bearer token for the OpenAI-compatible endpoint")
    llm_model: str = Field(default=DEFAULT_MODEL, description="Vision model name")

    # Groq
    groq_api_key: str = Field(default="", description="Groq API key")
    groq_model: str = Field(
        default="meta-llama/llama-4-scout-17b-16e-instruct",
        description="Groq model ID (must support vision)",
    )

    # Gemini
    gemini_api_key: str = Field(default="", description="Google AI API key for Gemini")
    gemini_model: str = Field(default="gemini-2.5-flash", description="Gemini model name")

    # Shared sampling settings
    llm_max_tokens: int = Field(default=300, ge=1, description="Max output tokens per decision")
    llm_temperature: float = Field(default=0.0, ge=0.0, le=2.0, description="Sampling temperature")
    llm_timeout: float = Field(default=60.0, description="Request timeout in seconds")
    llm_max_retries: int = Field(
        default=2,
        ge=0,
        le=5,
        description="Retries on rate-limit / 5xx before a decision fails",
    )

    def get_active_api_key(self) -> str:
        """Return the API key for the selected provider."""
        if self.llm_provider == "groq":
            return self.groq_api_key
        if self.llm_provider == "gemini":
            return self.gemini_api_key
        return self.llm_api_key

    def get_active_model(self) -> str:
        """Return the model name for the selected provider."""
        if self.llm_provider == "groq":
            return self.groq_model
        if self.llm_provider == "gemini":
            return self.gemini_model
        return self.llm_model

    def has_credentials(self) -> bool:
        """Check whether the selected provider has a usable API key."""
        key = self.get_active_api_key().strip()
        return bool(key) and not key.startswith("your-")


class DeviceSettings(BaseSettings):
    """ADB device configuration."""

    model_config = _shared_config

    adb_device_serial: str = Field(
        default="",
        description="Specific ADB device serial (leave empty for auto-detect)",
    )
    adb_path: str = Field(
        default="",
        description="Path to the adb executable (leave empty to search PATH / ANDROID_HOME)",
    )


class CaptureSettings(BaseSettings):
    """Frame capture timing and bounds."""

    model_config = _shared_config

    capture_settle_delay: float = Field(
        default=0.2,
        description="Seconds to wait after draining stale frames before sampling",
    )
    capture_callback_timeout: float = Field(
        default=3.0,
        description="Seconds to wait for the frame-available callback",
    )
    capture_poll_attempts: int = Field(default=10, ge=1, description="Polling fallback attempts")
    capture_poll_delay: float = Field(default=0.1, description="Seconds between polling attempts")
    capture_teardown_wait: float = Field(
        default=5.0,
        description="Seconds teardown waits for an in-flight capture",
    )
    capture_frame_interval: float = Field(
        default=0.5,
        description="Seconds between background screencaps of the ADB capture session",
    )


class ServerSettings(BaseSettings):
    """Server configuration settings."""

    model_config = _shared_config

    server_host: str = Field(default="0.0.0.0", description="Server host")
    server_port: int = Field(default=8000, description="Server port")
    debug: bool = Field(default=True, description="Debug mode")
    environment: str = Field(default="development", description="Environment name (development, staging, production)")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    cors_origins: str = Field(default="*", description="CORS origins")

    @field_validator("cors_origins")
    @classmethod
    def parse_cors_origins(cls, v: str) -> str:
        """Keep CORS origins as string, parse when needed."""
        return v

    def get_cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]


class AgentSettings(BaseSettings):
    """Task loop configuration."""

    model_config = _shared_config

    max_rounds: int = Field(default=20, ge=1, description="Maximum decision rounds per task")
    request_interval: float = Field(
        default=10.0,
        ge=0,
        description="Seconds to wait between rounds (model quota pacing)",
    )
    min_element_distance: float = Field(
        default=30.0,
        ge=0,
        description="Focusable elements closer than this to a clickable one are dropped",
    )
    dark_mode_annotation: bool = Field(
        default=False,
        description="Draw labels dark-on-light instead of light-on-dark",
    )
    settle_delay: float = Field(
        default=1.0,
        description="Seconds to wait after a capture before reading the UI tree",
    )
    screenshot_dir: str = Field(default="./screenshots", description="Where annotated frames are written")
    useless_element_ids: str = Field(
        default="",
        description="Comma-separated element ids never offered to the model",
    )

    def get_useless_ids(self) -> set[str]:
        """Parse the comma-separated exclusion list."""
        return {i.strip() for i in self.useless_element_ids.split(",") if i.strip()}


class Settings(BaseSettings):
    """
    Main settings class combining all configuration sections.

    Usage:
        from app.config import get_settings
        settings = get_settings()
        print(settings.agent.max_rounds)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    llm: LLMSettings = Field(default_factory=LLMSettings)
    device: DeviceSettings = Field(default_factory=DeviceSettings)
    capture: CaptureSettings = Field(default_factory=CaptureSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings loaded from environment.
    """
    return Settings()
