"""Configuration settings for the application."""

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    DEBUG: bool = False
    DATA_DIR: str = "./data"
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical
    CORS_ORIGINS: list[str] = ["*"]

    # LLM Configuration
    PLANNER: str = "gemini"  # Options: gemini, openai, anthropic
    GEMINI_API_KEY: str | None = None
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GEMINI_ENDPOINT: str = "https://generativelanguage.googleapis.com/v1beta"
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-latest"
    LLM_TIMEOUT: float = 60.0

    # Agent loop
    MAX_TOOL_LOOPS: int = 4
    ARGS_PREVIEW_CHARS: int = 400
    PLAN_FIRST: bool = False
    EXHAUSTED_MARKER: Literal["INCOMPLETE", "COMPLETE"] = "INCOMPLETE"

    # Tools
    SANDBOX_MODE: Literal["mock", "local"] = "mock"
    SANDBOX_TIMEOUT: float = 20.0
    SERPER_API_KEY: str | None = None
    SERPER_ENDPOINT: str = "https://google.serper.dev/search"
    ELEVENLABS_API_KEY: str | None = None
    ELEVENLABS_VOICE_ID: str = "JBFqnCBsd6RMkjVDRZzb"
    ELEVENLABS_MODEL: str = "eleven_multilingual_v2"

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
