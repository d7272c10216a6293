"""Configuration settings for the application."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical
    CORS_ORIGINS: list[str] = ["https://app.hubspot.com", "http://localhost:3000"]

    # Generation backend
    BACKEND: str = "gemini"  # Options: gemini, openai
    GEMINI_API_KEY: str | None = None
    GEMINI_MODEL: str = "gemini-1.5-flash"
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    GENERATION_TEMPERATURE: float = 0.2
    GENERATION_TOP_P: float = 0.95
    GENERATION_TOP_K: int = 40
    GENERATION_MAX_OUTPUT_TOKENS: int = 2048
    GENERATION_TIMEOUT: float = 60.0

    # Quota-aware retry
    GENERATION_MAX_ATTEMPTS: int = 6
    GENERATION_BACKOFF_BASE: float = 2.0  # seconds before the first retry
    GENERATION_BACKOFF_MULTIPLIER: float = 2.0
    GENERATION_BACKOFF_MAX: float = 60.0

    # CRM tools
    HUBSPOT_ACCESS_TOKEN: str | None = None
    HUBSPOT_BASE_URL: str = "https://api.hubapi.com"
    HUBSPOT_TIMEOUT: float = 30.0

    # Agent loop
    MAX_TOOL_ROUNDS: int = 1

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
