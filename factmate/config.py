"""Configuration settings for the FactMate service."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Deployment settings loaded from environment variables.

    User credentials are never read from here; they are supplied per
    session at runtime and held only in memory.
    """

    # LLM Configuration
    LLM_MODEL: str = "gpt-4o-mini"
    SEARCH_LLM_MODEL: str = "gpt-4o-mini-search-preview"
    LLM_TEMPERATURE: float = 0.1
    LLM_TIMEOUT_SECONDS: float = 120.0

    # API Configuration
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # Security Configuration
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:8000"  # Comma-separated list
    API_KEY: str = ""  # Optional service key, checked against X-API-Key
    RATE_LIMIT_REQUESTS: int = 100  # Requests per minute
    RATE_LIMIT_WINDOW: int = 60  # Window in seconds
    MAX_SESSIONS_STORED: int = 1000  # Maximum sessions to keep in memory
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024
    DEBUG_MODE: bool = False  # Set to True only in development
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


# Global settings instance
settings = Settings()
