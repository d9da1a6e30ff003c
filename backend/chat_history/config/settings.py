"""
Configuration Settings.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # App info
    app_name: str = "Islamic Chat History"
    app_version: str = "1.0.0"
    debug: bool = True

    # Security (tokens are issued elsewhere, we only verify them)
    secret_key: str = "your-secret-key-change-this-in-production"
    algorithm: str = "HS256"

    # Document store
    store_backend: str = "memory"  # memory, local
    local_storage_path: str = "./data"
    sessions_collection: str = "chat_sessions"

    # Session list cache
    cache_ttl_seconds: float = 5 * 60

    # Pagination
    default_page_size: int = 10
    max_page_size: int = 100

    # Live updates: newest N sessions per snapshot
    subscription_limit: int = 20
    # Seconds an idle event stream waits before a keep-alive and a liveness check
    stream_keepalive_seconds: float = 15.0

    # In-memory search only looks at the newest N sessions
    search_window: int = 100

    # Titles and tags
    max_tags: int = 10
    title_max_words: int = 6
    title_max_length: int = 50

    # CORS
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Logging configuration
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file_path: str = "./logs/chat_history.log"
    log_file_enabled: bool = True
    log_console_enabled: bool = True
    log_json_format: bool = True  # JSON format for files, human-readable for console
    log_api_requests: bool = True  # Log all API requests/responses

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
