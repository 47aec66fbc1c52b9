"""
Application configuration. Loads from environment variables.
Secrets and sensitive config must never be hardcoded.
"""

import os

from dotenv import load_dotenv

load_dotenv()
from functools import lru_cache


@lru_cache(maxsize=1)
def get_settings() -> "Settings":
    """Return cached settings instance."""
    return Settings()


class Settings:
    """Application settings loaded from environment."""

    # App
    app_name: str = "evergreenOS"
    debug: bool = False

    # Database (postgresql+psycopg for psycopg3; sqlite URLs for local/test runs)
    database_url: str = "postgresql+psycopg://localhost:5432/evergreen_dev"
    db_connect_timeout: int = 10  # seconds

    # Security
    secret_key: str = ""
    webhook_secret: str = ""  # Required for /api/webhooks/identity

    # Entity queries
    default_query_limit: int = 50
    max_query_limit: int = 500

    # Extra entity types treated as private to their owning user
    user_scoped_types: list[str] = []

    def __init__(self) -> None:
        self.app_name = os.getenv("APP_NAME", self.app_name)
        self.debug = os.getenv("DEBUG", "false").lower() == "true"

        default_user = os.getenv("PGUSER") or os.getenv("USER") or "postgres"
        default_url = (
            f"postgresql+psycopg://{default_user}:"
            f"{os.getenv('PGPASSWORD', '')}@"
            f"{os.getenv('PGHOST', 'localhost')}:"
            f"{os.getenv('PGPORT', '5432')}/"
            f"{os.getenv('PGDATABASE', 'evergreen_dev')}"
        )
        raw_url = os.getenv("DATABASE_URL", default_url)
        # Ensure psycopg3 driver if URL uses generic postgresql://
        if raw_url.startswith("postgresql://") and not raw_url.startswith("postgresql+psycopg"):
            raw_url = raw_url.replace("postgresql://", "postgresql+psycopg://", 1)
        self.database_url = raw_url
        self.db_connect_timeout = int(os.getenv("DB_CONNECT_TIMEOUT", str(self.db_connect_timeout)))

        self.secret_key = os.getenv("SECRET_KEY", "")
        self.webhook_secret = os.getenv("WEBHOOK_SECRET", "")

        self.default_query_limit = int(
            os.getenv("DEFAULT_QUERY_LIMIT", str(self.default_query_limit))
        )
        self.max_query_limit = int(os.getenv("MAX_QUERY_LIMIT", str(self.max_query_limit)))

        # Comma-separated entity type names, e.g. "sms,voicemail"
        _scoped = os.getenv("USER_SCOPED_TYPES", "").strip()
        self.user_scoped_types = [s.strip().lower() for s in _scoped.split(",") if s.strip()]

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")
