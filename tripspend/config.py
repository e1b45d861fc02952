import os
from decimal import Decimal

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

DEFAULT_DATABASE_URL = "sqlite:///./tripspend.db"
FRANKFURTER_BASE = "https://api.frankfurter.dev/v1"

# Money comparisons within one minor unit are treated as equal
MONEY_TOLERANCE = Decimal("0.01")


class Settings(BaseModel):
    database_url: str = DEFAULT_DATABASE_URL
    fx_api_base: str = FRANKFURTER_BASE
    fx_cache_hours: int = 24
    audit_sink: str = "database"
    sentry_dsn: str | None = None
    log_level: str = "INFO"


def _database_url() -> str:
    url = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)
    # Handle Render's postgres:// -> postgresql://
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def get_settings() -> Settings:
    """Read settings from the environment (and .env, if present)."""
    return Settings(
        database_url=_database_url(),
        fx_api_base=os.getenv("FX_API_BASE", FRANKFURTER_BASE),
        fx_cache_hours=int(os.getenv("FX_CACHE_HOURS", "24")),
        audit_sink=os.getenv("AUDIT_SINK", "database"),
        sentry_dsn=os.getenv("SENTRY_DSN") or None,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
