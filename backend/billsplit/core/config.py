"""Application configuration.

``Settings`` reads values from environment variables with sensible
defaults.  ``.env`` files are loaded from the repository root first and
then from whatever python-dotenv discovers from the working directory,
without overriding variables that are already set.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from dotenv import load_dotenv, find_dotenv

# -----------------------------------------------------------------------------
# .env loading

_THIS_FILE = Path(__file__).resolve()
_REPO_ROOT = _THIS_FILE.parents[3]
_ROOT_ENV = _REPO_ROOT / ".env"

_candidate_envs: list[str] = []
if _ROOT_ENV.exists():
    _candidate_envs.append(str(_ROOT_ENV))

_FOUND_ENV = find_dotenv(usecwd=True)
if _FOUND_ENV and _FOUND_ENV not in _candidate_envs:
    _candidate_envs.append(_FOUND_ENV)

for _env_path in _candidate_envs:
    load_dotenv(dotenv_path=_env_path, override=False)


class Settings(BaseSettings):
    """Application settings.

    Any attribute can be overridden by setting the environment variable
    of the same name.
    """

    model_config = SettingsConfigDict(
        env_file=tuple(_candidate_envs) if _candidate_envs else (".env",),
        case_sensitive=True,
        extra="allow",
    )

    # API
    PROJECT_NAME: str = "BillSplit API"
    API_PREFIX: str = "/api"
    ENVIRONMENT: str = Field(default="development")

    # Database
    DATABASE_URL: Optional[str] = Field(default=None)
    # Use a local SQLite database when DATABASE_URL is unset or unreachable
    DB_DEV_FALLBACK_SQLITE: bool = Field(default=False)
    SQLITE_FALLBACK_URL: str = Field(default="sqlite+aiosqlite:///./billsplit.db")

    # Redis / Dramatiq
    REDIS_URL: str = Field(default="redis://localhost:6379/0")
    DRAMATIQ_BROKER_URL: Optional[str] = Field(default=None)

    # Auth
    SECRET_KEY: str = Field(default="changeme")
    JWT_ALGORITHM: str = Field(default="HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=60 * 24 * 7)
    # Never enable outside local development
    DEV_AUTH_BYPASS: bool = Field(default=False)

    # CORS
    BACKEND_CORS_ORIGINS: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
    )
    # Frontend base URL used for Stripe redirects
    FRONTEND_BASE_URL: str = Field(default="http://localhost:3000")

    # Uploads / OCR
    MAX_UPLOAD_SIZE: int = 10 * 1024 * 1024  # 10MB
    ALLOWED_EXTENSIONS: set[str] = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".tiff"}
    STORAGE_DIRECTORY: str = Field(default="./storage")
    TESSERACT_CMD: Optional[str] = Field(default=None)
    OCR_LANGUAGE: str = Field(default="eng")

    # Sentry
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.0)
    SENTRY_PROFILES_SAMPLE_RATE: float = Field(default=0.0)
    SENTRY_RELEASE: Optional[str] = Field(default=None)

    # Stripe
    STRIPE_API_KEY: Optional[str] = Field(default=None)
    STRIPE_WEBHOOK_SECRET: Optional[str] = Field(default=None)
    STRIPE_WEBHOOK_SECRETS: Optional[str] = Field(default=None)
    STRIPE_WEBHOOK_ALLOWED_EVENTS: Optional[str] = Field(default=None)
    STRIPE_PRICE_PREMIUM_MONTHLY: Optional[str] = Field(default=None)
    STRIPE_PRICE_PREMIUM_YEARLY: Optional[str] = Field(default=None)


settings = Settings()


def get_webhook_secret_list() -> list[str]:
    """Return webhook secrets for signature verification.

    ``STRIPE_WEBHOOK_SECRETS`` (comma separated, ordered) wins over the
    singular ``STRIPE_WEBHOOK_SECRET``.
    """
    secrets: list[str] = []
    if settings.STRIPE_WEBHOOK_SECRETS:
        secrets.extend([s.strip() for s in settings.STRIPE_WEBHOOK_SECRETS.split(",") if s.strip()])
    elif settings.STRIPE_WEBHOOK_SECRET:
        secrets.append(settings.STRIPE_WEBHOOK_SECRET.strip())
    return secrets
