import os
from datetime import timedelta


def normalize_database_url(url: str) -> str:
    if url.startswith("postgres://"):
        return "postgresql+psycopg://" + url[len("postgres://") :]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://") :]
    return url


def env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
    SQLALCHEMY_DATABASE_URI = normalize_database_url(
        os.getenv("DATABASE_URL", "sqlite:///dev.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv("SESSION_COOKIE_SAMESITE", "Lax")
    SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"
    SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "siteportal_session")
    PERMANENT_SESSION_LIFETIME = timedelta(
        hours=int(os.getenv("SESSION_LIFETIME_HOURS", "24"))
    )

    CREDENTIAL_SALT = os.getenv("CREDENTIAL_SALT", "salt")
    SEED_ON_STARTUP = env_flag("SEED_ON_STARTUP", "true")

    VISIT_LOG_CAP = int(os.getenv("VISIT_LOG_CAP", "1000"))
    EVENT_LOG_CAP = int(os.getenv("EVENT_LOG_CAP", "500"))
    ERROR_LOG_CAP = int(os.getenv("ERROR_LOG_CAP", "50"))
    DAILY_STATS_RETENTION_DAYS = int(os.getenv("DAILY_STATS_RETENTION_DAYS", "90"))
    # Weekly/monthly points with no recorded data get placeholder values
    # instead of zeros while this is on.
    ANALYTICS_FILL_MISSING = env_flag("ANALYTICS_FILL_MISSING", "true")
