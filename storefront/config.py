"""Runtime configuration for the storefront (loaded from the environment, overridable in tests)."""
import os
from typing import NamedTuple, Optional


class Settings(NamedTuple):
    database_url: str
    stripe_secret_key: Optional[str]
    stripe_webhook_secret: Optional[str]
    public_base_url: str
    currency: str
    session_ttl_seconds: int
    session_cookie_name: str
    session_cookie_secure: bool
    password_rounds: int
    gateway_timeout_seconds: float
    gateway_max_retries: int
    log_level: str


MIN_PASSWORD_ROUNDS = 1000


def _flag(value: str) -> bool:
    return value.lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./storefront.db"),
        stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or None,
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET") or None,
        public_base_url=os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/"),
        currency=os.getenv("CURRENCY", "usd").lower(),
        session_ttl_seconds=int(os.getenv("SESSION_TTL_SECONDS", str(60 * 60 * 24))),
        session_cookie_name=os.getenv("SESSION_COOKIE_NAME", "storefront_session"),
        session_cookie_secure=_flag(os.getenv("SESSION_COOKIE_SECURE", "0")),
        password_rounds=max(MIN_PASSWORD_ROUNDS, int(os.getenv("PASSWORD_ROUNDS", "100000"))),
        gateway_timeout_seconds=float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10")),
        gateway_max_retries=int(os.getenv("GATEWAY_MAX_RETRIES", "2")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


state = load_settings()


def get_settings() -> Settings:
    return state


def set_settings(**overrides) -> Settings:
    global state
    state = state._replace(**overrides)
    return state
