from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .errors import ConfigError


# ----------------------------
# Config & Constants
# ----------------------------
ENVIRONMENTS = ("development", "production", "test")
LEDGER_BACKENDS = ("sql", "redis")

DEV_SESSION_SECRET = "dev-secret-change-me"
DEFAULT_DATABASE_URL = "sqlite:///./tidequote.db"
DEFAULT_REDIS_URL = "redis://127.0.0.1:6379"
DEFAULT_QUOTE_API_URL = "https://zenquotes.io/api/random"
DEFAULT_PORT = 3001

CALLBACK_PATH = "/auth/google/callback"


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT

    session_secret: str = DEV_SESSION_SECRET
    session_max_age: int = 24 * 3600

    google_client_id: str = ""
    google_client_secret: str = ""
    base_url: Optional[str] = None

    database_url: str = DEFAULT_DATABASE_URL
    ledger_backend: str = "sql"
    redis_url: str = DEFAULT_REDIS_URL

    quote_api_url: str = DEFAULT_QUOTE_API_URL
    quote_timeout: float = 3.0

    log_level: Optional[str] = None

    # postgres pool tuning, forwarded to make_async_engine
    db_pool_size: int = 10
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_gate_limit: Optional[int] = None

    def __post_init__(self):
        if self.environment not in ENVIRONMENTS:
            raise ConfigError(
                f"unknown environment {self.environment!r}, expected one of "
                f"{', '.join(ENVIRONMENTS)}"
            )
        if self.ledger_backend not in LEDGER_BACKENDS:
            raise ConfigError(
                f"unknown ledger backend {self.ledger_backend!r}, expected "
                f"one of {', '.join(LEDGER_BACKENDS)}"
            )
        if not (0 < self.port < 65536):
            raise ConfigError(f"port out of range: {self.port}")
        if self.quote_timeout <= 0:
            raise ConfigError("QUOTE_TIMEOUT must be positive")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        environment = (
            env.get("APP_ENV") or env.get("NODE_ENV") or "development"
        ).lower()
        return cls(
            environment=environment,
            host=env.get("HOST", "0.0.0.0"),
            port=_int(env, "PORT", DEFAULT_PORT),
            session_secret=env.get("SESSION_SECRET") or DEV_SESSION_SECRET,
            session_max_age=_int(env, "SESSION_MAX_AGE", 24 * 3600),
            google_client_id=env.get("GOOGLE_CLIENT_ID", ""),
            google_client_secret=env.get("GOOGLE_CLIENT_SECRET", ""),
            base_url=env.get("BASE_URL") or None,
            database_url=env.get("DATABASE_URL") or DEFAULT_DATABASE_URL,
            ledger_backend=env.get("LEDGER_BACKEND", "sql").lower(),
            redis_url=env.get("REDIS_URL") or DEFAULT_REDIS_URL,
            quote_api_url=env.get("QUOTE_API_URL") or DEFAULT_QUOTE_API_URL,
            quote_timeout=_float(env, "QUOTE_TIMEOUT", 3.0),
            log_level=env.get("LOG_LEVEL") or None,
            db_pool_size=_int(env, "DB_POOL_SIZE", 10),
            db_max_overflow=_int(env, "DB_MAX_OVERFLOW", 10),
            db_pool_timeout=_int(env, "DB_POOL_TIMEOUT", 30),
            db_gate_limit=_int(env, "DB_GATE_LIMIT", 0) or None,
        )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def secure_cookies(self) -> bool:
        return self.is_production

    @property
    def effective_log_level(self) -> str:
        if self.log_level:
            return self.log_level.upper()
        return "INFO" if self.is_production else "DEBUG"

    @property
    def public_base_url(self) -> str:
        if self.base_url:
            return self.base_url.rstrip("/")
        return f"http://localhost:{self.port}"

    @property
    def callback_url(self) -> str:
        return self.public_base_url + CALLBACK_PATH

    def validate(self) -> None:
        """Reject configurations that are unsafe to serve in production."""
        if not self.is_production:
            return
        problems = []
        if self.session_secret == DEV_SESSION_SECRET:
            problems.append("SESSION_SECRET must be set")
        if not self.google_client_id or not self.google_client_secret:
            problems.append(
                "GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be set"
            )
        if not self.base_url:
            problems.append("BASE_URL must be set")
        if problems:
            raise ConfigError("; ".join(problems))
