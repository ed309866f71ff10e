import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

# only used outside production
DEV_JWT_SECRET = "dev-only-secret-change-me-0123456789abcdef"


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        jwt_secret: str,
        token_ttl_hours: int,
        port: int,
        environment: str,
        log_level: str,
        cors_origins: list[str],
        rate_limit_enabled: bool,
        rate_limit_window_secs: int,
        rate_limit_max: int,
        auth_rate_limit_max: int,
        bcrypt_rounds: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.jwt_secret = jwt_secret
        self.token_ttl_hours = token_ttl_hours
        self.port = port
        self.environment = environment
        self.log_level = log_level
        self.cors_origins = cors_origins
        self.rate_limit_enabled = rate_limit_enabled
        self.rate_limit_window_secs = rate_limit_window_secs
        self.rate_limit_max = rate_limit_max
        self.auth_rate_limit_max = auth_rate_limit_max
        self.bcrypt_rounds = bcrypt_rounds

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_dotenv()
    database_url = os.getenv("EXPENSES_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "expenses.db"
        database_url = f"sqlite:///{default_db}"
    timezone = os.getenv("EXPENSES_TIMEZONE", "Asia/Kolkata")
    environment = os.getenv("EXPENSES_ENV", "development").strip().lower()
    jwt_secret = os.getenv("EXPENSES_JWT_SECRET", "").strip()
    if not jwt_secret:
        if environment == "production":
            raise RuntimeError("EXPENSES_JWT_SECRET must be set in production")
        jwt_secret = DEV_JWT_SECRET
    token_ttl_hours = int(os.getenv("EXPENSES_TOKEN_TTL_HOURS", "168"))
    port = int(os.getenv("EXPENSES_PORT", "5000"))
    log_level = os.getenv("EXPENSES_LOG_LEVEL", "INFO").upper()
    cors_origins = [
        origin.strip()
        for origin in os.getenv("EXPENSES_CORS_ORIGINS", "*").split(",")
        if origin.strip()
    ]
    rate_limit_enabled = _env_flag("EXPENSES_RATE_LIMIT_ENABLED", True)
    rate_limit_window_secs = int(os.getenv("EXPENSES_RATE_LIMIT_WINDOW_SECS", "900"))
    rate_limit_max = int(os.getenv("EXPENSES_RATE_LIMIT_MAX", "100"))
    auth_rate_limit_max = int(os.getenv("EXPENSES_AUTH_RATE_LIMIT_MAX", "5"))
    bcrypt_rounds = int(os.getenv("EXPENSES_BCRYPT_ROUNDS", "12"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        jwt_secret=jwt_secret,
        token_ttl_hours=token_ttl_hours,
        port=port,
        environment=environment,
        log_level=log_level,
        cors_origins=cors_origins,
        rate_limit_enabled=rate_limit_enabled,
        rate_limit_window_secs=rate_limit_window_secs,
        rate_limit_max=rate_limit_max,
        auth_rate_limit_max=auth_rate_limit_max,
        bcrypt_rounds=bcrypt_rounds,
    )
