"""Runtime settings, read from the environment and an optional .env file"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List
from urllib.parse import quote_plus

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode

# Repository root; relative paths in settings resolve against it
_ROOT = Path(__file__).resolve().parent.parent

_DEV_SECRET = "dev-secret-key-change-in-production-use-openssl-rand-hex-32"
_WEAK_SECRETS = {"", _DEV_SECRET, "change-me", "secret"}
_WEAK_ADMIN_PASSWORDS = {"", "admin123", "password", "changeme"}


class Settings(BaseSettings):
    """All tunables of the access service"""

    APP_NAME: str = "Gatekeeper Access Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # DATABASE_URL wins; otherwise a PostgreSQL URL is built from the parts
    DATABASE_URL: str = ""
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "gatekeeper"
    POSTGRES_USER: str = "gatekeeper"
    POSTGRES_PASSWORD: str = "gatekeeper"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10
    DB_INIT_MODE: str = "migrate"  # migrate | create_all | off
    DB_REQUIRE_HEAD: bool = True

    # Operator sessions
    SECRET_KEY: str = _DEV_SECRET
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    # Replaying an already rotated refresh token revokes every live token of the account
    REFRESH_REUSE_REVOKES_ALL: bool = False

    # Throttling (per client IP, or per lock for taps)
    RATE_LIMIT_PER_MINUTE: int = 100
    RATE_LIMIT_PER_HOUR: int = 1000
    LOGIN_RATE_LIMIT_PER_MINUTE: int = 10
    LOGIN_RATE_LIMIT_PER_HOUR: int = 50
    TAP_RATE_LIMIT_PER_MINUTE: int = 120

    # Identical audit entries inside this window collapse into one
    AUDIT_DEDUP_WINDOW_SECONDS: float = 2.0

    # Housekeeping
    RUN_MAINTENANCE_JOBS: bool = True
    KEY_EXPIRY_JOB_INTERVAL_SECONDS: float = 300.0
    REFRESH_CLEANUP_INTERVAL_SECONDS: float = 86400.0

    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/gatekeeper.log"

    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:3000"]

    # Created at startup when no account has this email
    ADMIN_EMAIL: str = "admin@example.com"
    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: str = "admin123"

    class Config:
        env_file = ".env"
        case_sensitive = True

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        """Take either a JSON list or a comma-separated string"""
        if not isinstance(value, str):
            return value
        value = value.strip()
        if value.startswith("["):
            value = json.loads(value)
        else:
            value = value.split(",")
        return [str(origin).strip() for origin in value if str(origin).strip()]

    @field_validator("LOG_LEVEL")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown LOG_LEVEL {value!r}")
        return level

    def get_log_file(self) -> str:
        path = Path(self.LOG_FILE or "logs/gatekeeper.log")
        return str(path if path.is_absolute() else _ROOT / path)

    def get_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return "postgresql://{user}:{password}@{host}:{port}/{db}".format(
            user=quote_plus(self.POSTGRES_USER),
            password=quote_plus(self.POSTGRES_PASSWORD),
            host=self.POSTGRES_HOST,
            port=self.POSTGRES_PORT,
            db=self.POSTGRES_DB,
        )

    def validate_security_settings(self) -> None:
        """
        Refuse to run production with development credentials.

        Raises:
            ValueError: naming every offending setting.
        """
        if self.ENVIRONMENT.lower() != "production":
            return

        problems = []
        if self.SECRET_KEY in _WEAK_SECRETS or len(self.SECRET_KEY) < 32:
            problems.append("SECRET_KEY must be a random value of at least 32 characters")
        if self.ADMIN_PASSWORD in _WEAK_ADMIN_PASSWORDS or len(self.ADMIN_PASSWORD) < 12:
            problems.append("ADMIN_PASSWORD must be at least 12 characters and not a default")
        if self.ACCESS_TOKEN_EXPIRE_MINUTES > 60:
            problems.append("ACCESS_TOKEN_EXPIRE_MINUTES should not exceed 60")
        if "*" in self.CORS_ORIGINS:
            problems.append("CORS_ORIGINS must list explicit origins")
        if problems:
            raise ValueError("Insecure production settings: " + "; ".join(problems))


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
