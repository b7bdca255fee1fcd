"""
Environment configuration for the Vrbo backend.

Values come from the process environment, optionally seeded from a .env file.
"""
import os
from typing import Literal, Optional
from urllib.parse import quote_plus

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

DEFAULT_DB_HOST = "cluster0.jmsycr3.mongodb.net"
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")
LogLevel = Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]


class ConfigError(Exception):
    pass


def env_log_level() -> str:
    """LOG_LEVEL for import-time logging setup; unknown values fall back to INFO."""
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    return level if level in LOG_LEVELS else "INFO"


class Settings(BaseModel):
    db_user: str = ""
    db_pass: str
    db_host: str = DEFAULT_DB_HOST
    database_url: Optional[str] = None
    database_name: str = "vrboDB"
    port: int = Field(5000, ge=1, le=65535)
    store_timeout_ms: int = Field(5000, ge=1)
    log_level: LogLevel = "INFO"

    @property
    def mongo_uri(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"mongodb+srv://{quote_plus(self.db_user)}:{quote_plus(self.db_pass)}@{self.db_host}"
            "/?retryWrites=true&w=majority&appName=Cluster0"
        )


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def load_settings() -> Settings:
    db_pass = os.getenv("DB_PASS")
    if not db_pass:
        raise ConfigError("DB_PASS environment variable is missing.")
    try:
        return Settings(
            db_user=os.getenv("DB_USER", ""),
            db_pass=db_pass,
            db_host=os.getenv("DB_HOST") or DEFAULT_DB_HOST,
            database_url=os.getenv("DATABASE_URL") or None,
            database_name=os.getenv("DATABASE_NAME") or "vrboDB",
            port=_int_env("PORT", 5000),
            store_timeout_ms=_int_env("STORE_TIMEOUT_MS", 5000),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )
    except ValueError as e:
        # pydantic.ValidationError is a ValueError
        raise ConfigError(str(e))
