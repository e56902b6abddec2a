from functools import lru_cache
from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine as sa_create_engine
from sqlalchemy.engine import Engine

from .errors import DatastoryError


class ConfigError(DatastoryError):
    """Configuration-related error."""
    pass


# ─────────────────────────────────────────────────────────────
# Section configs
# ─────────────────────────────────────────────────────────────


class LoggingSettings(BaseModel):
    level: Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"] = "INFO"
    format: str = (
        "%(asctime)-20s %(name)-40s "
        "%(levelname)-8s: %(message)s"
    )


class DatabaseSettings(BaseModel):
    """
    DB config as a SQLAlchemy URL.

    In production, override via:
    - env var:     DATASTORY_DATABASE__URL
    - dotenv:      .env / .env.local
    - secret file: /run/secrets/datastory/database__url
    """
    url: str = Field(
        "sqlite+pysqlite:///:memory:",
        description="SQLAlchemy-style database URL.",
    )
    echo: bool = Field(
        False, description="Log every statement emitted by the engine."
    )


class MockSettings(BaseModel):
    """
    Synthetic identities handed out by MockStore.

    id_strategy:
        - "uuid":     random UUID4 strings (globally unique)
        - "sequence": <id_prefix><counter zero-padded to id_width>
    """

    id_strategy: Literal["uuid", "sequence"] = Field(
        "uuid", description="How mock identities are generated."
    )
    id_prefix: str = Field(
        "MOCK", description="Prefix of sequence identities."
    )
    id_width: int = Field(
        12, description="Zero-padded width of the sequence counter."
    )

    def validate_strategy(self) -> None:
        """Ensure a sequence strategy can actually produce identities."""
        if self.id_strategy == "sequence" and self.id_width < 1:
            raise ConfigError(
                f"Unsupported id_width={self.id_width} for the sequence strategy; "
                f"it must be at least 1."
            )


# ─────────────────────────────────────────────────────────────
# Top-level settings
# ─────────────────────────────────────────────────────────────


class AppSettings(BaseSettings):
    """
    Canonical configuration for datastory.

    Precedence (highest → lowest):

    1. Init kwargs (tests/overrides)
    2. Environment variables
    3. .env and .env.local
    4. Secret files in /run/secrets/datastory
    5. Defaults in this class
    """

    model_config = SettingsConfigDict(
        env_prefix="DATASTORY_",  # DATASTORY_LOGGING__LEVEL, DATASTORY_MOCK__ID_STRATEGY, ...
        env_file=(".env", ".env.local"),  # .env.local overrides .env
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        secrets_dir="/run/secrets/datastory",
        extra="ignore",
        validate_default=True,
    )

    app_name: str = "datastory"
    debug: bool = False

    logging: LoggingSettings = LoggingSettings()
    database: DatabaseSettings = DatabaseSettings()  # type: ignore[call-arg]
    mock: MockSettings = MockSettings()  # type: ignore[call-arg]


@lru_cache(maxsize=1)
def get_settings(**overrides: Any) -> AppSettings:
    """
    Cached accessor for process-wide settings.

    `overrides` are init kwargs → highest precedence (handy in tests).
    """
    settings = AppSettings(**overrides)
    settings.mock.validate_strategy()
    return settings


def create_engine(settings: AppSettings | None = None) -> Engine:
    """Build an SQLAlchemy engine from the database section."""
    settings = settings or get_settings()
    return sa_create_engine(settings.database.url, echo=settings.database.echo)
