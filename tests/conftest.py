from __future__ import annotations

import pytest
from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, create_engine
from sqlalchemy.orm import Session

from datastory.config import AppSettings
from datastory.schema import create_schema, external_id_column
from datastory.session import BuildSession

# ---------------------------------------------------------------------------
# Record types shared by the tests
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    external_id_column("username"),
    Column("email", String, nullable=True),
    info={"setup": True},
)

accounts = Table(
    "accounts",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String, nullable=False),
    external_id_column("code", nullable=True),
    Column("owner_id", Integer, ForeignKey("users.id"), nullable=True),
    Column("parent_id", Integer, ForeignKey("accounts.id"), nullable=True),
)

contacts = Table(
    "contacts",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("last_name", String, nullable=False),
    Column("email", String, nullable=True),
    Column("account_id", Integer, ForeignKey("accounts.id"), nullable=True),
)

opportunities = Table(
    "opportunities",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String, nullable=False),
    Column("account_id", Integer, ForeignKey("accounts.id"), nullable=True),
    Column("contact_id", Integer, ForeignKey("contacts.id"), nullable=True),
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings()


@pytest.fixture
def session(settings: AppSettings) -> BuildSession:
    return BuildSession(settings)


@pytest.fixture
def engine():
    engine = create_engine("sqlite+pysqlite:///:memory:")
    create_schema(engine, metadata)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    with Session(engine) as db_session:
        yield db_session
