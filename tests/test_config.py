from __future__ import annotations

import logging

import pytest
from sqlalchemy import text

from datastory.config import AppSettings, ConfigError, MockSettings, create_engine, get_settings
from datastory.logs import configure_logging


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def datastory_logger():
    logger = logging.getLogger("datastory")
    level, handlers = logger.level, list(logger.handlers)
    yield logger
    logger.setLevel(level)
    logger.handlers[:] = handlers


def test_defaults():
    settings = get_settings()

    assert settings.app_name == "datastory"
    assert settings.logging.level == "INFO"
    assert settings.mock.id_strategy == "uuid"
    assert settings.database.url.startswith("sqlite")


def test_overrides_have_highest_precedence(monkeypatch):
    monkeypatch.setenv("DATASTORY_APP_NAME", "from-env")

    assert get_settings(app_name="from-kwargs").app_name == "from-kwargs"


def test_nested_environment_variables(monkeypatch):
    monkeypatch.setenv("DATASTORY_MOCK__ID_STRATEGY", "sequence")
    monkeypatch.setenv("DATASTORY_LOGGING__LEVEL", "DEBUG")

    settings = AppSettings()

    assert settings.mock.id_strategy == "sequence"
    assert settings.logging.level == "DEBUG"


def test_settings_are_cached():
    assert get_settings() is get_settings()


def test_unusable_sequence_width_is_rejected():
    with pytest.raises(ConfigError):
        MockSettings(id_strategy="sequence", id_width=0).validate_strategy()


def test_create_engine_from_settings():
    engine = create_engine(AppSettings())
    with engine.connect() as conn:
        assert conn.execute(text("SELECT 1")).scalar_one() == 1
    engine.dispose()


def test_configure_logging_replaces_its_handler(datastory_logger):
    before = len(datastory_logger.handlers)

    configure_logging(AppSettings().logging)
    configure_logging(AppSettings(logging={"level": "DEBUG"}).logging)

    assert datastory_logger.level == logging.DEBUG
    assert len(datastory_logger.handlers) == before + 1


def test_configure_logging_applies_the_latest_format(datastory_logger):
    configure_logging(AppSettings().logging)
    configure_logging(AppSettings(logging={"format": "%(name)s|%(message)s"}).logging)

    handler = datastory_logger.handlers[-1]
    record = logging.LogRecord("datastory.session", logging.INFO, __file__, 1, "hello", None, None)
    assert handler.format(record) == "datastory.session|hello"
