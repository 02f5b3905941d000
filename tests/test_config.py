import json
import logging

from pythonjsonlogger.json import JsonFormatter

from examprep.core.config import Settings
from examprep.core.database import build_engine
from examprep.core.logs import configure_logging


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///tmp.db")
    monkeypatch.setenv("QUOTA_MAX_RETRIES", "5")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings()
    assert settings.is_sqlite()
    assert settings.QUOTA_MAX_RETRIES == 5
    assert settings.LOG_LEVEL == "DEBUG"


def test_defaults_target_postgres():
    settings = Settings(_env_file=None)
    assert settings.DATABASE_URL.startswith("postgresql+psycopg2://")
    assert settings.SESSION_STALE_HOURS == 24
    assert settings.RQ_QUEUE == "housekeeping"


def test_in_memory_sqlite_engine_shares_one_connection(settings):
    engine = build_engine(settings)
    assert engine.pool.__class__.__name__ == "StaticPool"
    engine.dispose()


def test_json_logging(settings, tmp_path):
    log_file = tmp_path / "engine.log"
    configure_logging(settings.model_copy(update={"LOG_FORMAT": "json", "LOG_FILE": str(log_file)}))
    try:
        logging.getLogger("examprep.test").info("session started")
        for handler in logging.getLogger().handlers:
            handler.flush()
        record = json.loads(log_file.read_text().splitlines()[-1])
        assert record["message"] == "session started"
        assert record["levelname"] == "INFO"
        assert record["name"] == "examprep.test"
    finally:
        for handler in logging.getLogger().handlers:
            handler.close()
        logging.getLogger().handlers = []


def test_json_format_installs_json_formatter(settings):
    configure_logging(settings.model_copy(update={"LOG_FORMAT": "json"}))
    try:
        assert isinstance(logging.getLogger().handlers[0].formatter, JsonFormatter)
    finally:
        logging.getLogger().handlers = []
