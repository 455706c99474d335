import logging
from logging.handlers import TimedRotatingFileHandler

import pytest
from fastapi import FastAPI

from quoteflow.app_logging import APP_LOGGER_NAME, JsonFormatter, RequestIdFilter, init_logging


@pytest.fixture
def clean_loggers(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "nested" / "logs"))
    app_logger = logging.getLogger(APP_LOGGER_NAME)
    access_logger = logging.getLogger("uvicorn.access")
    app_logger.handlers.clear()
    access_logger.handlers.clear()
    yield app_logger, access_logger
    app_logger.handlers.clear()
    access_logger.handlers.clear()


def test_handlers_and_app_logger_are_attached(clean_loggers, tmp_path):
    app_logger, access_logger = clean_loggers
    app = FastAPI()

    init_logging(app)

    assert (tmp_path / "nested" / "logs").is_dir()
    for logger in (app_logger, access_logger):
        (handler,) = logger.handlers
        assert isinstance(handler, TimedRotatingFileHandler)
        assert any(isinstance(f, RequestIdFilter) for f in handler.filters)
    assert app.logger is app_logger


def test_repeated_init_keeps_a_single_handler_per_logger(clean_loggers):
    app_logger, access_logger = clean_loggers
    console = logging.StreamHandler()
    access_logger.addHandler(console)

    init_logging()
    init_logging()

    assert len(app_logger.handlers) == 1
    assert len(access_logger.handlers) == 1
    assert console not in access_logger.handlers


def test_log_json_switches_formatter(clean_loggers, monkeypatch):
    app_logger, access_logger = clean_loggers
    monkeypatch.setenv("LOG_JSON", "true")

    init_logging()

    assert isinstance(app_logger.handlers[0].formatter, JsonFormatter)
    assert isinstance(access_logger.handlers[0].formatter, JsonFormatter)
