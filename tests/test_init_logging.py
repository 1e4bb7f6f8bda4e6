import logging
from logging.handlers import TimedRotatingFileHandler

from fastapi import FastAPI

from app.app_logging import ContextFilter, init_logging


def _clear_handlers(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    return logger


def _rotating(logger: logging.Logger) -> TimedRotatingFileHandler:
    return next(h for h in logger.handlers if isinstance(h, TimedRotatingFileHandler))


def test_handlers_rotate_daily_and_stamp_context(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_RETENTION_DAYS", "5")
    app_logger = _clear_handlers("app")
    access_logger = _clear_handlers("uvicorn.access")

    init_logging(FastAPI())

    for logger in (app_logger, access_logger):
        handler = _rotating(logger)
        assert handler.when == "MIDNIGHT"
        assert handler.backupCount == 5
        assert any(isinstance(f, ContextFilter) for f in handler.filters)

    app_logger.handlers.clear()
    access_logger.handlers.clear()


def test_init_logging_replaces_existing_access_handlers(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    access_logger = _clear_handlers("uvicorn.access")

    stream_handler = logging.StreamHandler()
    access_logger.addHandler(stream_handler)

    init_logging()

    assert stream_handler not in access_logger.handlers
    assert any(isinstance(h, TimedRotatingFileHandler) for h in access_logger.handlers)
    access_logger.handlers.clear()
    logging.getLogger("app").handlers.clear()


def test_unknown_log_level_falls_back_to_info(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_LEVEL", "chatty")
    app_logger = _clear_handlers("app")

    init_logging()

    assert app_logger.level == logging.INFO
    app_logger.handlers.clear()
    logging.getLogger("uvicorn.access").handlers.clear()
