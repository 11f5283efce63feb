"""
Application logging setup.

Console and rotating-file handlers are attached to the Flask app logger and the
``roster_app`` package logger, formatted as JSON lines or plain text depending
on ``LOG_FORMAT``. Values passed through ``extra=`` (``importer_run_id`` and
friends) are carried into the JSON payload.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any

from flask import Flask

PACKAGE_LOGGER_NAME = "roster_app"
_HANDLER_MARKER = "_roster_app_handler"

_RESERVED_LOG_RECORD_FIELDS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "asctime",
        "taskName",
    }
)


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def __init__(self, app_name: str = "", app_version: str = "") -> None:
        super().__init__()
        self.app_name = app_name
        self.app_version = app_version

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        if self.app_name:
            payload["app"] = self.app_name
        if self.app_version:
            payload["version"] = self.app_version
        for key, value in record.__dict__.items():
            if key in _RESERVED_LOG_RECORD_FIELDS or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=True)


TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _build_formatter(app: Flask) -> logging.Formatter:
    if str(app.config.get("LOG_FORMAT", "json")).lower() == "json":
        return JsonFormatter(app.config.get("APP_NAME", ""), app.config.get("APP_VERSION", ""))
    return logging.Formatter(TEXT_FORMAT)


def _resolve_level(app: Flask) -> int:
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    return getattr(logging, level_name, logging.INFO)


def _remove_managed_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()


def _mark(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _HANDLER_MARKER, True)
    return handler


def setup_logging(app: Flask) -> None:
    """
    (Re)configure logging for ``app``.

    Safe to call repeatedly: handlers installed by a previous call are removed
    first, so tests can flip ``LOG_LEVEL`` and re-run it.
    """

    level = _resolve_level(app)
    formatter = _build_formatter(app)
    handlers: list[logging.Handler] = []

    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        console.setLevel(level)
        handlers.append(_mark(console))

    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = app.config.get("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "roster_app.log"),
            maxBytes=int(app.config.get("LOG_FILE_MAX_BYTES", 10485760)),
            backupCount=int(app.config.get("LOG_FILE_BACKUP_COUNT", 10)),
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        handlers.append(_mark(file_handler))

    for logger in (app.logger, logging.getLogger(PACKAGE_LOGGER_NAME)):
        _remove_managed_handlers(logger)
        for handler in handlers:
            logger.addHandler(handler)
        logger.setLevel(level)

    # The package logger already has handlers; keep records from reaching root twice
    logging.getLogger(PACKAGE_LOGGER_NAME).propagate = not handlers

    app.logger.debug(
        "Logging configured",
        extra={"log_level": logging.getLevelName(level), "log_handlers": len(handlers)},
    )
