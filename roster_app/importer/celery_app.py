"""
Celery wiring for the roster import worker.

One Celery app is built per Flask app and cached on the importer state. Every
task runs inside the Flask app context so the engine can use ``db.session``.
Without ``CELERY_BROKER_URL``/``CELERY_RESULT_BACKEND`` the worker falls back
to a SQLite transport in the instance folder.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from celery import Celery
from flask import Flask
from kombu import Queue

from .state import ImporterState, importer_state

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_NAME = "imports"
RUN_TASK_NAME = "importer.roster.run_csv"
HEARTBEAT_TASK_NAME = "importer.healthcheck"
TASK_MODULES = ("roster_app.importer.tasks",)


def _sqlite_transport_path(app: Flask) -> str:
    path = Path(app.config.get("CELERY_SQLITE_PATH") or "celery.sqlite")
    if not path.is_absolute():
        path = Path(app.instance_path) / path
    path.parent.mkdir(parents=True, exist_ok=True)
    # kombu wants forward slashes on every platform
    return path.as_posix()


def _extra_settings(app: Flask) -> dict[str, Any]:
    raw = app.config.get("CELERY_CONFIG")
    if not raw:
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        logger.warning("Ignoring CELERY_CONFIG: not a JSON object")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def celery_settings(app: Flask) -> dict[str, Any]:
    """Resolve the Celery configuration for ``app``."""

    broker = app.config.get("CELERY_BROKER_URL")
    backend = app.config.get("CELERY_RESULT_BACKEND")
    if not (broker and backend):
        sqlite_path = _sqlite_transport_path(app)
        broker = broker or f"sqla+sqlite:///{sqlite_path}"
        backend = backend or f"db+sqlite:///{sqlite_path}"

    settings: dict[str, Any] = {
        "broker_url": broker,
        "result_backend": backend,
        "task_default_queue": DEFAULT_QUEUE_NAME,
        "task_queues": [Queue(DEFAULT_QUEUE_NAME)],
        "task_routes": {"importer.*": {"queue": DEFAULT_QUEUE_NAME}},
        # A roster run must not be picked up twice; ack only after it finishes
        "task_acks_late": True,
        "worker_prefetch_multiplier": 1,
        "task_track_started": True,
        "result_extended": True,
        "broker_connection_retry_on_startup": True,
        "task_time_limit": app.config.get("IMPORTER_TASK_TIME_LIMIT", 15 * 60),
        "task_soft_time_limit": app.config.get("IMPORTER_TASK_SOFT_TIME_LIMIT", 12 * 60),
        "worker_hijack_root_logger": False,
    }
    settings.update(_extra_settings(app))
    return settings


def create_celery_app(app: Flask) -> Celery:
    settings = celery_settings(app)
    celery_app = Celery(app.import_name, include=TASK_MODULES)
    celery_app.conf.update(settings)

    class FlaskContextTask(celery_app.Task):  # type: ignore[misc]
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery_app.Task = FlaskContextTask  # type: ignore[assignment]
    celery_app.loader.import_default_modules()

    if not app.config.get("SQLALCHEMY_ECHO", False):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    app.logger.info(
        "Importer Celery app ready",
        extra={
            "importer_celery_broker_url": settings["broker_url"],
            "importer_worker_enabled": app.config.get("IMPORTER_WORKER_ENABLED"),
        },
    )
    return celery_app


def ensure_celery_app(app: Flask, state: ImporterState) -> Celery:
    if state.celery_app is None:
        state.celery_app = create_celery_app(app)
    return state.celery_app


def get_celery_app(app: Flask) -> Celery | None:
    """Return the app's Celery instance, or ``None`` while the importer is disabled."""

    state = importer_state(app)
    if not state.enabled:
        return None
    return ensure_celery_app(app, state)


__all__ = [
    "DEFAULT_QUEUE_NAME",
    "HEARTBEAT_TASK_NAME",
    "RUN_TASK_NAME",
    "celery_settings",
    "create_celery_app",
    "ensure_celery_app",
    "get_celery_app",
]
