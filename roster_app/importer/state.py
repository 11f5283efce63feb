"""
Importer feature flags and the per-app state kept in ``app.extensions``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from flask import Flask, current_app

from config.base import _coerce_bool

if TYPE_CHECKING:
    from celery import Celery

IMPORTER_EXTENSION_KEY = "importer"


@dataclass
class ImporterState:
    """What ``init_importer`` decided for one Flask app."""

    enabled: bool = False
    worker_enabled: bool = False
    celery_app: "Celery | None" = None


def _app(app: Flask | None) -> Flask:
    return app if app is not None else current_app._get_current_object()


def is_importer_enabled(app: Flask | None = None) -> bool:
    return _coerce_bool(_app(app).config.get("IMPORTER_ENABLED"), default=False)


def is_worker_enabled(app: Flask | None = None) -> bool:
    return _coerce_bool(_app(app).config.get("IMPORTER_WORKER_ENABLED"), default=False)


def importer_state(app: Flask | None = None) -> ImporterState:
    """Return the registered state, or a disabled placeholder before ``init_importer`` ran."""

    state = _app(app).extensions.get(IMPORTER_EXTENSION_KEY)
    return state if isinstance(state, ImporterState) else ImporterState()


__all__ = [
    "IMPORTER_EXTENSION_KEY",
    "ImporterState",
    "importer_state",
    "is_importer_enabled",
    "is_worker_enabled",
]
