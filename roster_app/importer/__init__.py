"""
Roster importer feature package.

``init_importer`` mounts the blueprint, the ``flask importer`` CLI and the
Celery app when ``IMPORTER_ENABLED`` is on; otherwise only a stub CLI group is
registered so operators get a clear message.
"""

from __future__ import annotations

from flask import Flask

from .celery_app import ensure_celery_app, get_celery_app
from .cli import get_disabled_importer_group, importer_cli
from .pipeline.run_service import ImportRunService, RunInProgressError
from .state import IMPORTER_EXTENSION_KEY, ImporterState, importer_state, is_importer_enabled, is_worker_enabled
from .views import importer_blueprint

__all__ = [
    "IMPORTER_EXTENSION_KEY",
    "ImportRunService",
    "ImporterState",
    "RunInProgressError",
    "get_celery_app",
    "importer_state",
    "init_importer",
]


def init_importer(app: Flask) -> ImporterState:
    """Register the importer on ``app``; safe to call more than once."""

    state = app.extensions.get(IMPORTER_EXTENSION_KEY)
    if not isinstance(state, ImporterState):
        state = ImporterState()
        app.extensions[IMPORTER_EXTENSION_KEY] = state
    state.enabled = is_importer_enabled(app)
    state.worker_enabled = is_worker_enabled(app)

    app.cli.commands.pop(importer_cli.name, None)
    if not state.enabled:
        app.cli.add_command(get_disabled_importer_group())
        app.logger.info("Importer disabled via IMPORTER_ENABLED; blueprint and worker not registered.")
        return state

    ensure_celery_app(app, state)
    app.cli.add_command(importer_cli)
    if importer_blueprint.name not in app.blueprints:
        app.register_blueprint(importer_blueprint)
    app.logger.info("Importer enabled (worker %s)", "enabled" if state.worker_enabled else "disabled")
    return state
