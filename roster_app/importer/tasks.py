"""
Celery tasks executed by the ``imports`` worker.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from celery import shared_task
from flask import current_app

from roster_app.importer.celery_app import HEARTBEAT_TASK_NAME, RUN_TASK_NAME
from roster_app.importer.pipeline.run_service import ImportRunService
from roster_app.importer.uploads import discard_upload
from roster_app.models.base import db
from roster_app.models.importer.schema import ImportRun


def _upload_to_discard(run: ImportRun) -> Path | None:
    params = run.ingest_params_json or {}
    if params.get("keep_file") or not params.get("file_path"):
        return None
    return Path(params["file_path"])


@shared_task(name=HEARTBEAT_TASK_NAME, bind=True)
def importer_healthcheck(self) -> dict[str, Any]:
    """Heartbeat task used by worker health checks."""

    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name=RUN_TASK_NAME)
def run_roster_csv(*, run_id: int) -> dict[str, Any]:
    """
    Execute a stored roster import run.

    The run's ``ingest_params_json`` carries the CSV path, batch size and
    academic year; uploads are removed afterwards unless ``keep_file`` is set.
    """

    run = db.session.get(ImportRun, run_id)
    if run is None:
        raise ValueError(f"Import run {run_id} not found.")

    upload = _upload_to_discard(run)
    service = ImportRunService()
    try:
        report = service.execute(run)
    except Exception as exc:
        service.fail_if_open(run_id, str(exc))
        current_app.logger.exception(
            "Roster import run failed",
            extra={"importer_run_id": run_id, "importer_error": str(exc)},
        )
        raise
    finally:
        if upload is not None:
            discard_upload(upload)

    summary = {"run_id": run_id, "status": run.status.value, **report.to_dict()}
    current_app.logger.info(
        "Roster import run completed",
        extra={
            "importer_run_id": run_id,
            "importer_kind": run.kind.value,
            "importer_status": run.status.value,
            "importer_counts": report.counts(),
        },
    )
    return summary
