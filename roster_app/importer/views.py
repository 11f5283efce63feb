"""
Importer blueprint endpoints: health, roster uploads, run status and templates.
"""

from __future__ import annotations

from http import HTTPStatus

from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import Blueprint, Response, current_app, jsonify, request
from sqlalchemy.exc import NoResultFound

from config.base import _coerce_bool
from roster_app.models import Organization
from roster_app.models.importer.schema import RosterKind

from .adapters import CSVAdapterError
from .celery_app import DEFAULT_QUEUE_NAME, HEARTBEAT_TASK_NAME, RUN_TASK_NAME, get_celery_app
from .pipeline.run_service import ImportRunService, RunInProgressError
from .state import importer_state, is_importer_enabled
from .templates import render_template_csv, template_filename
from .uploads import discard_upload, is_roster_filename, store_upload, upload_limit_bytes

importer_blueprint = Blueprint("importer", __name__, url_prefix="/importer")


def _json_error(message: str, status: HTTPStatus):
    return jsonify({"error": message}), status


# Reachable even after IMPORTER_ENABLED is switched off at runtime
OPEN_ENDPOINTS = frozenset({"importer.importer_healthcheck", "importer.importer_worker_health"})


@importer_blueprint.before_request
def _reject_when_disabled():
    if request.endpoint in OPEN_ENDPOINTS or is_importer_enabled(current_app):
        return None
    return _json_error("Importer is disabled.", HTTPStatus.NOT_FOUND)


def _parse_kind(kind: str) -> RosterKind | None:
    try:
        return RosterKind(kind.strip().lower())
    except ValueError:
        return None


@importer_blueprint.get("/health")
def importer_healthcheck():
    """Report the importer flags and the roster kinds this deployment accepts."""
    state = importer_state()
    return jsonify(
        {
            "status": "ok",
            "enabled": state.enabled,
            "worker_enabled": state.worker_enabled,
            "kinds": [kind.value for kind in RosterKind],
        }
    )


def _heartbeat_timeout() -> float:
    try:
        return max(0.1, float(request.args.get("timeout", 5)))
    except ValueError:
        return 5.0


@importer_blueprint.get("/worker_health")
def importer_worker_health():
    """
    Round-trip the heartbeat task through the ``imports`` queue.

    200 with ``status`` ok or disabled, 500 when the heartbeat task is not
    registered, 504 when no worker answers within ``?timeout=`` seconds.
    """
    state = importer_state()
    timeout = _heartbeat_timeout()
    payload = {
        "importer_enabled": state.enabled,
        "worker_enabled": state.worker_enabled,
        "queue": DEFAULT_QUEUE_NAME,
        "timeout_seconds": timeout,
    }
    if not state.worker_enabled:
        payload.update(status="disabled", message="IMPORTER_WORKER_ENABLED is false; imports run inline.")
        return jsonify(payload), HTTPStatus.OK

    celery_app = get_celery_app(current_app)
    if celery_app is None or HEARTBEAT_TASK_NAME not in celery_app.tasks:
        payload.update(status="error", error="heartbeat_task_missing")
        return jsonify(payload), HTTPStatus.INTERNAL_SERVER_ERROR

    try:
        payload["heartbeat"] = celery_app.tasks[HEARTBEAT_TASK_NAME].apply_async().get(timeout=timeout)
    except CeleryTimeoutError:
        payload["status"] = "timeout"
        return jsonify(payload), HTTPStatus.GATEWAY_TIMEOUT
    payload["status"] = "ok"
    return jsonify(payload), HTTPStatus.OK


@importer_blueprint.post("/roster/<kind>")
def importer_upload_roster(kind: str):
    """
    Accept a roster CSV upload and start an import run.

    Form fields: ``file`` (CSV), ``organization`` (slug), optional
    ``academic_year``, ``batch_size`` and ``inline``. Runs are queued for the
    worker when it is enabled, otherwise executed inline.
    """
    roster_kind = _parse_kind(kind)
    if roster_kind is None:
        return _json_error(f"Unsupported roster kind '{kind}'.", HTTPStatus.BAD_REQUEST)

    limit = upload_limit_bytes(current_app)
    if request.content_length and request.content_length > limit:
        return _json_error(f"Upload exceeds the {limit // (1024 * 1024)} MB limit.", HTTPStatus.REQUEST_ENTITY_TOO_LARGE)

    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return _json_error("A CSV file is required in the 'file' field.", HTTPStatus.BAD_REQUEST)
    if not is_roster_filename(upload.filename):
        return _json_error("Only .csv, .tsv or .txt uploads are accepted.", HTTPStatus.BAD_REQUEST)

    slug = (request.form.get("organization") or "").strip()
    if not slug:
        return _json_error("The 'organization' field is required.", HTTPStatus.BAD_REQUEST)
    organization = Organization.find_by_slug(slug)
    if organization is None or not organization.is_active:
        return _json_error(f"Organization '{slug}' not found.", HTTPStatus.NOT_FOUND)

    batch_size_raw = request.form.get("batch_size")
    try:
        batch_size = int(batch_size_raw) if batch_size_raw else None
    except ValueError:
        return _json_error("batch_size must be an integer.", HTTPStatus.BAD_REQUEST)

    inline = _coerce_bool(request.form.get("inline"), default=not importer_state().worker_enabled)

    stored_path = store_upload(upload, current_app, kind=roster_kind)
    service = ImportRunService()
    try:
        run = service.create_run(
            organization,
            roster_kind,
            file_path=str(stored_path),
            triggered_by=(request.form.get("triggered_by") or request.remote_addr or "api"),
            batch_size=batch_size,
            academic_year=(request.form.get("academic_year") or "").strip() or None,
            keep_file=False,
        )
    except RunInProgressError as exc:
        discard_upload(stored_path)
        return _json_error(str(exc), HTTPStatus.CONFLICT)

    if not inline:
        celery_app = get_celery_app(current_app)
        if celery_app is None:
            service.fail_run(run, "Importer worker is not configured.")
            discard_upload(stored_path)
            return _json_error("Importer worker is not configured.", HTTPStatus.SERVICE_UNAVAILABLE)
        async_result = celery_app.send_task(RUN_TASK_NAME, kwargs={"run_id": run.id})
        current_app.logger.info(
            "Roster import queued via API",
            extra={"importer_run_id": run.id, "importer_task_id": async_result.id, "importer_kind": roster_kind.value},
        )
        return jsonify({"run_id": run.id, "task_id": async_result.id, "status": "queued"}), HTTPStatus.ACCEPTED

    try:
        report = service.execute(run)
    except RunInProgressError as exc:
        return _json_error(str(exc), HTTPStatus.CONFLICT)
    except CSVAdapterError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)
    finally:
        discard_upload(stored_path)

    payload = service.summarize(run)
    payload["report"] = report.to_dict()
    return jsonify(payload), HTTPStatus.OK


@importer_blueprint.get("/runs/<int:run_id>")
def importer_run_detail(run_id: int):
    service = ImportRunService()
    try:
        run = service.get_run(run_id)
    except NoResultFound:
        return _json_error(f"Import run {run_id} not found.", HTTPStatus.NOT_FOUND)
    return jsonify(service.summarize(run)), HTTPStatus.OK


@importer_blueprint.get("/runs")
def importer_runs_list():
    organization_id = None
    slug = request.args.get("organization")
    if slug:
        organization = Organization.find_by_slug(slug)
        if organization is None:
            return _json_error(f"Organization '{slug}' not found.", HTTPStatus.NOT_FOUND)
        organization_id = organization.id

    statuses = tuple(part.strip() for part in (request.args.get("status") or "").split(",") if part.strip())
    try:
        limit = int(request.args.get("limit", 25))
    except ValueError:
        return _json_error("limit must be an integer.", HTTPStatus.BAD_REQUEST)

    service = ImportRunService()
    try:
        runs = service.list_runs(organization_id=organization_id, statuses=statuses, limit=min(limit, 100))
    except ValueError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)
    return jsonify({"items": [service.summarize(run) for run in runs]}), HTTPStatus.OK


@importer_blueprint.get("/roster/<kind>/template")
def importer_roster_template(kind: str):
    roster_kind = _parse_kind(kind)
    if roster_kind is None:
        return _json_error(f"Unsupported roster kind '{kind}'.", HTTPStatus.BAD_REQUEST)
    return Response(
        render_template_csv(roster_kind),
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{template_filename(roster_kind)}"'},
    )
