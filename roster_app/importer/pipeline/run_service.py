"""
Service helpers for roster import run lifecycle, execution and serialization.

Runs are created by the upload endpoint or the CLI, executed inline or by the
worker, and summarized for the status endpoint. Only one run per organization
may be ``running`` at a time; a running run older than the lock TTL is treated
as abandoned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from flask import current_app, has_app_context
from sqlalchemy import select
from sqlalchemy.exc import NoResultFound
from sqlalchemy.orm import Session

from roster_app.models import Organization, db
from roster_app.models.importer.schema import ImportRun, ImportRunStatus, RosterKind

from ..adapters import CSVAdapterError, read_roster_csv
from ..metrics import record_run_status
from .auth_context import credential_context
from .batching import DEFAULT_MAX_BATCH_SIZE, clamp_batch_size
from .context import DEFAULT_MIN_SECRET_LENGTH, CancellationToken, TenantScope
from .ledger import ImportReport
from .runner import ProgressCallback, run_import
from .store import SQLAlchemyDatastore

logger = logging.getLogger(__name__)

DEFAULT_RUN_LOCK_TTL_MINUTES = 60
ERROR_SUMMARY_LIMIT = 20


class RunInProgressError(RuntimeError):
    """Raised when another run for the same organization is still running."""

    def __init__(self, organization_id: int, run_id: int) -> None:
        super().__init__(
            f"Import run {run_id} is already running for organization {organization_id}. "
            "Wait for it to finish before starting another import."
        )
        self.organization_id = organization_id
        self.run_id = run_id


@dataclass(frozen=True)
class RunSettings:
    """Engine knobs resolved from app config."""

    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE
    min_secret_length: int = DEFAULT_MIN_SECRET_LENGTH
    lock_ttl_minutes: int = DEFAULT_RUN_LOCK_TTL_MINUTES

    @classmethod
    def from_config(cls, config: Mapping[str, Any] | None = None) -> "RunSettings":
        if config is None:
            config = current_app.config if has_app_context() else {}
        return cls(
            max_batch_size=clamp_batch_size(config.get("IMPORTER_MAX_BATCH_SIZE")),
            min_secret_length=_coerce_int(config.get("IMPORTER_MIN_SECRET_LENGTH"), DEFAULT_MIN_SECRET_LENGTH),
            lock_ttl_minutes=_coerce_int(config.get("IMPORTER_RUN_LOCK_TTL_MINUTES"), DEFAULT_RUN_LOCK_TTL_MINUTES),
        )


class ImportRunService:
    """Facade over ``ImportRun`` persistence with per-organization serialization."""

    def __init__(self, session: Session | None = None, *, settings: RunSettings | None = None) -> None:
        self.session: Session = session or db.session
        self.settings = settings or RunSettings.from_config()

    # ---------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------

    def create_run(
        self,
        organization: Organization,
        kind: RosterKind | str,
        *,
        file_path: str,
        triggered_by: str | None = None,
        batch_size: int | None = None,
        academic_year: str | None = None,
        keep_file: bool = False,
        source: str = "csv",
    ) -> ImportRun:
        """Persist a pending run; refuses while another run for the organization is active."""

        self.ensure_no_active_run(organization.id)
        run = ImportRun(
            organization_id=organization.id,
            kind=RosterKind(kind),
            source=source,
            status=ImportRunStatus.PENDING,
            triggered_by=triggered_by,
            ingest_params_json={
                "file_path": str(file_path),
                "batch_size": clamp_batch_size(batch_size, default=self.settings.max_batch_size),
                "academic_year": academic_year or organization.default_academic_year,
                "keep_file": keep_file,
            },
        )
        self.session.add(run)
        self.session.commit()
        return run

    def active_run(self, organization_id: int, *, exclude_run_id: int | None = None) -> ImportRun | None:
        """Return a running run for the organization that is younger than the lock TTL."""

        stmt = select(ImportRun).where(
            ImportRun.organization_id == organization_id,
            ImportRun.status == ImportRunStatus.RUNNING,
        )
        if exclude_run_id is not None:
            stmt = stmt.where(ImportRun.id != exclude_run_id)
        cutoff = _utcnow() - timedelta(minutes=self.settings.lock_ttl_minutes)
        for run in self.session.scalars(stmt.order_by(ImportRun.id.desc())).all():
            started = _as_utc(run.started_at)
            if started is None or started >= cutoff:
                return run
            logger.warning(
                "Ignoring stale running import %s for organization %s (started %s)",
                run.id,
                organization_id,
                started.isoformat(),
            )
        return None

    def ensure_no_active_run(self, organization_id: int, *, exclude_run_id: int | None = None) -> None:
        active = self.active_run(organization_id, exclude_run_id=exclude_run_id)
        if active is not None:
            raise RunInProgressError(organization_id, active.id)

    def begin_run(self, run: ImportRun) -> ImportRun:
        self.ensure_no_active_run(run.organization_id, exclude_run_id=run.id)
        run.status = ImportRunStatus.RUNNING
        run.started_at = _utcnow()
        run.finished_at = None
        run.error_summary = None
        self.session.commit()
        return run

    def complete_run(self, run: ImportRun, report: ImportReport) -> ImportRun:
        """Persist the ledger summary and derive the final status."""

        if report.cancelled:
            status = ImportRunStatus.CANCELLED
        elif report.fatal_error:
            status = ImportRunStatus.FAILED
        elif report.failures or report.aborted:
            status = ImportRunStatus.PARTIALLY_FAILED
        else:
            status = ImportRunStatus.SUCCEEDED

        run.status = status
        run.finished_at = _utcnow()
        run.rows_total = report.total_rows
        run.counts_json = {
            **report.counts(),
            "committed_through_row": report.committed_through_row,
        }
        run.failures_json = [outcome.as_dict() for outcome in (*report.failures, *report.aborted)]
        lines = report.failure_lines
        summary_parts: list[str] = []
        if report.fatal_error:
            summary_parts.append(report.fatal_error)
        summary_parts.extend(lines[:ERROR_SUMMARY_LIMIT])
        if len(lines) > ERROR_SUMMARY_LIMIT:
            summary_parts.append(f"... and {len(lines) - ERROR_SUMMARY_LIMIT} more")
        run.error_summary = "\n".join(summary_parts) or None
        self.session.commit()
        record_run_status(run.kind.value, status.value)
        return run

    def fail_run(self, run: ImportRun, message: str) -> ImportRun:
        self.session.rollback()
        run.status = ImportRunStatus.FAILED
        run.finished_at = _utcnow()
        run.error_summary = message
        self.session.commit()
        record_run_status(run.kind.value, ImportRunStatus.FAILED.value)
        return run

    def fail_if_open(self, run_id: int, message: str) -> ImportRun | None:
        """Mark a run FAILED after an unexpected error, unless it already finished."""

        self.session.rollback()
        run = self.session.get(ImportRun, run_id)
        if run is None or not run.status.is_open:
            return run
        return self.fail_run(run, message)

    def execute(
        self,
        run: ImportRun,
        *,
        progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
        credentials: Callable[[], Any] | None = None,
    ) -> ImportReport:
        """
        Run the reconciliation engine for a stored run.

        Reads the CSV referenced by ``ingest_params_json``, opens a disposable
        credential context for people imports, and records the outcome.
        """

        params = dict(run.ingest_params_json or {})
        file_path = params.get("file_path")
        if not file_path:
            raise ValueError(f"Import run {run.id} has no file_path in ingest_params_json.")

        organization = self.session.get(Organization, run.organization_id)
        if organization is None:
            raise NoResultFound(f"Organization {run.organization_id} not found.")

        try:
            self.begin_run(run)
        except RunInProgressError as exc:
            self.fail_run(run, str(exc))
            raise

        log_extra = {
            "importer_run_id": run.id,
            "importer_kind": run.kind.value,
            "importer_organization_id": run.organization_id,
        }
        logger.info("Executing import run %s", run.id, extra=log_extra)

        try:
            rows = read_roster_csv(file_path)
        except (OSError, CSVAdapterError) as exc:
            logger.error("Could not read roster file for run %s: %s", run.id, exc, extra=log_extra)
            self.fail_run(run, str(exc))
            raise

        needs_credentials = run.kind is not RosterKind.ASSIGNMENTS
        report = run_import(
            rows,
            TenantScope(organization_id=organization.id, slug=organization.slug),
            kind=run.kind,
            datastore=SQLAlchemyDatastore(self.session),
            credentials=(credentials or credential_context) if needs_credentials else None,
            max_batch_size=clamp_batch_size(params.get("batch_size"), default=self.settings.max_batch_size),
            min_secret_length=self.settings.min_secret_length,
            academic_year=params.get("academic_year"),
            progress=progress,
            cancellation=cancellation,
            run_id=run.id,
        )
        self.complete_run(run, report)
        return report

    # ---------------------------------------------------------------------
    # Queries
    # ---------------------------------------------------------------------

    def get_run(self, run_id: int) -> ImportRun:
        run = self.session.get(ImportRun, run_id)
        if run is None:
            raise NoResultFound(f"Import run {run_id} not found.")
        return run

    def list_runs(
        self,
        *,
        organization_id: int | None = None,
        statuses: tuple[str, ...] = (),
        limit: int = 25,
    ) -> list[ImportRun]:
        stmt = select(ImportRun)
        if organization_id is not None:
            stmt = stmt.where(ImportRun.organization_id == organization_id)
        if statuses:
            stmt = stmt.where(ImportRun.status.in_([_coerce_status(value) for value in statuses]))
        stmt = stmt.order_by(ImportRun.id.desc()).limit(max(1, limit))
        return list(self.session.scalars(stmt).all())

    def summarize(self, run: ImportRun) -> dict[str, Any]:
        duration_seconds: float | None = None
        started = _as_utc(run.started_at)
        if started:
            finished = _as_utc(run.finished_at) or _utcnow()
            duration_seconds = (finished - started).total_seconds()
        return {
            "id": run.id,
            "organization_id": run.organization_id,
            "kind": run.kind.value,
            "source": run.source,
            "status": run.status.value if isinstance(run.status, ImportRunStatus) else str(run.status),
            "triggered_by": run.triggered_by,
            "started_at": started.isoformat() if started else None,
            "finished_at": _isoformat(run.finished_at),
            "duration_seconds": duration_seconds,
            "rows_total": run.rows_total,
            "counts": dict(run.counts_json or {}),
            "failures": list(run.failures_json or []),
            "error_summary": run.error_summary,
        }


# -------------------------------------------------------------------------
# Helper functions
# -------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _isoformat(value: datetime | None) -> str | None:
    converted = _as_utc(value)
    return converted.isoformat() if converted else None


def _coerce_int(candidate: Any, fallback: int) -> int:
    if candidate in (None, ""):
        return fallback
    try:
        return max(1, int(candidate))
    except (TypeError, ValueError):
        return fallback


def _coerce_status(value: str | ImportRunStatus) -> ImportRunStatus:
    if isinstance(value, ImportRunStatus):
        return value
    normalized = str(value).strip().lower()
    try:
        return ImportRunStatus(normalized)
    except ValueError:
        raise ValueError(f"Unsupported status filter '{value}'.") from None


__all__ = [
    "DEFAULT_RUN_LOCK_TTL_MINUTES",
    "ImportRunService",
    "RunInProgressError",
    "RunSettings",
]
