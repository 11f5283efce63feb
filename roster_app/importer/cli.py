"""
CLI commands for roster imports.

``flask importer roster`` runs an import inline or queues it for the worker;
``flask importer worker`` manages the Celery worker.
"""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import Flask
from flask.cli import ScriptInfo
from sqlalchemy.exc import NoResultFound

from roster_app.importer.adapters import CSVAdapterError
from roster_app.importer.celery_app import DEFAULT_QUEUE_NAME, HEARTBEAT_TASK_NAME, RUN_TASK_NAME, get_celery_app
from roster_app.importer.pipeline.ledger import ImportReport
from roster_app.importer.pipeline.run_service import ImportRunService, RunInProgressError
from roster_app.importer.state import importer_state, is_importer_enabled
from roster_app.importer.templates import render_template_csv
from roster_app.importer.uploads import purge_stale_uploads, upload_directory
from roster_app.models import Organization
from roster_app.models.base import db
from roster_app.models.importer.schema import ImportRun, RosterKind

KIND_CHOICES = [kind.value for kind in RosterKind]
DISABLED_MESSAGE = "Importer commands are unavailable because IMPORTER_ENABLED=false."


def _load_app(ctx: click.Context) -> Flask:
    return ctx.ensure_object(ScriptInfo).load_app()


@click.group(name="importer", invoke_without_command=True)
@click.pass_context
def importer_cli(ctx):
    """
    Roster importer management commands.

    Lists the supported roster kinds when invoked without a subcommand.
    """
    if not is_importer_enabled(_load_app(ctx)):
        raise click.ClickException(DISABLED_MESSAGE)
    if ctx.invoked_subcommand is None:
        click.echo("Supported roster kinds:")
        for kind in KIND_CHOICES:
            click.echo(f"  - {kind}")


def get_disabled_importer_group() -> click.Group:
    """Stand-in ``importer`` group registered while the feature flag is off."""

    @click.group(name="importer", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException(DISABLED_MESSAGE)

    return disabled_group


def _resolve_celery(app: Flask) -> Celery:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException("No Celery app is registered for the importer; check IMPORTER_ENABLED.")
    return celery_app


def _resolve_organization(slug: str) -> Organization:
    organization = Organization.find_by_slug(slug)
    if organization is None:
        raise click.ClickException(f"Organization '{slug}' not found.")
    if not organization.is_active:
        raise click.ClickException(f"Organization '{slug}' is inactive.")
    return organization


def _format_summary(run: ImportRun, report: ImportReport) -> str:
    committed = "none" if report.committed_through_row is None else report.committed_through_row
    rows = [
        ("rows_total", report.total_rows),
        ("rows_succeeded", report.success_count),
        ("rows_created", report.created_count),
        ("rows_updated", report.updated_count),
        ("rows_skipped", report.skipped_count),
        ("rows_aborted", report.aborted_count),
        ("committed_thru", committed),
    ]
    if report.fatal_error:
        rows.append(("fatal_error", report.fatal_error))

    lines = [f"Run {run.id} ({run.kind.value}) completed with status {run.status.value}."]
    lines.extend(f"  {label:<15}: {value}" for label, value in rows)
    if report.failure_lines:
        lines.append("Failures:")
        lines.extend(f"  {line}" for line in report.failure_lines)
    return "\n".join(lines)


def _worker_argv(loglevel: str, queues: str, concurrency: Optional[int], pool: Optional[str]) -> list[str]:
    argv = ["worker", f"--loglevel={loglevel}", f"--queues={queues}"]
    if concurrency:
        argv.append(f"--concurrency={concurrency}")
    if pool:
        argv.append(f"--pool={pool}")
    return argv


@importer_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Run or probe the Celery worker that executes queued imports."""
    if not importer_state(_load_app(ctx)).worker_enabled:
        click.echo("Note: IMPORTER_WORKER_ENABLED is false; uploads default to inline runs.", err=True)


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Worker process or thread count.")
@click.option("--pool", type=click.Choice(["prefork", "solo", "threads"]), help="Celery execution pool.")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queues to consume.")
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """Start a Celery worker in this process."""
    app = _load_app(ctx)
    celery_app = _resolve_celery(app)
    importer_state(app).worker_enabled = True

    argv = _worker_argv(loglevel, queues, concurrency, pool)
    click.echo(f"Starting importer worker: {' '.join(argv[1:])}")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Importer worker stopped.")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for the heartbeat.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """Send the heartbeat task and print the worker's reply."""
    celery_app = _resolve_celery(_load_app(ctx))
    if HEARTBEAT_TASK_NAME not in celery_app.tasks:
        raise click.ClickException(f"Task {HEARTBEAT_TASK_NAME!r} is not registered.")

    try:
        payload = celery_app.tasks[HEARTBEAT_TASK_NAME].apply_async().get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"No heartbeat from the worker after {timeout}s") from exc
    click.echo(json.dumps(payload, indent=2))


@importer_cli.command("roster")
@click.option("--kind", "kind", required=True, type=click.Choice(KIND_CHOICES), help="Roster flavour in the file.")
@click.option("--org", "org_slug", required=True, help="Slug of the organization to import into.")
@click.option(
    "--file",
    "file_path",
    required=True,
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="Path to the roster CSV.",
)
@click.option(
    "--inline/--no-inline",
    default=False,
    help="Import in this process instead of queueing the run for the worker.",
)
@click.option("--batch-size", type=int, help="Write operations per atomic batch (1-500).")
@click.option("--academic-year", help="Academic year applied where the file has none.")
@click.option(
    "--summary-json",
    is_flag=True,
    help="Also print the run summary as JSON (inline runs only).",
)
@click.pass_context
def importer_roster(
    ctx,
    kind: str,
    org_slug: str,
    file_path: Path,
    inline: bool,
    batch_size: Optional[int],
    academic_year: Optional[str],
    summary_json: bool,
):
    """Import a roster file into an organization."""
    app = _load_app(ctx)
    if summary_json and not inline:
        raise click.ClickException("--summary-json is only available for --inline runs.")

    organization = _resolve_organization(org_slug)
    service = ImportRunService()
    csv_path = file_path.resolve()
    try:
        run = service.create_run(
            organization,
            kind,
            file_path=str(csv_path),
            triggered_by="cli",
            batch_size=batch_size,
            academic_year=academic_year,
            keep_file=True,
        )
    except RunInProgressError as exc:
        raise click.ClickException(str(exc)) from exc
    run.notes = f"CLI roster import from {csv_path}"
    db.session.commit()
    run_id = run.id

    if not inline:
        celery_app = _resolve_celery(app)
        try:
            async_result = celery_app.send_task(RUN_TASK_NAME, kwargs={"run_id": run_id})
        except Exception as exc:
            service.fail_run(run, f"Failed to enqueue: {exc}")
            raise click.ClickException(f"Failed to enqueue import run {run_id}: {exc}") from exc

        app.logger.info(
            "Roster import queued via CLI",
            extra={"importer_run_id": run_id, "importer_task_id": async_result.id, "importer_kind": kind},
        )
        click.echo(json.dumps({"run_id": run_id, "task_id": async_result.id, "status": "queued", "kind": kind}))
        return

    try:
        report = service.execute(run)
    except (RunInProgressError, CSVAdapterError, OSError) as exc:
        raise click.ClickException(f"Import run {run_id} failed: {exc}") from exc
    except Exception as exc:
        service.fail_if_open(run_id, str(exc))
        raise click.ClickException(f"Import run {run_id} failed: {exc}") from exc

    click.echo(_format_summary(run, report))
    if summary_json:
        payload = {"run_id": run_id, "kind": kind, "status": run.status.value, **report.to_dict()}
        click.echo(json.dumps(payload, indent=2, sort_keys=True))


@importer_cli.command("status")
@click.option("--run-id", required=True, type=int, help="ID of the import run.")
@click.pass_context
def importer_status(ctx, run_id: int):
    """Print the stored summary of an import run as JSON."""
    _load_app(ctx)
    service = ImportRunService()
    try:
        run = service.get_run(run_id)
    except NoResultFound as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps(service.summarize(run), indent=2, sort_keys=True))


@importer_cli.command("template")
@click.option("--kind", "kind", required=True, type=click.Choice(KIND_CHOICES))
def importer_template(kind: str):
    """Print a sample CSV for a roster kind."""
    click.echo(render_template_csv(kind), nl=False)


@importer_cli.command("cleanup-uploads")
@click.option(
    "--max-age-hours",
    default=72,
    show_default=True,
    type=int,
    help="Age after which a stored upload is considered abandoned.",
)
@click.pass_context
def importer_cleanup_uploads(ctx, max_age_hours: int):
    """Delete stored roster uploads older than the given age."""
    app = _load_app(ctx)
    removed = purge_stale_uploads(app, max_age=timedelta(hours=max_age_hours))
    click.echo(f"Removed {removed} upload file(s) older than {max_age_hours} hours from {upload_directory(app)}.")
