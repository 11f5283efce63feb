"""Prometheus metrics helpers for the roster importer."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Histogram

_row_outcome_counter = Counter(
    "importer_roster_rows_total",
    "Roster rows processed by kind and outcome.",
    ["kind", "outcome"],
)
_batch_counter = Counter(
    "importer_roster_batches_total",
    "Roster batch commits by status.",
    ["status"],
)
_batch_size = Histogram(
    "importer_roster_batch_size",
    "Number of write operations per roster batch commit.",
    buckets=(1, 10, 50, 100, 200, 300, 400, 500),
)
_batch_duration = Histogram(
    "importer_roster_batch_duration_seconds",
    "Duration of roster batch commits in seconds.",
    buckets=(0.05, 0.1, 0.5, 1, 2, 5, 10, 30),
)
_claim_counter = Counter(
    "importer_roster_claim_states_total",
    "Terminal credential claim states reached by roster rows.",
    ["state"],
)
_run_counter = Counter(
    "importer_roster_runs_total",
    "Roster import runs by kind and final status.",
    ["kind", "status"],
)


def record_row_outcome(kind: str, outcome: Literal["success", "skipped", "aborted"], count: int = 1) -> None:
    """Increment the per-row outcome counter."""

    if count <= 0:
        return
    _row_outcome_counter.labels(kind=kind, outcome=outcome).inc(count)


def record_batch_commit(
    *,
    status: Literal["success", "failure"],
    duration_seconds: float,
    operation_count: int,
) -> None:
    """Capture metrics for a single batch commit."""

    _batch_counter.labels(status=status).inc()
    _batch_duration.observe(duration_seconds)
    _batch_size.observe(operation_count)


def record_claim_state(state: str) -> None:
    _claim_counter.labels(state=state).inc()


def record_run_status(kind: str, status: str) -> None:
    _run_counter.labels(kind=kind, status=status).inc()
