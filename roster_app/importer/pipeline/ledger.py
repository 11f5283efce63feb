"""
Per-row outcome ledger for roster imports.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Iterable, Literal


class RowStatus(str, enum.Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    ABORTED = "aborted"


@dataclass(frozen=True)
class RowOutcome:
    """Final result for one input row. Created exactly once per row."""

    row_number: int
    status: RowStatus
    message: str
    label: str = ""
    action: Literal["create", "update"] | None = None

    def format_line(self) -> str:
        label = self.label or f"row {self.row_number}"
        return f"[Row {self.row_number}] {label}: {self.message}"

    def as_dict(self) -> dict[str, Any]:
        return {
            "row_number": self.row_number,
            "status": self.status.value,
            "message": self.message,
            "label": self.label,
            "action": self.action,
        }


class DuplicateOutcomeError(ValueError):
    """Raised when a second outcome is recorded for the same row."""

    def __init__(self, row_number: int) -> None:
        super().__init__(f"An outcome for row {row_number} has already been recorded.")
        self.row_number = row_number


@dataclass(frozen=True)
class ImportReport:
    """Aggregate view of a finished (or stopped) run."""

    total_rows: int
    success_count: int
    created_count: int
    updated_count: int
    failures: tuple[RowOutcome, ...]
    aborted: tuple[RowOutcome, ...]
    outcomes: tuple[RowOutcome, ...]
    committed_through_row: int | None
    fatal_error: str | None = None
    cancelled: bool = False

    @property
    def skipped_count(self) -> int:
        return len(self.failures)

    @property
    def aborted_count(self) -> int:
        return len(self.aborted)

    @property
    def failure_lines(self) -> list[str]:
        return [outcome.format_line() for outcome in (*self.failures, *self.aborted)]

    @property
    def is_clean(self) -> bool:
        return not self.failures and not self.aborted and self.fatal_error is None

    def counts(self) -> dict[str, int]:
        return {
            "rows_total": self.total_rows,
            "rows_succeeded": self.success_count,
            "rows_created": self.created_count,
            "rows_updated": self.updated_count,
            "rows_skipped": self.skipped_count,
            "rows_aborted": self.aborted_count,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "counts": self.counts(),
            "failures": [outcome.as_dict() for outcome in self.failures],
            "aborted": [outcome.as_dict() for outcome in self.aborted],
            "failure_lines": self.failure_lines,
            "committed_through_row": self.committed_through_row,
            "fatal_error": self.fatal_error,
            "cancelled": self.cancelled,
        }


class OutcomeLedger:
    def __init__(self) -> None:
        self._outcomes: dict[int, RowOutcome] = {}
        self._committed_through: int | None = None

    def __len__(self) -> int:
        return len(self._outcomes)

    def __contains__(self, row_number: int) -> bool:
        return row_number in self._outcomes

    def record(self, outcome: RowOutcome) -> RowOutcome:
        if outcome.row_number in self._outcomes:
            raise DuplicateOutcomeError(outcome.row_number)
        self._outcomes[outcome.row_number] = outcome
        return outcome

    def record_success(
        self,
        row_number: int,
        message: str,
        *,
        action: Literal["create", "update"],
        label: str = "",
    ) -> RowOutcome:
        return self.record(RowOutcome(row_number, RowStatus.SUCCESS, message, label=label, action=action))

    def record_skipped(self, row_number: int, message: str, *, label: str = "") -> RowOutcome:
        return self.record(RowOutcome(row_number, RowStatus.SKIPPED, message, label=label))

    def record_aborted(self, row_number: int, message: str, *, label: str = "") -> RowOutcome:
        return self.record(RowOutcome(row_number, RowStatus.ABORTED, message, label=label))

    def mark_committed(self, row_numbers: Iterable[int]) -> None:
        highest = max(row_numbers, default=None)
        if highest is None:
            return
        if self._committed_through is None or highest > self._committed_through:
            self._committed_through = highest

    @property
    def committed_through_row(self) -> int | None:
        return self._committed_through

    def outcomes(self) -> list[RowOutcome]:
        return [self._outcomes[key] for key in sorted(self._outcomes)]

    def report(self, *, total_rows: int, fatal_error: str | None = None, cancelled: bool = False) -> ImportReport:
        ordered = tuple(self.outcomes())
        successes = [outcome for outcome in ordered if outcome.status is RowStatus.SUCCESS]
        return ImportReport(
            total_rows=total_rows,
            success_count=len(successes),
            created_count=sum(1 for outcome in successes if outcome.action == "create"),
            updated_count=sum(1 for outcome in successes if outcome.action == "update"),
            failures=tuple(outcome for outcome in ordered if outcome.status is RowStatus.SKIPPED),
            aborted=tuple(outcome for outcome in ordered if outcome.status is RowStatus.ABORTED),
            outcomes=ordered,
            committed_through_row=self._committed_through,
            fatal_error=fatal_error,
            cancelled=cancelled,
        )


__all__ = [
    "DuplicateOutcomeError",
    "ImportReport",
    "OutcomeLedger",
    "RowOutcome",
    "RowStatus",
]
