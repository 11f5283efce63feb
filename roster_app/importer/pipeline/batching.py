"""
Size-bounded atomic batch commits.

Each batch is committed as one unit. A failed commit is not retried: every row
in that batch is recorded as aborted and the committer reports ``ABORTED`` so
the runner stops. Earlier batches stay committed.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Sequence

from ..metrics import record_batch_commit
from .errors import BatchCommitError
from .ledger import OutcomeLedger
from .ports import DATASTORE_BATCH_CEILING, Datastore, WriteOperation

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH_SIZE = 400


class BatchSignal(str, enum.Enum):
    ONGOING = "ongoing"
    ABORTED = "aborted"


@dataclass(frozen=True)
class QueuedRow:
    operation: WriteOperation
    row_number: int
    message: str
    label: str = ""


def clamp_batch_size(value: int | None, *, default: int = DEFAULT_MAX_BATCH_SIZE) -> int:
    """Keep a configured batch size within ``1..DATASTORE_BATCH_CEILING``."""

    if value is None:
        return default
    try:
        size = int(value)
    except (TypeError, ValueError):
        return default
    return max(1, min(size, DATASTORE_BATCH_CEILING))


class BatchCommitter:
    def __init__(self, datastore: Datastore, ledger: OutcomeLedger, *, max_batch_size: int = DEFAULT_MAX_BATCH_SIZE) -> None:
        if not 1 <= max_batch_size <= DATASTORE_BATCH_CEILING:
            raise ValueError(
                f"max_batch_size must be between 1 and {DATASTORE_BATCH_CEILING}; got {max_batch_size}."
            )
        self.datastore = datastore
        self.ledger = ledger
        self.max_batch_size = max_batch_size
        self.batches_committed = 0
        self.error: BatchCommitError | None = None
        self._pending: list[QueuedRow] = []

    @property
    def pending(self) -> Sequence[QueuedRow]:
        return tuple(self._pending)

    @property
    def aborted(self) -> bool:
        return self.error is not None

    def add(self, operation: WriteOperation, *, message: str, label: str = "") -> BatchSignal:
        if self.aborted:
            return BatchSignal.ABORTED
        row_number = operation.row_number if operation.row_number is not None else -1
        self._pending.append(QueuedRow(operation, row_number, message, label))
        return BatchSignal.ONGOING

    def flush_if_full(self) -> BatchSignal:
        if self.aborted:
            return BatchSignal.ABORTED
        if len(self._pending) >= self.max_batch_size:
            return self._flush()
        return BatchSignal.ONGOING

    def flush_remaining(self) -> BatchSignal:
        if self.aborted:
            return BatchSignal.ABORTED
        if not self._pending:
            return BatchSignal.ONGOING
        return self._flush()

    def discard(self, reason: str) -> int:
        """Drop pending rows without writing them; each is recorded as aborted."""

        dropped = self._pending
        self._pending = []
        for queued in dropped:
            self.ledger.record_aborted(queued.row_number, reason, label=queued.label)
        return len(dropped)

    def _flush(self) -> BatchSignal:
        batch = self._pending
        self._pending = []
        operations = [queued.operation for queued in batch]
        started = time.perf_counter()
        try:
            self.datastore.commit_batch(operations)
        except BatchCommitError as exc:
            duration = time.perf_counter() - started
            record_batch_commit(status="failure", duration_seconds=duration, operation_count=len(operations))
            self.error = exc
            first_row = batch[0].row_number
            last_row = batch[-1].row_number
            logger.error(
                "Batch commit failed for rows %s-%s (%s operations): %s",
                first_row,
                last_row,
                len(operations),
                exc,
            )
            message = f"Batch commit failed: {exc.message}. Row was not saved."
            for queued in batch:
                self.ledger.record_aborted(queued.row_number, message, label=queued.label)
            return BatchSignal.ABORTED

        duration = time.perf_counter() - started
        record_batch_commit(status="success", duration_seconds=duration, operation_count=len(operations))
        self.batches_committed += 1
        for queued in batch:
            self.ledger.record_success(
                queued.row_number,
                queued.message,
                action=queued.operation.action,
                label=queued.label,
            )
        self.ledger.mark_committed(queued.row_number for queued in batch)
        logger.info("Committed batch %s with %s operations", self.batches_committed, len(operations))
        return BatchSignal.ONGOING


__all__ = [
    "BatchCommitter",
    "BatchSignal",
    "DEFAULT_MAX_BATCH_SIZE",
    "QueuedRow",
    "clamp_batch_size",
]
