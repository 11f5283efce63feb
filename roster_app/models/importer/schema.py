"""
SQLAlchemy models describing roster import runs.

A run records what was requested (kind, organization, parameters) and the
final ledger summary so operators can review the outcome after the fact.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import BaseModel, db


class ImportRunStatus(str, enum.Enum):
    """Lifecycle states for an import run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_open(self) -> bool:
        """True until the run reaches a final status."""
        return self in (ImportRunStatus.PENDING, ImportRunStatus.RUNNING)


class RosterKind(str, enum.Enum):
    """Roster file flavours accepted by the importer."""

    STUDENTS = "students"
    TEACHERS = "teachers"
    ASSIGNMENTS = "assignments"


class ImportRun(BaseModel):
    """Metadata describing a single roster import execution."""

    __tablename__ = "import_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False, index=True)
    kind: Mapped[RosterKind] = mapped_column(
        Enum(RosterKind, name="roster_kind_enum"),
        nullable=False,
    )
    source: Mapped[str] = mapped_column(db.String(100), nullable=False, default="csv")
    status: Mapped[ImportRunStatus] = mapped_column(
        Enum(ImportRunStatus, name="import_run_status_enum"),
        nullable=False,
        default=ImportRunStatus.PENDING,
        index=True,
    )
    triggered_by: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    rows_total: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    counts_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    failures_json: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    error_summary: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    ingest_params_json: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Stored parameters for worker execution (file_path, batch_size, academic_year, keep_file)",
    )

    organization = relationship("Organization")

    __table_args__ = (Index("idx_import_runs_org_status", "organization_id", "status"),)

    def __repr__(self):
        return f"<ImportRun {self.id} {self.kind.value if self.kind else '?'} {self.status}>"
