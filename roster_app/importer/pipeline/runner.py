"""
Roster reconciliation runner.

Drives every row of a roster file through validation, identity resolution,
credential claiming (people only), payload building and batching, and
returns an ``ImportReport`` built from the outcome ledger.
"""

from __future__ import annotations

import contextlib
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, ContextManager, Iterable, Sequence

from roster_app.models.importer.schema import RosterKind
from roster_app.models.profile import ProfileRole

from ..contracts import FieldAccessor, ImportRow
from ..metrics import record_row_outcome
from .batching import DEFAULT_MAX_BATCH_SIZE, BatchCommitter, BatchSignal
from .claims import AccountClaimStateMachine
from .context import (
    DEFAULT_MIN_SECRET_LENGTH,
    AssignmentKey,
    CancellationToken,
    ResolvedEntity,
    RunContext,
    TenantScope,
    TenantSnapshot,
)
from .errors import ImportSystemError, RosterImportError, RowValidationError
from .identity import IdentityResolver, is_valid_email, normalize_email
from .ledger import ImportReport, OutcomeLedger, RowStatus
from .payloads import UNSET, build_payload, create_stamps, parse_amount, parse_int_or_unset, text_or_unset
from .ports import COLLECTION_ASSIGNMENTS, COLLECTION_USERS, CredentialService, Datastore, WriteOperation

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
CredentialContextFactory = Callable[[], ContextManager[CredentialService]]

_FEE_FIELDS = (
    "open_balance",
    "total_tuition_fees",
    "total_tuition_fees_vat",
    "tuition_fees_balance",
    "transportation",
    "other_fees",
    "total_balance",
)
_STUDENT_TEXT_FIELDS = (
    "grade",
    "section",
    "major",
    "group_name",
    "father_name",
    "family_name",
    "father_email",
    "family_username",
    "father_phone1",
    "father_phone2",
    "mother_phone1",
)

NOT_ATTEMPTED_AFTER_BATCH_FAILURE = "Not attempted: a batch commit failed and the run stopped."
CANCELLED_BEFORE_PROCESSING = "Cancelled before processing."


class RowState(str, enum.Enum):
    PENDING = "pending"
    VALIDATING = "validating"
    RESOLVING = "resolving"
    BUILDING = "building"
    QUEUED = "queued"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass(frozen=True)
class RowFailure:
    """Recoverable per-row failure; the run continues."""

    row_number: int
    message: str
    label: str = ""
    kind: str = "validation"


@dataclass(frozen=True)
class RowWrite:
    """A row that produced exactly one write operation."""

    operation: WriteOperation
    message: str
    label: str = ""
    email: str | None = None
    student_id: str | None = None
    assignment_key: AssignmentKey | None = None


class ReconciliationRunner:
    def __init__(
        self,
        *,
        kind: RosterKind,
        tenant: TenantScope,
        datastore: Datastore,
        credentials: CredentialContextFactory | None = None,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        min_secret_length: int = DEFAULT_MIN_SECRET_LENGTH,
        academic_year: str | None = None,
        progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
        run_id: int | None = None,
    ) -> None:
        self.kind = RosterKind(kind)
        if self.kind is not RosterKind.ASSIGNMENTS and credentials is None:
            raise ValueError(f"A credential context factory is required for {self.kind.value} imports.")
        self.tenant = tenant
        self.datastore = datastore
        self.credentials_factory = credentials
        self.min_secret_length = min_secret_length
        self.academic_year = (academic_year or "").strip() or None
        self.progress = progress
        self.cancellation = cancellation
        self.run_id = run_id
        self.ledger = OutcomeLedger()
        self.committer = BatchCommitter(datastore, self.ledger, max_batch_size=max_batch_size)
        self.row_states: dict[int, RowState] = {}
        self.context: RunContext | None = None
        self.resolver: IdentityResolver | None = None
        self._fatal_error: str | None = None
        self._cancelled = False

    # ------------------------------------------------------------------ run
    def run(self, rows: Iterable[ImportRow]) -> ImportReport:
        rows = list(rows)
        total = len(rows)
        log_extra = self._log_extra()
        logger.info("Starting %s import of %s rows for organization %s", self.kind.value, total, self.tenant.organization_id, extra=log_extra)

        try:
            self._execute(rows)
        except Exception as exc:
            error = exc if isinstance(exc, RosterImportError) else ImportSystemError(f"Unexpected import failure: {exc}")
            logger.exception("Roster import stopped by a system error: %s", error.message, extra=log_extra)
            self._fatal_error = error.message
            self.committer.discard(f"Aborted: {error.message}")
            for row in rows:
                if row.row_number not in self.ledger:
                    self.ledger.record_aborted(row.row_number, f"Aborted: {error.message}")

        statuses = {outcome.row_number: outcome.status for outcome in self.ledger.outcomes()}
        for row in rows:
            succeeded = statuses.get(row.row_number) is RowStatus.SUCCESS
            self.row_states[row.row_number] = RowState.COMMITTED if succeeded else RowState.FAILED

        report = self.ledger.report(total_rows=total, fatal_error=self._fatal_error, cancelled=self._cancelled)
        record_row_outcome(self.kind.value, "success", report.success_count)
        record_row_outcome(self.kind.value, "skipped", report.skipped_count)
        record_row_outcome(self.kind.value, "aborted", report.aborted_count)
        logger.info(
            "Finished %s import: %s succeeded (%s created, %s updated), %s skipped, %s aborted",
            self.kind.value,
            report.success_count,
            report.created_count,
            report.updated_count,
            report.skipped_count,
            report.aborted_count,
            extra={**log_extra, "importer_counts": report.counts()},
        )
        return report

    def _execute(self, rows: Sequence[ImportRow]) -> None:
        snapshot = TenantSnapshot.load(self.datastore, self.tenant, kind=self.kind)
        self.context = RunContext(
            tenant=self.tenant,
            kind=self.kind,
            snapshot=snapshot,
            academic_year=self.academic_year,
            min_secret_length=self.min_secret_length,
            cancellation=self.cancellation,
            run_id=self.run_id,
        )
        self.resolver = IdentityResolver(self.context)
        total = len(rows)

        reported = 0
        with self._credential_scope() as credentials:
            for position, row in enumerate(rows):
                self.row_states[row.row_number] = RowState.PENDING
                if self.context.cancelled:
                    self._cancel(rows[position:])
                    break

                try:
                    result = self.process_row(row, credentials)
                except Exception as exc:
                    self._stop_on_system_error(row, rows[position + 1 :], exc)
                    break

                if isinstance(result, RowFailure):
                    self.ledger.record_skipped(result.row_number, result.message, label=result.label)
                    logger.warning("[Row %s] %s: %s", result.row_number, result.label or "-", result.message, extra=self._log_extra())
                else:
                    self.committer.add(result.operation, message=result.message, label=result.label)
                    self.row_states[row.row_number] = RowState.QUEUED
                    self._register(result)
                    logger.info("[Row %s] %s: %s", row.row_number, result.label or "-", result.message, extra=self._log_extra())
                    if self.committer.flush_if_full() is BatchSignal.ABORTED:
                        self._stop_on_batch_failure(rows[position + 1 :])
                        break

                if self.progress is not None:
                    self.progress(position + 1, total)
                    reported = position + 1
            else:
                if self.committer.flush_remaining() is BatchSignal.ABORTED:
                    self._stop_on_batch_failure(())

        # A stopped run still reports completion of the whole file
        if self.progress is not None and reported < total:
            self.progress(total, total)

    @contextlib.contextmanager
    def _credential_scope(self):
        if self.credentials_factory is None:
            yield None
            return
        with self.credentials_factory() as credentials:
            yield credentials

    # ---------------------------------------------------------- stop paths
    def _cancel(self, remaining: Sequence[ImportRow]) -> None:
        self._cancelled = True
        logger.warning("Import cancelled; committing queued rows and skipping %s remaining rows", len(remaining), extra=self._log_extra())
        if self.committer.flush_remaining() is BatchSignal.ABORTED:
            self._fatal_error = self.committer.error.message if self.committer.error else "Batch commit failed."
        for row in remaining:
            self.ledger.record_aborted(row.row_number, CANCELLED_BEFORE_PROCESSING)

    def _stop_on_batch_failure(self, remaining: Sequence[ImportRow]) -> None:
        error = self.committer.error
        self._fatal_error = error.message if error else "Batch commit failed."
        logger.error(
            "Stopping import after batch failure; %s rows not attempted",
            len(remaining),
            extra=self._log_extra(),
        )
        for row in remaining:
            self.ledger.record_aborted(row.row_number, NOT_ATTEMPTED_AFTER_BATCH_FAILURE)

    def _stop_on_system_error(self, row: ImportRow, remaining: Sequence[ImportRow], exc: Exception) -> None:
        error = exc if isinstance(exc, ImportSystemError) else ImportSystemError(
            f"Unexpected error while processing row {row.row_number}: {exc}"
        )
        logger.exception("[Row %s] %s", row.row_number, error.message, extra=self._log_extra())
        self._fatal_error = error.message
        self.committer.discard("Aborted: the run stopped on a system error before this row's batch was committed.")
        self.ledger.record_aborted(row.row_number, f"System error: {error.message}")
        for later in remaining:
            self.ledger.record_aborted(
                later.row_number,
                f"Not attempted: the run stopped on a system error at row {row.row_number}.",
            )

    # ------------------------------------------------------------ row work
    def process_row(self, row: ImportRow, credentials: CredentialService | None) -> RowWrite | RowFailure:
        """
        Turn one row into a write or a recoverable failure.

        Fatal errors (``ImportSystemError`` and anything unexpected) propagate.
        """

        self.row_states[row.row_number] = RowState.VALIDATING
        accessor = FieldAccessor(self.kind, row)
        label = ""
        try:
            if self.kind is RosterKind.STUDENTS:
                label = self._student_label(accessor)
                return self._process_student(accessor, credentials)
            if self.kind is RosterKind.TEACHERS:
                label = self._teacher_label(accessor)
                return self._process_teacher(accessor, credentials)
            label = self._assignment_label(accessor)
            return self._process_assignment(accessor)
        except RosterImportError as exc:
            if exc.fatal:
                raise
            self.row_states[row.row_number] = RowState.FAILED
            return RowFailure(row.row_number, exc.message, label=label, kind=exc.kind)

    def _process_student(self, accessor: FieldAccessor, credentials: CredentialService | None) -> RowWrite:
        row_number = accessor.row_number
        name = self._student_label(accessor, name_only=True)
        if not name:
            raise RowValidationError("Missing required field: name", fields=("name",))

        raw_email = accessor.get("email")
        email = normalize_email(raw_email)
        if email and not is_valid_email(email):
            logger.warning("[Row %s] %s: ignoring invalid email '%s'", row_number, name, raw_email, extra=self._log_extra())
            email = None
        student_id = accessor.get("student_id_number") or None

        self.row_states[row_number] = RowState.RESOLVING
        existing = self.resolver.resolve_student(student_id_number=student_id, email=email)
        secret = accessor.get("password")
        if email and len(secret) >= self.min_secret_length:
            entity = self._claim(email, secret, credentials, existing)
        elif existing is not None:
            entity = existing
        else:
            if email and secret:
                logger.warning(
                    "[Row %s] %s: password shorter than %s characters; creating a profile without login",
                    row_number,
                    name,
                    self.min_secret_length,
                    extra=self._log_extra(),
                )
            entity = ResolvedEntity(id=self.datastore.new_id(COLLECTION_USERS), is_update=False)

        self.row_states[row_number] = RowState.BUILDING
        academic_year = accessor.get("academic_year") or ("" if entity.is_update else (self.academic_year or ""))
        fields: dict[str, Any] = {
            "organization_id": self.tenant.organization_id,
            "name": name,
            "email": email or UNSET,
            "student_id_number": text_or_unset(student_id),
            "academic_year": text_or_unset(academic_year),
        }
        for field_name in _STUDENT_TEXT_FIELDS:
            fields[field_name] = text_or_unset(accessor.get(field_name))
        for field_name in _FEE_FIELDS:
            fields[field_name] = parse_amount(accessor.get(field_name))

        payload = build_payload(
            fields,
            is_update=entity.is_update,
            stamps=create_stamps(roles=[ProfileRole.STUDENT.value], timestamp=self.context.started_at),
        )
        operation = self._operation(COLLECTION_USERS, entity, payload, row_number)
        verb = "Updated" if entity.is_update else "Created"
        return RowWrite(operation, f"{verb} student {name}", label=name, email=email, student_id=student_id)

    def _process_teacher(self, accessor: FieldAccessor, credentials: CredentialService | None) -> RowWrite:
        row_number = accessor.row_number
        name = self._teacher_label(accessor, name_only=True)
        raw_email = accessor.get("email")
        missing = [field_name for field_name, value in (("name", name), ("email", raw_email)) if not value]
        if missing:
            raise RowValidationError(f"Missing required fields: {', '.join(missing)}", fields=tuple(missing))
        email = normalize_email(raw_email)
        if not is_valid_email(email):
            raise RowValidationError(f"Invalid email format: {raw_email}", fields=("email",))

        self.row_states[row_number] = RowState.RESOLVING
        existing = self.resolver.resolve_teacher(email=email)
        secret = accessor.get("password")
        if existing is None and len(secret) < self.min_secret_length:
            raise RowValidationError(
                f"Password is required for new accounts and must be at least {self.min_secret_length} characters.",
                fields=("password",),
            )
        entity = self._claim(email, secret, credentials, existing)

        self.row_states[row_number] = RowState.BUILDING
        payload = build_payload(
            {"organization_id": self.tenant.organization_id, "name": name, "email": email},
            is_update=entity.is_update,
            stamps=create_stamps(roles=[ProfileRole.TEACHER.value], timestamp=self.context.started_at),
        )
        operation = self._operation(COLLECTION_USERS, entity, payload, row_number)
        verb = "Updated" if entity.is_update else "Created"
        return RowWrite(operation, f"{verb} teacher {name} ({email})", label=name, email=email)

    def _process_assignment(self, accessor: FieldAccessor) -> RowWrite:
        row_number = accessor.row_number
        missing = accessor.missing_required()
        if missing:
            raise RowValidationError(f"Missing required fields: {', '.join(missing)}", fields=missing)

        self.row_states[row_number] = RowState.RESOLVING
        references = self.resolver.assignment_references(
            teacher_email=accessor.get("teacher_email"),
            subject_name=accessor.get("subject_name"),
        )
        key = self.resolver.assignment_key(references, grade=accessor.get("grade"), section=accessor.get("section"))
        entity = self.resolver.resolve_assignment_key(key)
        if entity is None:
            entity = ResolvedEntity(id=self.datastore.new_id(COLLECTION_ASSIGNMENTS), is_update=False)

        self.row_states[row_number] = RowState.BUILDING
        fields = {
            "organization_id": self.tenant.organization_id,
            "teacher_id": references.teacher_id,
            "teacher_name": references.teacher_name or UNSET,
            "subject_id": references.subject_id,
            "subject_name": references.subject_name,
            "grade": key.grade,
            "section": key.section,
            "periods_per_week": parse_int_or_unset(accessor.get("periods_per_week")),
            "major": text_or_unset(accessor.get("major")),
            "academic_year": text_or_unset(
                accessor.get("academic_year") or ("" if entity.is_update else (self.academic_year or ""))
            ),
        }
        payload = build_payload(fields, is_update=entity.is_update, stamps={"created_at": self.context.started_at})
        operation = self._operation(COLLECTION_ASSIGNMENTS, entity, payload, row_number)
        verb = "Updated" if entity.is_update else "Created"
        label = self._assignment_label(accessor)
        return RowWrite(
            operation,
            f"{verb} assignment {references.subject_name} for {key.grade}/{key.section}",
            label=label,
            assignment_key=key,
        )

    # ------------------------------------------------------------- helpers
    def _claim(
        self,
        email: str,
        secret: str,
        credentials: CredentialService | None,
        existing: ResolvedEntity | None,
    ) -> ResolvedEntity:
        if credentials is None:
            raise ImportSystemError("Credential context is not open.")
        machine = AccountClaimStateMachine(
            address=email,
            secret=secret,
            credentials=credentials,
            datastore=self.datastore,
            context=self.context,
        )
        return machine.run(existing).as_entity()

    def _operation(self, collection: str, entity: ResolvedEntity, payload: dict, row_number: int) -> WriteOperation:
        return WriteOperation(
            action="update" if entity.is_update else "create",
            collection=collection,
            record_id=entity.id,
            fields=payload,
            row_number=row_number,
        )

    def _register(self, write: RowWrite) -> None:
        operation = write.operation
        if operation.collection == COLLECTION_USERS:
            self.context.index.register_profile(operation.record_id, email=write.email, student_id=write.student_id)
        elif write.assignment_key is not None and operation.action == "create":
            self.context.index.register_assignment(write.assignment_key, operation.record_id)

    @staticmethod
    def _student_label(accessor: FieldAccessor, *, name_only: bool = False) -> str:
        name = accessor.get("name")
        if not name:
            name = " ".join(part for part in (accessor.get("first_name"), accessor.get("last_name")) if part)
        if name or name_only:
            return name
        return accessor.get("email") or accessor.get("student_id_number")

    @staticmethod
    def _teacher_label(accessor: FieldAccessor, *, name_only: bool = False) -> str:
        name = " ".join(
            part
            for part in (accessor.get("first_name"), accessor.get("middle_name"), accessor.get("last_name"))
            if part
        )
        if name or name_only:
            return name
        return accessor.get("email")

    @staticmethod
    def _assignment_label(accessor: FieldAccessor) -> str:
        parts = [accessor.get("teacher_email"), accessor.get("subject_name")]
        return " / ".join(part for part in parts if part)

    def _log_extra(self) -> dict[str, Any]:
        return {
            "importer_run_id": self.run_id,
            "importer_kind": self.kind.value,
            "importer_organization_id": self.tenant.organization_id,
        }


def run_import(
    rows: Iterable[ImportRow],
    tenant: TenantScope,
    *,
    kind: RosterKind,
    datastore: Datastore,
    credentials: CredentialContextFactory | None = None,
    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
    min_secret_length: int = DEFAULT_MIN_SECRET_LENGTH,
    academic_year: str | None = None,
    progress: ProgressCallback | None = None,
    cancellation: CancellationToken | None = None,
    run_id: int | None = None,
) -> ImportReport:
    """
    Reconcile ``rows`` of one roster kind into ``tenant``.

    ``credentials`` is a zero-argument callable returning a context manager
    that yields a ``CredentialService``; it is entered once and closed on every
    exit path. Assignment imports do not need one.
    """

    runner = ReconciliationRunner(
        kind=kind,
        tenant=tenant,
        datastore=datastore,
        credentials=credentials,
        max_batch_size=max_batch_size,
        min_secret_length=min_secret_length,
        academic_year=academic_year,
        progress=progress,
        cancellation=cancellation,
        run_id=run_id,
    )
    return runner.run(rows)


__all__ = [
    "ReconciliationRunner",
    "RowFailure",
    "RowState",
    "RowWrite",
    "run_import",
]
