"""
Identity resolution for roster rows.

Pure lookups against the tenant snapshot plus the in-run index; nothing here
talks to the datastore. "No match" is ``None`` and the caller creates.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from email_validator import EmailNotValidError, validate_email

from roster_app.models.importer.schema import RosterKind

from .context import AssignmentKey, ResolvedEntity, RunContext, normalize_key_email
from .errors import ReferenceNotFoundError


def normalize_email(value: object | None) -> str | None:
    """
    Normalize a login address for matching and storage.

    - Trim whitespace
    - Lower-case entire address
    """

    return normalize_key_email(None if value is None else str(value))


def is_valid_email(value: str | None) -> bool:
    """Syntactic address check; no DNS or deliverability lookup."""

    if not value:
        return False
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


@dataclass(frozen=True)
class AssignmentReferences:
    teacher_id: str
    teacher_name: str | None
    subject_id: str
    subject_name: str


class IdentityResolver:
    """Find the existing record, if any, an incoming row should update."""

    def __init__(self, context: RunContext) -> None:
        self.context = context

    def resolve(self, kind: RosterKind, record: Mapping[str, Any]) -> ResolvedEntity | None:
        kind = RosterKind(kind)
        if kind is RosterKind.STUDENTS:
            return self.resolve_student(
                student_id_number=record.get("student_id_number"),
                email=record.get("email"),
            )
        if kind is RosterKind.TEACHERS:
            return self.resolve_teacher(email=record.get("email"))
        return self.resolve_assignment(
            teacher_email=record.get("teacher_email"),
            subject_name=record.get("subject_name"),
            grade=record.get("grade"),
            section=record.get("section"),
        )

    def resolve_student(self, *, student_id_number: str | None, email: str | None) -> ResolvedEntity | None:
        """Match by roster identifier first, then by a syntactically valid address."""

        student_id = (student_id_number or "").strip()
        if student_id:
            match = self._profile_by_student_id(student_id)
            if match is not None:
                return match

        address = normalize_email(email)
        if address and is_valid_email(address):
            return self._profile_by_email(address)
        return None

    def resolve_teacher(self, *, email: str | None) -> ResolvedEntity | None:
        address = normalize_email(email)
        if not address:
            return None
        return self._profile_by_email(address)

    def assignment_references(self, *, teacher_email: str | None, subject_name: str | None) -> AssignmentReferences:
        """Look up the teacher and subject an assignment row points at."""

        snapshot = self.context.snapshot
        address = normalize_email(teacher_email) or ""
        teacher = snapshot.profiles_by_email.get(address)
        if teacher is None:
            raise ReferenceNotFoundError(
                f"Teacher with email '{(teacher_email or '').strip()}' not found. "
                "Please create the teacher account first.",
                reference="teacher",
                value=address,
            )

        subject_label = (subject_name or "").strip()
        subject = snapshot.subjects_by_name.get(subject_label.lower())
        if subject is None:
            raise ReferenceNotFoundError(
                f"Subject with name '{subject_label}' not found. Please add this subject in School Settings.",
                reference="subject",
                value=subject_label,
            )

        return AssignmentReferences(
            teacher_id=str(teacher["id"]),
            teacher_name=teacher.get("name"),
            subject_id=str(subject["id"]),
            subject_name=subject.get("name") or subject_label,
        )

    def assignment_key(self, references: AssignmentReferences, *, grade: str | None, section: str | None) -> AssignmentKey:
        return AssignmentKey(
            teacher_id=references.teacher_id,
            subject_id=references.subject_id,
            grade=(grade or "").strip(),
            section=(section or "").strip(),
            organization_id=self.context.tenant.organization_id,
        )

    def resolve_assignment(
        self,
        *,
        teacher_email: str | None,
        subject_name: str | None,
        grade: str | None,
        section: str | None,
    ) -> ResolvedEntity | None:
        references = self.assignment_references(teacher_email=teacher_email, subject_name=subject_name)
        return self.resolve_assignment_key(self.assignment_key(references, grade=grade, section=section))

    def resolve_assignment_key(self, key: AssignmentKey) -> ResolvedEntity | None:
        existing = self.context.snapshot.assignments_by_key.get(key)
        if existing is None:
            existing = self.context.index.assignments_by_key.get(key)
        if existing is None:
            return None
        return ResolvedEntity(id=existing, is_update=True)

    def _profile_by_student_id(self, student_id: str) -> ResolvedEntity | None:
        profile = self.context.snapshot.profiles_by_student_id.get(student_id)
        if profile is not None:
            return ResolvedEntity(id=str(profile["id"]), is_update=True)
        queued = self.context.index.profiles_by_student_id.get(student_id)
        if queued is not None:
            return ResolvedEntity(id=queued, is_update=True)
        return None

    def _profile_by_email(self, address: str) -> ResolvedEntity | None:
        profile = self.context.snapshot.profiles_by_email.get(address)
        if profile is not None:
            return ResolvedEntity(id=str(profile["id"]), is_update=True)
        queued = self.context.index.profiles_by_email.get(address)
        if queued is not None:
            return ResolvedEntity(id=queued, is_update=True)
        return None


__all__ = [
    "AssignmentReferences",
    "IdentityResolver",
    "is_valid_email",
    "normalize_email",
]
