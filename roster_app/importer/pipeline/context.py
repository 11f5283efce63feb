"""
Per-run state for roster reconciliation.

A ``RunContext`` is created for every ``run_import`` call and holds the tenant
snapshot (loaded once), the in-run index of records queued by earlier rows,
and the knobs the row handlers need.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, NamedTuple

from roster_app.models.importer.schema import RosterKind

from .ports import COLLECTION_ASSIGNMENTS, COLLECTION_SUBJECTS, COLLECTION_USERS, Datastore

DEFAULT_MIN_SECRET_LENGTH = 6


@dataclass(frozen=True)
class TenantScope:
    """The organization every lookup and write of a run is confined to."""

    organization_id: int
    slug: str = ""


@dataclass(frozen=True)
class ResolvedEntity:
    id: str
    is_update: bool


class AssignmentKey(NamedTuple):
    teacher_id: str
    subject_id: str
    grade: str
    section: str
    organization_id: int


def normalize_key_email(value: str | None) -> str | None:
    if value is None:
        return None
    token = str(value).strip().lower()
    return token or None


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    token = str(value).strip()
    return token or None


class TenantSnapshot:
    """Read-only indexes over one tenant's profiles, subjects and assignments."""

    def __init__(
        self,
        tenant: TenantScope,
        *,
        profiles: Iterable[Mapping[str, Any]] = (),
        subjects: Iterable[Mapping[str, Any]] = (),
        assignments: Iterable[Mapping[str, Any]] = (),
    ) -> None:
        self.tenant = tenant
        self.profiles_by_id: dict[str, Mapping[str, Any]] = {}
        self.profiles_by_email: dict[str, Mapping[str, Any]] = {}
        self.profiles_by_student_id: dict[str, Mapping[str, Any]] = {}
        self.subjects_by_name: dict[str, Mapping[str, Any]] = {}
        self.assignments_by_key: dict[AssignmentKey, str] = {}

        for profile in profiles:
            self.profiles_by_id[str(profile["id"])] = profile
            email = normalize_key_email(profile.get("email"))
            if email:
                self.profiles_by_email.setdefault(email, profile)
            student_id = _clean(profile.get("student_id_number"))
            if student_id:
                self.profiles_by_student_id.setdefault(student_id, profile)

        for subject in subjects:
            name = _clean(subject.get("name"))
            if name:
                self.subjects_by_name.setdefault(name.lower(), subject)

        for assignment in assignments:
            key = AssignmentKey(
                teacher_id=str(assignment["teacher_id"]),
                subject_id=str(assignment["subject_id"]),
                grade=_clean(assignment.get("grade")) or "",
                section=_clean(assignment.get("section")) or "",
                organization_id=tenant.organization_id,
            )
            self.assignments_by_key.setdefault(key, str(assignment["id"]))

    @classmethod
    def load(cls, datastore: Datastore, tenant: TenantScope, *, kind: RosterKind) -> "TenantSnapshot":
        """Query the datastore once for everything ``kind`` needs to resolve against."""

        org_id = tenant.organization_id
        profiles = datastore.query(COLLECTION_USERS, organization_id=org_id)
        subjects: list[dict[str, Any]] = []
        assignments: list[dict[str, Any]] = []
        if RosterKind(kind) is RosterKind.ASSIGNMENTS:
            subjects = datastore.query(COLLECTION_SUBJECTS, organization_id=org_id)
            assignments = datastore.query(COLLECTION_ASSIGNMENTS, organization_id=org_id)
        return cls(tenant, profiles=profiles, subjects=subjects, assignments=assignments)


@dataclass
class InRunIndex:
    """Records queued by earlier rows of the same file."""

    profiles_by_email: dict[str, str] = field(default_factory=dict)
    profiles_by_student_id: dict[str, str] = field(default_factory=dict)
    profile_ids: set[str] = field(default_factory=set)
    assignments_by_key: dict[AssignmentKey, str] = field(default_factory=dict)

    def register_profile(self, profile_id: str, *, email: str | None = None, student_id: str | None = None) -> None:
        self.profile_ids.add(profile_id)
        email_key = normalize_key_email(email)
        if email_key:
            self.profiles_by_email.setdefault(email_key, profile_id)
        student_key = _clean(student_id)
        if student_key:
            self.profiles_by_student_id.setdefault(student_key, profile_id)

    def register_assignment(self, key: AssignmentKey, assignment_id: str) -> None:
        self.assignments_by_key.setdefault(key, assignment_id)


class CancellationToken:
    """Thread-safe flag checked by the runner between rows."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunContext:
    tenant: TenantScope
    kind: RosterKind
    snapshot: TenantSnapshot
    index: InRunIndex = field(default_factory=InRunIndex)
    academic_year: str | None = None
    min_secret_length: int = DEFAULT_MIN_SECRET_LENGTH
    cancellation: CancellationToken | None = None
    run_id: int | None = None
    started_at: datetime = field(default_factory=_utcnow)

    @property
    def cancelled(self) -> bool:
        return self.cancellation is not None and self.cancellation.cancelled


__all__ = [
    "AssignmentKey",
    "CancellationToken",
    "DEFAULT_MIN_SECRET_LENGTH",
    "InRunIndex",
    "ResolvedEntity",
    "RunContext",
    "TenantScope",
    "TenantSnapshot",
    "normalize_key_email",
]
