import pytest

from roster_app.importer.pipeline import IdentityResolver, ResolvedEntity, RunContext, TenantSnapshot
from roster_app.importer.pipeline.context import AssignmentKey
from roster_app.importer.pipeline.errors import ReferenceNotFoundError
from roster_app.importer.pipeline.identity import is_valid_email, normalize_email
from roster_app.models.importer.schema import RosterKind



def _resolver(tenant, kind=RosterKind.STUDENTS, **snapshot_kwargs):
    snapshot = TenantSnapshot(tenant, **snapshot_kwargs)
    return IdentityResolver(RunContext(tenant=tenant, kind=kind, snapshot=snapshot))


def test_normalize_email_trims_and_lowercases():
    assert normalize_email("  Maya.Nasser@Example.EDU ") == "maya.nasser@example.edu"
    assert normalize_email("   ") is None
    assert normalize_email(None) is None


@pytest.mark.parametrize(
    "value, expected",
    [("maya@example.edu", True), ("not-an-email", False), ("", False), (None, False)],
)
def test_is_valid_email(value, expected):
    assert is_valid_email(value) is expected


def test_student_matches_roster_identifier_before_email(tenant):
    resolver = _resolver(
        tenant,
        profiles=[
            {"id": "p-by-id", "student_id_number": "S-1", "email": "other@example.edu"},
            {"id": "p-by-email", "student_id_number": "S-2", "email": "layla@example.edu"},
        ],
    )

    match = resolver.resolve_student(student_id_number="S-1", email="layla@example.edu")

    assert match == ResolvedEntity(id="p-by-id", is_update=True)


def test_student_falls_back_to_valid_email(tenant):
    resolver = _resolver(tenant, profiles=[{"id": "p1", "email": "Layla@Example.edu"}])

    assert resolver.resolve_student(student_id_number="S-404", email=" LAYLA@example.edu") == ResolvedEntity(
        "p1", True
    )
    assert resolver.resolve_student(student_id_number="", email="not-an-email") is None


def test_student_matches_rows_queued_earlier_in_the_run(tenant):
    resolver = _resolver(tenant)
    resolver.context.index.register_profile("queued-1", email="new@example.edu", student_id="S-9")

    assert resolver.resolve_student(student_id_number="S-9", email=None) == ResolvedEntity("queued-1", True)
    assert resolver.resolve_student(student_id_number=None, email="NEW@example.edu") == ResolvedEntity(
        "queued-1", True
    )


def test_resolve_dispatches_on_kind(tenant):
    resolver = _resolver(tenant, kind=RosterKind.TEACHERS, profiles=[{"id": "t1", "email": "maya@example.edu"}])

    assert resolver.resolve(RosterKind.TEACHERS, {"email": "Maya@example.edu"}) == ResolvedEntity("t1", True)
    assert resolver.resolve(RosterKind.TEACHERS, {"email": "nobody@example.edu"}) is None
    assert resolver.resolve(RosterKind.TEACHERS, {"email": ""}) is None


def _assignment_resolver(tenant, assignments=()):
    return _resolver(
        tenant,
        kind=RosterKind.ASSIGNMENTS,
        profiles=[{"id": "t1", "email": "maya@example.edu", "name": "Maya Nasser"}],
        subjects=[{"id": "sub-math", "name": "Mathematics"}],
        assignments=assignments,
    )


def test_assignment_references_match_subject_case_insensitively(tenant):
    resolver = _assignment_resolver(tenant)

    refs = resolver.assignment_references(teacher_email="MAYA@example.edu", subject_name=" mathematics ")

    assert refs.teacher_id == "t1"
    assert refs.teacher_name == "Maya Nasser"
    assert refs.subject_id == "sub-math"
    assert refs.subject_name == "Mathematics"


def test_unknown_teacher_is_reported(tenant):
    resolver = _assignment_resolver(tenant)

    with pytest.raises(ReferenceNotFoundError) as excinfo:
        resolver.assignment_references(teacher_email="ghost@example.edu", subject_name="Mathematics")

    assert excinfo.value.message == (
        "Teacher with email 'ghost@example.edu' not found. Please create the teacher account first."
    )
    assert excinfo.value.reference == "teacher"


def test_unknown_subject_is_reported(tenant):
    resolver = _assignment_resolver(tenant)

    with pytest.raises(ReferenceNotFoundError) as excinfo:
        resolver.assignment_references(teacher_email="maya@example.edu", subject_name="Astronomy")

    assert excinfo.value.message == (
        "Subject with name 'Astronomy' not found. Please add this subject in School Settings."
    )


def test_assignment_identity_is_teacher_subject_grade_section(tenant):
    resolver = _assignment_resolver(
        tenant,
        assignments=[{"id": "a1", "teacher_id": "t1", "subject_id": "sub-math", "grade": "Grade 7", "section": "A"}],
    )

    existing = resolver.resolve_assignment(
        teacher_email="maya@example.edu", subject_name="Mathematics", grade=" Grade 7 ", section="A"
    )
    other_section = resolver.resolve_assignment(
        teacher_email="maya@example.edu", subject_name="Mathematics", grade="Grade 7", section="B"
    )

    assert existing == ResolvedEntity("a1", True)
    assert other_section is None


def test_assignment_key_sees_in_run_index(tenant):
    resolver = _assignment_resolver(tenant)
    key = AssignmentKey("t1", "sub-math", "Grade 8", "C", tenant.organization_id)
    resolver.context.index.register_assignment(key, "queued-a")

    assert resolver.resolve_assignment_key(key) == ResolvedEntity("queued-a", True)
