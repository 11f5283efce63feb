from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import NoResultFound
from werkzeug.security import check_password_hash

from roster_app.importer.pipeline import CancellationToken
from roster_app.importer.pipeline.run_service import ImportRunService, RunInProgressError, RunSettings
from roster_app.models import Credential, Subject, TeacherAssignment, UserProfile, db
from roster_app.models.importer.schema import ImportRun, ImportRunStatus, RosterKind


def _write(tmp_path, name, contents):
    path = tmp_path / name
    path.write_text(contents, encoding="utf-8")
    return path


def _running_run(organization, *, started_minutes_ago):
    run = ImportRun(
        organization_id=organization.id,
        kind=RosterKind.STUDENTS,
        status=ImportRunStatus.RUNNING,
        started_at=datetime.now(timezone.utc) - timedelta(minutes=started_minutes_ago),
    )
    db.session.add(run)
    db.session.commit()
    return run


def test_settings_follow_app_config(app):
    app.config.update(
        {"IMPORTER_MAX_BATCH_SIZE": 9000, "IMPORTER_MIN_SECRET_LENGTH": "8", "IMPORTER_RUN_LOCK_TTL_MINUTES": "15"}
    )

    settings = RunSettings.from_config()

    assert settings == RunSettings(max_batch_size=500, min_secret_length=8, lock_ttl_minutes=15)


def test_create_run_stores_parameters(app, test_organization, tmp_path):
    service = ImportRunService()

    run = service.create_run(
        test_organization,
        "students",
        file_path=str(tmp_path / "students.csv"),
        triggered_by="tester",
        batch_size=1000,
    )

    assert run.status == ImportRunStatus.PENDING
    assert run.kind == RosterKind.STUDENTS
    assert run.ingest_params_json == {
        "file_path": str(tmp_path / "students.csv"),
        "batch_size": 500,
        "academic_year": "2024-2025",
        "keep_file": False,
    }


def test_only_one_running_import_per_organization(app, test_organization, other_organization, tmp_path):
    active = _running_run(test_organization, started_minutes_ago=5)
    service = ImportRunService()

    with pytest.raises(RunInProgressError) as excinfo:
        service.create_run(test_organization, RosterKind.TEACHERS, file_path=str(tmp_path / "t.csv"))

    assert excinfo.value.run_id == active.id
    other = service.create_run(other_organization, RosterKind.TEACHERS, file_path=str(tmp_path / "t.csv"))
    assert other.status == ImportRunStatus.PENDING


def test_run_that_loses_the_lock_before_starting_is_failed(app, test_organization, tmp_path):
    service = ImportRunService()
    pending = service.create_run(test_organization, RosterKind.TEACHERS, file_path=str(tmp_path / "t.csv"))
    active = _running_run(test_organization, started_minutes_ago=1)

    with pytest.raises(RunInProgressError) as excinfo:
        service.execute(pending)

    assert excinfo.value.run_id == active.id
    assert pending.status == ImportRunStatus.FAILED
    assert "already running" in pending.error_summary
    assert active.status == ImportRunStatus.RUNNING


def test_stale_running_import_does_not_hold_the_lock(app, test_organization, tmp_path, caplog):
    _running_run(test_organization, started_minutes_ago=180)
    service = ImportRunService(settings=RunSettings(lock_ttl_minutes=60))

    run = service.create_run(test_organization, RosterKind.TEACHERS, file_path=str(tmp_path / "t.csv"))

    assert run.id is not None
    assert "Ignoring stale running import" in caplog.text


def test_execute_teacher_roster_end_to_end(app, test_organization, tmp_path):
    csv_path = _write(
        tmp_path,
        "teachers.csv",
        "FirstName,LastName,Email,Password\n"
        "Maya,Nasser,Maya@Example.edu,secret123\n"
        "Omar,,omar@example.edu,12\n",
    )
    service = ImportRunService()
    run = service.create_run(test_organization, RosterKind.TEACHERS, file_path=str(csv_path))

    report = service.execute(run)

    assert report.success_count == 1
    assert run.status == ImportRunStatus.PARTIALLY_FAILED
    assert run.rows_total == 2
    assert run.counts_json["rows_succeeded"] == 1
    assert run.counts_json["rows_skipped"] == 1
    assert run.counts_json["committed_through_row"] == 2
    assert run.failures_json[0]["row_number"] == 3
    assert "[Row 3] Omar: Password is required for new accounts" in run.error_summary

    credential = db.session.scalars(select(Credential).filter_by(email="maya@example.edu")).one()
    assert check_password_hash(credential.password_hash, "secret123")
    profile = db.session.get(UserProfile, credential.uid)
    assert profile.name == "Maya Nasser"
    assert profile.organization_id == test_organization.id
    assert profile.roles == ["teacher"]


def test_reimport_updates_existing_profiles(app, test_organization, tmp_path):
    csv_path = _write(
        tmp_path,
        "students.csv",
        "E_Child_Name,UserName,Student_Email,Password,E_Class_Desc,Total_Tution_Fees\n"
        "Layla Haddad,S-1,layla@example.edu,secret123,Grade 7,\"12,500\"\n",
    )
    service = ImportRunService()

    first = service.execute(service.create_run(test_organization, RosterKind.STUDENTS, file_path=str(csv_path)))
    second_run = service.create_run(test_organization, RosterKind.STUDENTS, file_path=str(csv_path))
    second = service.execute(second_run)

    assert first.created_count == 1
    assert second.updated_count == 1
    assert second_run.status == ImportRunStatus.SUCCEEDED
    [profile] = db.session.scalars(select(UserProfile)).all()
    assert profile.total_tuition_fees == 12500.0
    assert profile.academic_year == "2024-2025"
    assert len(db.session.scalars(select(Credential)).all()) == 1


def test_execute_assignments_against_existing_teacher_and_subject(app, test_organization, tmp_path):
    db.session.add_all(
        [
            UserProfile(
                id="t1",
                organization_id=test_organization.id,
                name="Maya Nasser",
                email="maya@example.edu",
                roles=["teacher"],
            ),
            Subject(id="s1", organization_id=test_organization.id, name="Mathematics"),
        ]
    )
    db.session.commit()
    csv_path = _write(
        tmp_path,
        "assignments.csv",
        "Teacher_Email;Grade;Section;Subject_Name;Periods_Per_Week\n"
        "maya@example.edu;Grade 7;A;Mathematics;5\n",
    )
    service = ImportRunService()

    report = service.execute(service.create_run(test_organization, RosterKind.ASSIGNMENTS, file_path=str(csv_path)))

    assert report.created_count == 1
    assignment = db.session.scalars(select(TeacherAssignment)).one()
    assert (assignment.teacher_id, assignment.subject_id, assignment.periods_per_week) == ("t1", "s1", 5)
    assert assignment.teacher_name == "Maya Nasser"


def test_unreadable_file_fails_the_run(app, test_organization, tmp_path):
    service = ImportRunService()
    run = service.create_run(test_organization, RosterKind.TEACHERS, file_path=str(tmp_path / "missing.csv"))

    with pytest.raises(FileNotFoundError):
        service.execute(run)

    assert run.status == ImportRunStatus.FAILED
    assert run.finished_at is not None
    assert "missing.csv" in run.error_summary


def test_cancelled_run_is_recorded_as_cancelled(app, test_organization, tmp_path):
    csv_path = _write(tmp_path, "students.csv", "E_Child_Name\nAda\nGrace\n")
    token = CancellationToken()
    token.cancel()
    service = ImportRunService()
    run = service.create_run(test_organization, RosterKind.STUDENTS, file_path=str(csv_path))

    report = service.execute(run, cancellation=token)

    assert report.cancelled is True
    assert run.status == ImportRunStatus.CANCELLED
    assert run.counts_json["rows_aborted"] == 2


def test_fail_if_open_leaves_finished_runs_alone(app, test_organization):
    service = ImportRunService()
    running = _running_run(test_organization, started_minutes_ago=1)
    finished = ImportRun(
        organization_id=test_organization.id,
        kind=RosterKind.TEACHERS,
        status=ImportRunStatus.SUCCEEDED,
    )
    db.session.add(finished)
    db.session.commit()

    assert service.fail_if_open(running.id, "worker lost").status == ImportRunStatus.FAILED
    assert running.error_summary == "worker lost"
    assert service.fail_if_open(finished.id, "late error").status == ImportRunStatus.SUCCEEDED
    assert finished.error_summary is None
    assert service.fail_if_open(9999, "missing") is None
    assert ImportRunStatus.PENDING.is_open
    assert not ImportRunStatus.CANCELLED.is_open


def test_summarize_and_list_runs(app, test_organization, other_organization, tmp_path):
    service = ImportRunService()
    mine = service.create_run(test_organization, RosterKind.TEACHERS, file_path=str(tmp_path / "a.csv"))
    service.create_run(other_organization, RosterKind.TEACHERS, file_path=str(tmp_path / "b.csv"))

    runs = service.list_runs(organization_id=test_organization.id, statuses=("PENDING",))
    summary = service.summarize(mine)

    assert [run.id for run in runs] == [mine.id]
    assert summary["status"] == "pending"
    assert summary["kind"] == "teachers"
    assert summary["duration_seconds"] is None
    with pytest.raises(ValueError, match="Unsupported status filter"):
        service.list_runs(statuses=("exploded",))
    with pytest.raises(NoResultFound):
        service.get_run(9999)
