import io
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock, patch

from sqlalchemy import select

from roster_app.importer.pipeline.run_service import ImportRunService
from roster_app.models import UserProfile
from roster_app.models.base import db
from roster_app.models.importer.schema import ImportRun, ImportRunStatus, RosterKind

STUDENTS_CSV = (
    "E_Child_Name,UserName,Student_Email,Password,E_Class_Desc\n"
    "Layla Haddad,S-1001,layla@example.edu,secret123,Grade 7\n"
    ",S-1002,,,Grade 7\n"
)


def _upload(client, kind="students", *, body=STUDENTS_CSV, filename="students.csv", **form):
    payload = body if isinstance(body, bytes) else body.encode("utf-8")
    data = {"file": (io.BytesIO(payload), filename), **form}
    return client.post(f"/importer/roster/{kind}", data=data, content_type="multipart/form-data")


def test_health_endpoint_reports_kinds(client):
    response = client.get("/importer/health")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["status"] == "ok"
    assert payload["enabled"] is True
    assert payload["kinds"] == ["students", "teachers", "assignments"]


def test_worker_health_reports_disabled_worker(client):
    response = client.get("/importer/worker_health")

    assert response.status_code == 200
    assert response.get_json()["status"] == "disabled"


def test_inline_upload_runs_the_import(app, client, test_organization):
    response = _upload(client, organization="test-school", inline="true")

    assert response.status_code == 200, response.get_json()
    payload = response.get_json()
    assert payload["status"] == "partially_failed"
    assert payload["counts"]["rows_created"] == 1
    assert payload["report"]["failure_lines"] == ["[Row 3] S-1002: Missing required field: name"]

    profile = db.session.scalars(select(UserProfile)).one()
    assert profile.name == "Layla Haddad"
    assert profile.grade == "Grade 7"
    assert list(Path(app.config["IMPORTER_UPLOAD_DIR"]).iterdir()) == []


def test_upload_queues_when_worker_enabled(app, client, test_organization):
    app.extensions["importer"].worker_enabled = True
    async_result = Mock()
    async_result.id = "celery-task-9"
    celery_app = Mock()
    celery_app.send_task.return_value = async_result

    with patch("roster_app.importer.views.get_celery_app", return_value=celery_app):
        response = _upload(client, "teachers", organization="test-school", batch_size="50")

    assert response.status_code == 202
    payload = response.get_json()
    assert payload["status"] == "queued"
    run = db.session.get(ImportRun, payload["run_id"])
    assert run.kind == RosterKind.TEACHERS
    assert run.ingest_params_json["batch_size"] == 50
    celery_app.send_task.assert_called_once_with("importer.roster.run_csv", kwargs={"run_id": run.id})


def test_upload_validation_errors(client, test_organization, inactive_organization):
    bad_kind = _upload(client, "parents", organization="test-school", inline="true")
    no_file = client.post(
        "/importer/roster/students", data={"organization": "test-school"}, content_type="multipart/form-data"
    )
    bad_extension = _upload(client, filename="students.xlsx", organization="test-school")
    no_org = _upload(client, inline="true")
    unknown_org = _upload(client, organization="nowhere", inline="true")
    inactive_org = _upload(client, organization="closed-school", inline="true")
    bad_batch = _upload(client, organization="test-school", batch_size="lots", inline="true")

    assert bad_kind.status_code == 400
    assert no_file.status_code == 400
    assert bad_extension.status_code == 400
    assert no_org.status_code == 400
    assert unknown_org.status_code == 404
    assert inactive_org.status_code == 404
    assert bad_batch.status_code == 400
    assert db.session.scalars(select(ImportRun)).first() is None


def test_upload_conflicts_with_running_import(client, test_organization):
    db.session.add(
        ImportRun(
            organization_id=test_organization.id,
            kind=RosterKind.TEACHERS,
            status=ImportRunStatus.RUNNING,
            started_at=datetime.now(timezone.utc),
        )
    )
    db.session.commit()

    response = _upload(client, organization="test-school", inline="true")

    assert response.status_code == 409
    assert "already running" in response.get_json()["error"]


def test_upload_loses_race_for_the_lock(client, test_organization):
    racing_run = Mock(id=99)

    with patch.object(ImportRunService, "active_run", side_effect=[None, racing_run]):
        response = _upload(client, organization="test-school", inline="true")

    assert response.status_code == 409
    [run] = db.session.scalars(select(ImportRun)).all()
    assert run.status == ImportRunStatus.FAILED
    assert "Import run 99 is already running" in run.error_summary


def test_upload_that_is_not_utf8_is_rejected(app, client, test_organization):
    body = "FirstName,LastName,Email,Password\nJos\u00e9,P\u00e9rez,jose@example.edu,secret123\n".encode("cp1252")

    response = _upload(client, "teachers", body=body, filename="teachers.csv", organization="test-school", inline="true")

    assert response.status_code == 400
    assert response.get_json()["error"].startswith("File is not valid UTF-8 text.")
    [run] = db.session.scalars(select(ImportRun)).all()
    assert run.status == ImportRunStatus.FAILED
    assert db.session.scalars(select(UserProfile)).all() == []
    assert list(Path(app.config["IMPORTER_UPLOAD_DIR"]).iterdir()) == []


def test_run_detail_and_listing(client, test_organization, other_organization):
    _upload(client, organization="test-school", inline="true")
    run = db.session.scalars(select(ImportRun)).one()

    detail = client.get(f"/importer/runs/{run.id}")
    missing = client.get("/importer/runs/9999")
    listing = client.get("/importer/runs?organization=test-school&status=partially_failed")
    empty = client.get("/importer/runs?organization=other-school")
    bad_status = client.get("/importer/runs?status=exploded")

    assert detail.status_code == 200
    assert detail.get_json()["rows_total"] == 2
    assert missing.status_code == 404
    assert [item["id"] for item in listing.get_json()["items"]] == [run.id]
    assert empty.get_json()["items"] == []
    assert bad_status.status_code == 400


def test_template_download(client):
    response = client.get("/importer/roster/assignments/template")

    assert response.status_code == 200
    assert response.mimetype == "text/csv"
    assert 'filename="assignments_template.csv"' in response.headers["Content-Disposition"]
    assert response.get_data(as_text=True).startswith("Teacher_Email,Grade,Section,Subject_Name")
    assert client.get("/importer/roster/parents/template").status_code == 400


def test_disabled_importer_hides_api(app, client):
    app.config["IMPORTER_ENABLED"] = False

    response = client.get("/importer/runs/1")

    assert response.status_code == 404
    assert response.get_json() == {"error": "Importer is disabled."}
