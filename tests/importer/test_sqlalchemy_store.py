import pytest
from sqlalchemy import select

from roster_app.importer.pipeline import BatchCommitError, WriteOperation
from roster_app.importer.pipeline.store import SQLAlchemyDatastore
from roster_app.models import Subject, UserProfile, db


@pytest.fixture
def store(app):
    return SQLAlchemyDatastore()


def _create_user(record_id, org_id, **fields):
    return WriteOperation(
        action="create",
        collection="users",
        record_id=record_id,
        fields={"organization_id": org_id, "name": fields.pop("name", record_id), "roles": ["student"], **fields},
    )


def test_query_is_scoped_by_keyword_filters(store, test_organization, other_organization):
    store.commit_batch(
        [
            _create_user("u1", test_organization.id, email="a@example.edu"),
            _create_user("u2", other_organization.id, email="b@example.edu"),
        ]
    )

    records = store.query("users", organization_id=test_organization.id)

    assert [record["id"] for record in records] == ["u1"]
    assert records[0]["email"] == "a@example.edu"
    assert records[0]["roles"] == ["student"]


def test_get_returns_plain_dict_or_none(store, test_organization):
    store.commit_batch([_create_user("u1", test_organization.id)])

    assert store.get("users", "u1")["organization_id"] == test_organization.id
    assert store.get("users", "missing") is None


def test_create_then_update_in_one_batch(store, test_organization):
    store.commit_batch(
        [
            _create_user("u1", test_organization.id, name="Ada"),
            WriteOperation(action="update", collection="users", record_id="u1", fields={"grade": "Grade 7"}),
        ]
    )

    profile = db.session.get(UserProfile, "u1")
    assert profile.name == "Ada"
    assert profile.grade == "Grade 7"


def test_update_merges_fields_and_keeps_others(store, test_organization):
    store.commit_batch([_create_user("u1", test_organization.id, name="Ada", grade="Grade 6", section="A")])

    store.commit_batch([WriteOperation(action="update", collection="users", record_id="u1", fields={"grade": "Grade 7"})])

    profile = db.session.get(UserProfile, "u1")
    assert (profile.grade, profile.section) == ("Grade 7", "A")


def test_failed_batch_writes_nothing(store, test_organization):
    with pytest.raises(BatchCommitError, match="Cannot update missing users record ghost"):
        store.commit_batch(
            [
                _create_user("u1", test_organization.id),
                WriteOperation(action="update", collection="users", record_id="ghost", fields={"name": "x"}),
            ]
        )

    assert db.session.get(UserProfile, "u1") is None


def test_database_errors_become_batch_errors(store, test_organization):
    bad = WriteOperation(action="create", collection="users", record_id="u1", fields={"organization_id": test_organization.id})

    with pytest.raises(BatchCommitError, match="Datastore rejected the batch"):
        store.commit_batch([bad])

    assert db.session.scalars(select(UserProfile)).all() == []


def test_unknown_field_is_rejected(store, test_organization):
    with pytest.raises(BatchCommitError, match="Unknown field 'shoe_size'"):
        store.commit_batch([_create_user("u1", test_organization.id, shoe_size=42)])


def test_oversized_batch_is_rejected_before_touching_the_session(store, test_organization):
    operations = [_create_user(f"u{n}", test_organization.id) for n in range(501)]

    with pytest.raises(BatchCommitError, match="exceeds the datastore limit of 500"):
        store.commit_batch(operations)

    assert db.session.scalars(select(UserProfile)).all() == []


def test_subjects_collection_and_new_ids(store, test_organization):
    subject_id = store.new_id("subjects")
    store.commit_batch(
        [
            WriteOperation(
                action="create",
                collection="subjects",
                record_id=subject_id,
                fields={"organization_id": test_organization.id, "name": "Mathematics"},
            )
        ]
    )

    assert db.session.get(Subject, subject_id).name == "Mathematics"
    assert store.new_id("subjects") != subject_id
    with pytest.raises(ValueError, match="Unknown collection"):
        store.new_id("volunteers")
