# conftest.py

import os

import pytest

# Set testing environment BEFORE importing app so the config classes
# resolve their testing defaults
os.environ["FLASK_ENV"] = "testing"

from app import create_app  # noqa: E402
from roster_app.models import Organization, db  # noqa: E402


def _test_overrides(tmp_path):
    # A database file rather than :memory: because the credential context
    # opens a second session that must see the same data.
    return {
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{(tmp_path / 'roster_test.db').as_posix()}",
        "SQLALCHEMY_ECHO": False,
        "SECRET_KEY": "test-secret-key-for-testing-only",
        "ENABLE_FILE_LOGGING": False,
        "ENABLE_CONSOLE_LOGGING": False,
        "LOG_LEVEL": "DEBUG",
        "IMPORTER_ENABLED": True,
        "IMPORTER_WORKER_ENABLED": False,
        "IMPORTER_UPLOAD_DIR": str(tmp_path / "uploads"),
        "CELERY_SQLITE_PATH": str(tmp_path / "celery.sqlite"),
    }


def _add_organization(**fields):
    org = Organization(**fields)
    db.session.add(org)
    db.session.commit()
    return org


@pytest.fixture(scope="function")
def app(tmp_path):
    """Flask app bound to a fresh SQLite file under the test's tmp_path."""
    flask_app = create_app("testing", overrides=_test_overrides(tmp_path))

    with flask_app.app_context():
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def test_organization(app):
    """Active school with a default academic year."""
    return _add_organization(
        name="Test School",
        slug="test-school",
        is_active=True,
        default_academic_year="2024-2025",
    )


@pytest.fixture
def other_organization(app):
    return _add_organization(name="Other School", slug="other-school", is_active=True)


@pytest.fixture
def inactive_organization(app):
    return _add_organization(name="Closed School", slug="closed-school", is_active=False)
