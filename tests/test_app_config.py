"""Configuration, validation and logging setup."""

import json
import logging

import pytest

from app import create_app
from config.base import _coerce_bool, _coerce_int
from config.validation import validate_and_exit, validate_environment
from roster_app.utils.logging_config import JsonFormatter, setup_logging


class TestCoercion:
    def test_coerce_bool(self):
        assert _coerce_bool("Yes") is True
        assert _coerce_bool("off") is False
        assert _coerce_bool(None, default=True) is True
        assert _coerce_bool("maybe") is False

    def test_coerce_int_clamps_and_falls_back(self):
        assert _coerce_int("450", 400, minimum=1, maximum=500) == 450
        assert _coerce_int("9000", 400, minimum=1, maximum=500) == 500
        assert _coerce_int("0", 400, minimum=1, maximum=500) == 1
        assert _coerce_int("lots", 400, minimum=1, maximum=500) == 400
        assert _coerce_int(None, 60) == 60


class TestEnvironmentValidation:
    def test_development_only_checks_importer_tunables(self, monkeypatch):
        monkeypatch.delenv("SECRET_KEY", raising=False)
        monkeypatch.setenv("IMPORTER_MAX_BATCH_SIZE", "501")
        monkeypatch.setenv("IMPORTER_MIN_SECRET_LENGTH", "six")
        monkeypatch.delenv("IMPORTER_RUN_LOCK_TTL_MINUTES", raising=False)

        is_valid, errors = validate_environment("development")

        assert is_valid is False
        assert errors == [
            "IMPORTER_MAX_BATCH_SIZE must be between 1 and 500 (got 501).",
            "IMPORTER_MIN_SECRET_LENGTH must be an integer (got 'six').",
        ]

    def test_production_requires_secret_database_and_broker(self, monkeypatch):
        for name in ("SECRET_KEY", "DATABASE_URL", "CELERY_BROKER_URL", "CELERY_SQLITE_PATH"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("IMPORTER_WORKER_ENABLED", "true")

        is_valid, errors = validate_environment("production")

        assert is_valid is False
        assert len(errors) == 3
        assert errors[0].startswith("SECRET_KEY is required in production")
        assert errors[1].startswith("DATABASE_URL is required in production")
        assert errors[2].startswith("CELERY_BROKER_URL (or CELERY_SQLITE_PATH)")

    def test_valid_production_environment(self, monkeypatch):
        monkeypatch.setenv("SECRET_KEY", "a" * 64)
        monkeypatch.setenv("DATABASE_URL", "postgresql://roster@db/roster")
        monkeypatch.setenv("IMPORTER_WORKER_ENABLED", "false")
        for name in ("IMPORTER_MAX_BATCH_SIZE", "IMPORTER_MIN_SECRET_LENGTH", "IMPORTER_RUN_LOCK_TTL_MINUTES"):
            monkeypatch.delenv(name, raising=False)

        assert validate_environment("production") == (True, [])

    def test_validate_and_exit_stops_on_errors(self, monkeypatch, capsys):
        monkeypatch.setenv("IMPORTER_RUN_LOCK_TTL_MINUTES", "0")
        monkeypatch.delenv("IMPORTER_MAX_BATCH_SIZE", raising=False)
        monkeypatch.delenv("IMPORTER_MIN_SECRET_LENGTH", raising=False)

        with pytest.raises(SystemExit) as excinfo:
            validate_and_exit("testing")

        assert excinfo.value.code == 1
        assert "IMPORTER_RUN_LOCK_TTL_MINUTES must be at least 1 (got 0)." in capsys.readouterr().err


class TestLogging:
    def test_json_formatter_carries_extra_fields(self):
        record = logging.LogRecord("roster_app.importer", logging.INFO, __file__, 10, "Run %s done", (7,), None)
        record.importer_run_id = 7

        payload = json.loads(JsonFormatter("roster-importer", "0.1.0").format(record))

        assert payload["message"] == "Run 7 done"
        assert payload["level"] == "INFO"
        assert payload["importer_run_id"] == 7
        assert payload["app"] == "roster-importer"

    def test_setup_logging_is_idempotent(self, app, tmp_path):
        app.config.update(
            ENABLE_CONSOLE_LOGGING=True,
            ENABLE_FILE_LOGGING=True,
            LOG_DIR=str(tmp_path / "logs"),
            LOG_LEVEL="WARNING",
            LOG_FORMAT="text",
        )

        setup_logging(app)
        setup_logging(app)

        package_logger = logging.getLogger("roster_app")
        try:
            assert len(package_logger.handlers) == 2
            assert len([h for h in app.logger.handlers if getattr(h, "_roster_app_handler", False)]) == 2
            assert package_logger.level == logging.WARNING
            assert package_logger.propagate is False
            assert (tmp_path / "logs" / "roster_app.log").exists()
        finally:
            app.config.update(ENABLE_CONSOLE_LOGGING=False, ENABLE_FILE_LOGGING=False, LOG_LEVEL="DEBUG")
            setup_logging(app)

        assert package_logger.handlers == []
        assert package_logger.propagate is True


def test_create_app_applies_overrides(tmp_path):
    flask_app = create_app(
        "testing",
        overrides={
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'factory.db'}",
            "IMPORTER_ENABLED": False,
            "ENABLE_CONSOLE_LOGGING": False,
        },
    )

    assert flask_app.config["TESTING"] is True
    assert flask_app.config["IMPORTER_MAX_BATCH_SIZE"] == 400
    assert "importer" not in flask_app.blueprints

    response = flask_app.test_client().get("/does-not-exist")
    assert response.status_code == 404
    assert response.get_json() == {"error": "Not found."}
