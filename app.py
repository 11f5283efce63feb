# app.py

import logging
import os

from dotenv import load_dotenv
from flask import Flask, jsonify
from sqlalchemy import event

# Load environment variables from .env file first
load_dotenv()

# Module imports after load_dotenv() - E402 is intentional
from config import DevelopmentConfig, ProductionConfig, TestingConfig  # noqa: E402
from config.validation import validate_and_exit  # noqa: E402
from roster_app.importer import init_importer  # noqa: E402
from roster_app.models import db  # noqa: E402
from roster_app.utils.logging_config import setup_logging  # noqa: E402

logger = logging.getLogger(__name__)

CONFIG_BY_ENV = {
    "production": ProductionConfig,
    "testing": TestingConfig,
    "development": DevelopmentConfig,
}


SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA busy_timeout=5000",
)


def _install_sqlite_pragmas(flask_app: Flask) -> None:
    """
    Apply WAL and busy-timeout pragmas to every new SQLite connection.

    The credential context and the run session share one database file.
    Foreign keys are enforced outside of tests.
    """
    engine = db.engine
    if engine.url.get_backend_name() != "sqlite" or getattr(engine, "_roster_pragmas", False):
        return
    statements = list(SQLITE_PRAGMAS)
    if not flask_app.config.get("TESTING", False):
        statements.append("PRAGMA foreign_keys=ON")

    @event.listens_for(engine, "connect")
    def _apply_pragmas(dbapi_connection, connection_record):  # pragma: no cover - driver hook
        cursor = dbapi_connection.cursor()
        try:
            for statement in statements:
                cursor.execute(statement)
        except Exception as exc:
            logger.warning("Could not apply SQLite pragmas: %s", exc)
        finally:
            cursor.close()

    engine._roster_pragmas = True  # type: ignore[attr-defined]


def _register_error_handlers(flask_app: Flask) -> None:
    def _json(message: str, status: int):
        return jsonify({"error": message}), status

    flask_app.register_error_handler(404, lambda error: _json("Not found.", 404))
    flask_app.register_error_handler(405, lambda error: _json("Method not allowed.", 405))
    flask_app.register_error_handler(413, lambda error: _json("Upload is too large.", 413))

    @flask_app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        logger.error("Unhandled server error: %s", error)
        return _json("Internal server error.", 500)


def create_app(flask_env: str = None, overrides: dict = None) -> Flask:
    """
    Build the Flask application for ``flask_env`` (defaults to ``FLASK_ENV``).

    ``overrides`` are applied on top of the environment's config classes before
    any extension is initialised, so tests can point at their own database.
    """
    flask_env = flask_env or os.environ.get("FLASK_ENV", "development")
    if flask_env == "production":
        validate_and_exit(flask_env)

    flask_app = Flask(__name__)
    flask_app.config.from_object(CONFIG_BY_ENV.get(flask_env, DevelopmentConfig))
    if overrides:
        flask_app.config.update(overrides)

    db.init_app(flask_app)
    setup_logging(flask_app)

    with flask_app.app_context():
        _install_sqlite_pragmas(flask_app)
        # Tests manage their own schema
        if not flask_app.config.get("TESTING", False):
            db.create_all()

    init_importer(flask_app)
    _register_error_handlers(flask_app)
    return flask_app


app = create_app()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port)
