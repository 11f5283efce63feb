# config/base.py
import os
import warnings
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
INSTANCE_DIR = PROJECT_ROOT / "instance"

_TRUE_WORDS = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS = frozenset({"0", "false", "no", "off"})

DEV_SECRET_KEY = "dev-secret-key-change-in-production"
SQLITE_CONNECT_ARGS = {"check_same_thread": False, "timeout": 5}


def _coerce_bool(value, default=False):
    """Read ``1/true/yes/on`` and ``0/false/no/off``; anything else is ``default``."""
    if isinstance(value, bool):
        return value
    word = "" if value is None else str(value).strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    return default


def _coerce_int(value, default, *, minimum=None, maximum=None):
    """
    Parse an integer setting, falling back to ``default`` on garbage and
    clamping into ``[minimum, maximum]`` when bounds are given.
    """
    try:
        number = default if value is None else int(str(value).strip())
    except ValueError:
        number = default
    if minimum is not None:
        number = max(number, minimum)
    if maximum is not None:
        number = min(number, maximum)
    return number


def _env_bool(name, default):
    return _coerce_bool(os.environ.get(name), default=default)


def _env_int(name, default, **bounds):
    return _coerce_int(os.environ.get(name), default, **bounds)


def _resolve_secret_key(flask_env):
    secret = os.environ.get("SECRET_KEY")
    if secret:
        return secret
    if flask_env == "production":
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )
    if flask_env == "testing":
        return "test-secret-key-placeholder"
    warnings.warn(
        "SECRET_KEY not set. Using default for development only. "
        "Set SECRET_KEY environment variable before deploying.",
        UserWarning,
    )
    return DEV_SECRET_KEY


def _sqlite_uri(filename):
    INSTANCE_DIR.mkdir(parents=True, exist_ok=True)
    # SQLite URIs need forward slashes, even on Windows
    return f"sqlite:///{(INSTANCE_DIR / filename).as_posix()}"


def _engine_options(uri):
    if uri and uri.startswith("sqlite"):
        return {"connect_args": dict(SQLITE_CONNECT_ARGS)}
    return {}


class Config:
    SECRET_KEY = _resolve_secret_key(os.environ.get("FLASK_ENV", "development"))

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Logging
    APP_NAME = os.environ.get("APP_NAME", "Roster Importer")
    APP_VERSION = os.environ.get("APP_VERSION", "0.1.0")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    LOG_FILE_MAX_BYTES = _env_int("LOG_FILE_MAX_BYTES", 10 * 1024 * 1024, minimum=1024)
    LOG_FILE_BACKUP_COUNT = _env_int("LOG_FILE_BACKUP_COUNT", 10, minimum=0)
    ENABLE_FILE_LOGGING = _env_bool("ENABLE_FILE_LOGGING", True)
    ENABLE_CONSOLE_LOGGING = _env_bool("ENABLE_CONSOLE_LOGGING", True)

    # Importer and worker
    IMPORTER_ENABLED = _env_bool("IMPORTER_ENABLED", True)
    IMPORTER_WORKER_ENABLED = _env_bool("IMPORTER_WORKER_ENABLED", False)
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")
    IMPORTER_UPLOAD_DIR = os.environ.get("IMPORTER_UPLOAD_DIR")
    IMPORTER_MAX_UPLOAD_MB = _env_int("IMPORTER_MAX_UPLOAD_MB", 25, minimum=1)

    # Rows per datastore commit; the datastore refuses batches above 500.
    IMPORTER_MAX_BATCH_SIZE = _env_int("IMPORTER_MAX_BATCH_SIZE", 400, minimum=1, maximum=500)
    IMPORTER_MIN_SECRET_LENGTH = _env_int("IMPORTER_MIN_SECRET_LENGTH", 6, minimum=1)
    IMPORTER_RUN_LOCK_TTL_MINUTES = _env_int("IMPORTER_RUN_LOCK_TTL_MINUTES", 60, minimum=1)


class DevelopmentConfig(Config):
    DEBUG = True
    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = "text"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or _sqlite_uri("roster_dev.db")
    SQLALCHEMY_ECHO = _env_bool("SQLALCHEMY_ECHO", False)
    SQLALCHEMY_ENGINE_OPTIONS = _engine_options(SQLALCHEMY_DATABASE_URI)


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = False
    ENABLE_CONSOLE_LOGGING = False

    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = _engine_options(SQLALCHEMY_DATABASE_URI)
    IMPORTER_WORKER_ENABLED = False


class ProductionConfig(Config):
    DEBUG = False
    LOG_LEVEL = "INFO"
    LOG_FORMAT = "json"
    # Container runtimes collect stdout themselves
    ENABLE_CONSOLE_LOGGING = _env_bool("ENABLE_CONSOLE_LOGGING", False)

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL")
    if SQLALCHEMY_DATABASE_URI and SQLALCHEMY_DATABASE_URI.startswith("postgres://"):
        SQLALCHEMY_DATABASE_URI = SQLALCHEMY_DATABASE_URI.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_ECHO = False
    SESSION_COOKIE_SECURE = True
