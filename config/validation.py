# config/validation.py

"""
Startup checks for the environment variables the roster importer reads.

Integer tunables are checked in every environment so a typo in ``.env`` shows
up before the first import run; secrets, the database and the worker broker
are only required in production.
"""

import os
import sys
from typing import Callable, List, Optional, Tuple

PLACEHOLDER_SECRETS = frozenset({"", "your-secret-key", "your_secret_key"})

# (variable, minimum, maximum)
INTEGER_TUNABLES: Tuple[Tuple[str, int, Optional[int]], ...] = (
    ("IMPORTER_MAX_BATCH_SIZE", 1, 500),
    ("IMPORTER_MIN_SECRET_LENGTH", 1, None),
    ("IMPORTER_RUN_LOCK_TTL_MINUTES", 1, None),
)


def _check_integer(name: str, minimum: int, maximum: Optional[int]) -> Optional[str]:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        return f"{name} must be an integer (got {raw!r})."
    if maximum is not None and not minimum <= value <= maximum:
        return f"{name} must be between {minimum} and {maximum} (got {value})."
    if value < minimum:
        return f"{name} must be at least {minimum} (got {value})."
    return None


def _check_secret_key() -> Optional[str]:
    if os.environ.get("SECRET_KEY", "") in PLACEHOLDER_SECRETS:
        return (
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )
    return None


def _check_database_url() -> Optional[str]:
    if not os.environ.get("DATABASE_URL"):
        return "DATABASE_URL is required in production. Set it to your PostgreSQL connection string."
    return None


def _check_worker_broker() -> Optional[str]:
    if os.environ.get("IMPORTER_WORKER_ENABLED", "false").strip().lower() != "true":
        return None
    if os.environ.get("CELERY_BROKER_URL") or os.environ.get("CELERY_SQLITE_PATH"):
        return None
    return "CELERY_BROKER_URL (or CELERY_SQLITE_PATH) is required when IMPORTER_WORKER_ENABLED=true"


PRODUCTION_CHECKS: Tuple[Callable[[], Optional[str]], ...] = (
    _check_secret_key,
    _check_database_url,
    _check_worker_broker,
)


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate the process environment for ``flask_env``.

    Args:
        flask_env: development, production or testing; defaults to ``FLASK_ENV``.

    Returns:
        ``(is_valid, errors)`` with errors in a stable order.
    """
    flask_env = flask_env or os.environ.get("FLASK_ENV", "development")

    errors = [_check_integer(*tunable) for tunable in INTEGER_TUNABLES]
    if flask_env == "production":
        errors.extend(check() for check in PRODUCTION_CHECKS)

    errors = [message for message in errors if message]
    return not errors, errors


def validate_and_exit(flask_env: str = None) -> None:
    """Print every validation error to stderr and exit(1) when any were found."""
    is_valid, errors = validate_environment(flask_env)
    if is_valid:
        return

    rule = "=" * 80
    lines = [rule, "ENVIRONMENT VALIDATION FAILED", rule, ""]
    lines.append("The following environment variables are missing or invalid:")
    lines.append("")
    lines.extend(f"{index}. {message}" for index, message in enumerate(errors, 1))
    lines.extend(["", rule, "Please check your .env file or environment variables.", rule])
    print("\n".join(lines), file=sys.stderr)
    sys.exit(1)
