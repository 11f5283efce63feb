"""
Write payload helpers.

Row handlers build payloads where any field may carry ``UNSET``; stripping
them before the write means updates never overwrite stored data with blanks.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Iterable, Mapping

from roster_app.models.profile import ProfileStatus


class _UnsetType:
    _instance: "_UnsetType | None" = None

    def __new__(cls) -> "_UnsetType":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _UnsetType()

CREATE_ONLY_FIELDS = ("roles", "status", "created_at")


def text_or_unset(value: str | None) -> Any:
    token = (value or "").strip()
    return token if token else UNSET


def parse_amount(value: str | None) -> Any:
    """
    Parse a money column.

    Blank cells are unset; thousands separators are dropped; anything that
    still does not parse (or parses to NaN/inf) counts as ``0.0``.
    """

    token = (value or "").strip()
    if not token:
        return UNSET
    try:
        amount = float(token.replace(",", ""))
    except ValueError:
        return 0.0
    if math.isnan(amount) or math.isinf(amount):
        return 0.0
    return amount


def parse_int_or_unset(value: str | None) -> Any:
    token = (value or "").strip()
    if not token:
        return UNSET
    try:
        return int(token)
    except ValueError:
        try:
            number = float(token)
        except ValueError:
            return UNSET
        if math.isnan(number) or math.isinf(number):
            return UNSET
        return int(number)


def strip_unset(fields: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in fields.items() if value is not UNSET}


def create_stamps(*, roles: Iterable[str], timestamp: datetime) -> dict[str, Any]:
    return {
        "roles": list(roles),
        "status": ProfileStatus.ACTIVE.value,
        "created_at": timestamp,
    }


def build_payload(
    fields: Mapping[str, Any],
    *,
    is_update: bool,
    stamps: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Produce the final field map for a write.

    Creates receive ``stamps``; updates drop every create-only field even if
    the caller passed one.
    """

    payload = strip_unset(fields)
    if is_update:
        for name in CREATE_ONLY_FIELDS:
            payload.pop(name, None)
        return payload
    if stamps:
        payload.update(strip_unset(stamps))
    return payload


__all__ = [
    "CREATE_ONLY_FIELDS",
    "UNSET",
    "build_payload",
    "create_stamps",
    "parse_amount",
    "parse_int_or_unset",
    "strip_unset",
    "text_or_unset",
]
