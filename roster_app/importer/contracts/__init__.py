"""Canonical ingest contract helpers for roster adapters."""

from __future__ import annotations

from .roster import (
    ASSIGNMENT_FIELDS,
    ROSTER_FIELD_SPECS,
    STUDENT_FIELDS,
    TEACHER_FIELDS,
    FieldAccessor,
    FieldSpec,
    ImportRow,
    get_field_specs,
    get_required_fields,
    normalize_header,
)

__all__ = [
    "ASSIGNMENT_FIELDS",
    "FieldAccessor",
    "FieldSpec",
    "ImportRow",
    "ROSTER_FIELD_SPECS",
    "STUDENT_FIELDS",
    "TEACHER_FIELDS",
    "get_field_specs",
    "get_required_fields",
    "normalize_header",
]
