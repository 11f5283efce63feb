"""Canonical roster ingest contract definitions.

Each roster kind declares the fields it reads together with the header
aliases found in real school exports. Headers are matched case-insensitively
and ignore whitespace and the punctuation that spreadsheet tools tend to add
(``_``, ``-``, ``(``, ``)``, ``+``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Tuple

from roster_app.models.importer.schema import RosterKind

_HEADER_NOISE = re.compile(r"[\s_()+\-]")


@dataclass(frozen=True)
class FieldSpec:
    """Metadata describing a canonical roster field."""

    name: str
    description: str
    required: bool = False
    aliases: Tuple[str, ...] = ()

    def headers(self) -> Tuple[str, ...]:
        """Return the canonical header plus aliases, in lookup priority order."""

        return (self.name, *self.aliases)


@dataclass(frozen=True)
class ImportRow:
    """One record of an uploaded roster file as header -> raw string."""

    row_number: int
    values: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))


STUDENT_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec(
        name="name",
        description="Student full name.",
        required=True,
        aliases=("e_child_name", "child_name", "student_name"),
    ),
    FieldSpec(name="first_name", description="Given name, used when no full name is supplied."),
    FieldSpec(name="last_name", description="Family name, used when no full name is supplied."),
    FieldSpec(
        name="email",
        description="Student login address.",
        aliases=("student_email",),
    ),
    FieldSpec(name="password", description="Initial login secret for a new student account."),
    FieldSpec(
        name="student_id_number",
        description="Roster identifier issued by the school system.",
        aliases=("username", "student_id"),
    ),
    FieldSpec(name="grade", description="Class/grade label.", aliases=("e_class_desc",)),
    FieldSpec(name="section", description="Section label.", aliases=("e_section_name",)),
    FieldSpec(name="academic_year", description="Academic year, e.g. 2024-2025."),
    FieldSpec(name="major", description="Track or major.", aliases=("e_major_desc",)),
    FieldSpec(name="group_name", description="Group label.", aliases=("e_group_desc", "group")),
    FieldSpec(name="father_name", description="Father name.", aliases=("e_father_name",)),
    FieldSpec(name="family_name", description="Family name.", aliases=("e_family_name",)),
    FieldSpec(name="father_email", description="Father contact address."),
    FieldSpec(name="family_username", description="Family portal username."),
    FieldSpec(name="father_phone1", description="Father primary phone."),
    FieldSpec(name="father_phone2", description="Father secondary phone."),
    FieldSpec(name="mother_phone1", description="Mother primary phone."),
    FieldSpec(name="open_balance", description="Opening balance."),
    FieldSpec(
        name="total_tuition_fees",
        description="Total tuition fees.",
        aliases=("total_tution_fees",),
    ),
    FieldSpec(
        name="total_tuition_fees_vat",
        description="Total tuition fees including VAT.",
        aliases=("total_tution_fees_(+vat)", "total_tuition_fees_(+vat)"),
    ),
    FieldSpec(
        name="tuition_fees_balance",
        description="Outstanding tuition.",
        aliases=("tution_fees_balance",),
    ),
    FieldSpec(name="transportation", description="Transportation fees.", aliases=("transportion",)),
    FieldSpec(name="other_fees", description="Other fees.", aliases=("other",)),
    FieldSpec(name="total_balance", description="Total outstanding balance."),
)

TEACHER_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec(name="first_name", description="Teacher given name.", aliases=("firstname",)),
    FieldSpec(name="middle_name", description="Teacher middle name.", aliases=("middlename",)),
    FieldSpec(name="last_name", description="Teacher family name.", aliases=("lastname",)),
    FieldSpec(
        name="email",
        description="Teacher login address.",
        required=True,
        aliases=("username", "teacher_email"),
    ),
    FieldSpec(name="password", description="Initial login secret for a new teacher account."),
)

ASSIGNMENT_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec(
        name="teacher_email",
        description="Login address of an existing teacher.",
        required=True,
    ),
    FieldSpec(name="grade", description="Class/grade label.", required=True),
    FieldSpec(name="section", description="Section label.", required=True),
    FieldSpec(
        name="subject_name",
        description="Name of an existing subject.",
        required=True,
        aliases=("subject",),
    ),
    FieldSpec(name="periods_per_week", description="Weekly periods (integer)."),
    FieldSpec(name="academic_year", description="Academic year; defaults to the run's year."),
    FieldSpec(name="major", description="Track or major label (descriptive only)."),
)

ROSTER_FIELD_SPECS: Mapping[RosterKind, Tuple[FieldSpec, ...]] = MappingProxyType(
    {
        RosterKind.STUDENTS: STUDENT_FIELDS,
        RosterKind.TEACHERS: TEACHER_FIELDS,
        RosterKind.ASSIGNMENTS: ASSIGNMENT_FIELDS,
    }
)


def normalize_header(header: str) -> str:
    """Normalize a header for comparison (case, whitespace and punctuation agnostic)."""

    return _HEADER_NOISE.sub("", (header or "").strip().lstrip("\ufeff").lower())


def get_field_specs(kind: RosterKind) -> Tuple[FieldSpec, ...]:
    """Return the field specifications declared for ``kind``."""

    return ROSTER_FIELD_SPECS[RosterKind(kind)]


def get_required_fields(kind: RosterKind) -> Tuple[str, ...]:
    """Fields that must carry a value in every row of ``kind``."""

    return tuple(spec.name for spec in get_field_specs(kind) if spec.required)


class FieldAccessor:
    """
    Typed view over one ``ImportRow`` for a given roster kind.

    The lookup table is built once from the row; ``get`` only answers for
    declared fields so misspelled field names fail loudly instead of silently
    returning blanks.
    """

    def __init__(self, kind: RosterKind, row: ImportRow) -> None:
        self.kind = RosterKind(kind)
        self.row_number = row.row_number
        normalized: dict[str, str] = {}
        for header, value in row.values.items():
            key = normalize_header(header)
            if key and key not in normalized:
                normalized[key] = (value or "").strip()

        self._values: dict[str, str] = {}
        self._present: set[str] = set()
        for spec in get_field_specs(self.kind):
            resolved = ""
            for header in spec.headers():
                key = normalize_header(header)
                if key in normalized:
                    self._present.add(spec.name)
                    if normalized[key]:
                        resolved = normalized[key]
                        break
            self._values[spec.name] = resolved

    def get(self, name: str) -> str:
        try:
            return self._values[name]
        except KeyError:
            raise KeyError(f"Field '{name}' is not declared for {self.kind.value} rosters.") from None

    def has_column(self, name: str) -> bool:
        """True when the source file carried a column for ``name`` (even if blank)."""

        self.get(name)
        return name in self._present

    def missing_required(self) -> Tuple[str, ...]:
        return tuple(name for name in get_required_fields(self.kind) if not self._values[name])
