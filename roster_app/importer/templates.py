"""
Sample roster CSVs offered to school staff as a starting point.
"""

from __future__ import annotations

import csv
import io
from types import MappingProxyType
from typing import Mapping, Sequence

from roster_app.models.importer.schema import RosterKind

TEMPLATE_HEADERS: Mapping[RosterKind, tuple[str, ...]] = MappingProxyType(
    {
        RosterKind.STUDENTS: (
            "E_Child_Name",
            "UserName",
            "Student_Email",
            "Password",
            "E_Class_Desc",
            "E_Section_Name",
            "Academic_Year",
            "E_Major_Desc",
            "E_Group_Desc",
            "E_Father_Name",
            "E_Family_Name",
            "Father_Email",
            "Family_UserName",
            "FatherPhone1",
            "FatherPhone2",
            "MotherPhone1",
            "Open_Balance",
            "Total_Tuition_Fees",
            "Total_Tuition_Fees_(+VAT)",
            "Tuition_Fees_Balance",
            "Transportation",
            "Other_Fees",
            "Total_Balance",
        ),
        RosterKind.TEACHERS: ("FirstName", "MiddleName", "LastName", "Email", "Password"),
        RosterKind.ASSIGNMENTS: (
            "Teacher_Email",
            "Grade",
            "Section",
            "Subject_Name",
            "Periods_Per_Week",
            "Academic_Year",
            "Major",
        ),
    }
)

TEMPLATE_SAMPLES: Mapping[RosterKind, tuple[Sequence[str], ...]] = MappingProxyType(
    {
        RosterKind.STUDENTS: (
            (
                "Layla Haddad",
                "S-1001",
                "layla.haddad@example.edu",
                "changeme123",
                "Grade 7",
                "A",
                "2024-2025",
                "Science",
                "Blue",
                "Karim Haddad",
                "Haddad",
                "karim.haddad@example.com",
                "haddad.family",
                "+15550101",
                "",
                "+15550102",
                "0",
                "12,500",
                "14,375",
                "2,500",
                "1,200",
                "300",
                "4,000",
            ),
        ),
        RosterKind.TEACHERS: (("Maya", "", "Nasser", "maya.nasser@example.edu", "changeme123"),),
        RosterKind.ASSIGNMENTS: (
            ("maya.nasser@example.edu", "Grade 7", "A", "Mathematics", "5", "2024-2025", "Science"),
        ),
    }
)


def render_template_csv(kind: RosterKind | str) -> str:
    """Return the sample CSV for ``kind`` (header plus one example row)."""

    roster_kind = RosterKind(kind)
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(TEMPLATE_HEADERS[roster_kind])
    for sample in TEMPLATE_SAMPLES[roster_kind]:
        writer.writerow(sample)
    return buffer.getvalue()


def template_filename(kind: RosterKind | str) -> str:
    return f"{RosterKind(kind).value}_template.csv"


__all__ = ["TEMPLATE_HEADERS", "render_template_csv", "template_filename"]
