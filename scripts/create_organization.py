# scripts/create_organization.py

"""
Script to create a school organization from the command line.
Assignment rosters reference subjects by name, so the subjects taught at the
school can be entered here as well.
"""

import os
import re
import sys
from uuid import uuid4

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.exc import SQLAlchemyError  # noqa: E402

from app import app  # noqa: E402
from roster_app.models import Organization, Subject, db  # noqa: E402

ACADEMIC_YEAR_PATTERN = re.compile(r"^\d{4}-\d{4}$")


def generate_slug(name):
    """Generate a URL-friendly slug from a name"""
    slug = name.lower()
    slug = re.sub(r"[_\s]+", "-", slug)
    slug = re.sub(r"[^a-z0-9\-]", "", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def parse_subjects(raw):
    """Split a comma-separated subject list, dropping blanks and case-insensitive repeats."""
    seen = set()
    subjects = []
    for part in (raw or "").split(","):
        name = part.strip()
        if name and name.lower() not in seen:
            seen.add(name.lower())
            subjects.append(name)
    return subjects


def create_organization_record(name, slug, default_academic_year=None, subjects=()):
    """
    Insert the organization and its subjects in one transaction.

    Returns ``(organization, error)``; exactly one of them is ``None``.
    """
    if not re.match(r"^[a-z0-9\-]+$", slug or ""):
        return None, "Slug can only contain lowercase letters, numbers, and hyphens."
    if default_academic_year and not ACADEMIC_YEAR_PATTERN.match(default_academic_year):
        return None, "Academic year must look like 2024-2025."
    if Organization.find_by_slug(slug):
        return None, f'An organization with slug "{slug}" already exists.'

    organization = Organization(
        name=name,
        slug=slug,
        is_active=True,
        default_academic_year=default_academic_year or None,
    )
    try:
        db.session.add(organization)
        db.session.flush()
        for subject_name in subjects:
            db.session.add(Subject(id=uuid4().hex, organization_id=organization.id, name=subject_name))
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        return None, str(exc)
    return organization, None


def create_organization():
    with app.app_context():
        name = input("Enter organization name: ").strip()
        if not name:
            print("Error: Organization name cannot be empty.")
            sys.exit(1)

        suggested_slug = generate_slug(name)
        print(f"Suggested slug: {suggested_slug}")
        slug_input = input(f'Enter slug (or press Enter to use "{suggested_slug}"): ').strip()
        slug = slug_input or suggested_slug

        academic_year = input("Default academic year, e.g. 2024-2025 (optional): ").strip() or None
        subjects = parse_subjects(input("Subjects taught, comma-separated (optional): "))

        org, error = create_organization_record(name, slug, academic_year, subjects)
        if error:
            print(f"Error creating organization: {error}")
            sys.exit(1)

        print("Organization created successfully!")
        print(f"   Name: {org.name}")
        print(f"   Slug: {org.slug}")
        print(f'   Academic year: {org.default_academic_year or "None"}')
        print(f'   Subjects: {", ".join(subjects) or "None"}')
        print(f"\nImport rosters with: flask importer roster --org {org.slug} --kind students --file <csv>")


if __name__ == "__main__":
    create_organization()
