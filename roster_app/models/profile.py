# roster_app/models/profile.py
"""
School member profiles and the login credentials that may back them.
"""

import enum

from sqlalchemy import Index

from .base import BaseModel, db


class ProfileRole(str, enum.Enum):
    SCHOOL_ADMIN = "school-admin"
    TEACHER = "teacher"
    STUDENT = "student"
    PARENT = "parent"


class ProfileStatus(str, enum.Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class UserProfile(BaseModel):
    """
    Profile of a person inside one organization.

    When the person has a login, ``id`` equals the uid of the backing
    ``Credential``; otherwise it is a generated identifier.
    """

    __tablename__ = "users"

    id = db.Column(db.String(64), primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True, index=True)
    roles = db.Column(db.JSON, nullable=False, default=list)
    status = db.Column(db.String(20), nullable=False, default=ProfileStatus.ACTIVE.value)

    # Student roster fields
    student_id_number = db.Column(db.String(100), nullable=True, index=True)
    grade = db.Column(db.String(50), nullable=True)
    section = db.Column(db.String(50), nullable=True)
    academic_year = db.Column(db.String(20), nullable=True)
    major = db.Column(db.String(100), nullable=True)
    group_name = db.Column(db.String(100), nullable=True)

    # Guardian contact
    father_name = db.Column(db.String(255), nullable=True)
    family_name = db.Column(db.String(255), nullable=True)
    father_email = db.Column(db.String(255), nullable=True)
    family_username = db.Column(db.String(255), nullable=True)
    father_phone1 = db.Column(db.String(50), nullable=True)
    father_phone2 = db.Column(db.String(50), nullable=True)
    mother_phone1 = db.Column(db.String(50), nullable=True)

    # Fee balances
    open_balance = db.Column(db.Float, nullable=True)
    total_tuition_fees = db.Column(db.Float, nullable=True)
    total_tuition_fees_vat = db.Column(db.Float, nullable=True)
    tuition_fees_balance = db.Column(db.Float, nullable=True)
    transportation = db.Column(db.Float, nullable=True)
    other_fees = db.Column(db.Float, nullable=True)
    total_balance = db.Column(db.Float, nullable=True)

    organization = db.relationship("Organization")

    __table_args__ = (
        Index("idx_users_org_email", "organization_id", "email"),
        Index("idx_users_org_student_id", "organization_id", "student_id_number"),
    )

    def __repr__(self):
        return f"<UserProfile {self.name} ({self.organization_id})>"

    def has_role(self, role):
        value = role.value if isinstance(role, ProfileRole) else role
        return value in (self.roles or [])


class Credential(BaseModel):
    """Login identity, unique by address across every organization."""

    __tablename__ = "credentials"

    uid = db.Column(db.String(64), primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    last_authenticated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Credential {self.email}>"
