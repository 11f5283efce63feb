# roster_app/models/__init__.py
"""
Database models package
"""

from .academics import Subject, TeacherAssignment
from .base import BaseModel, db
from .importer import ImportRun, ImportRunStatus, RosterKind
from .organization import Organization
from .profile import Credential, ProfileRole, ProfileStatus, UserProfile

__all__ = [
    "db",
    "BaseModel",
    "Organization",
    "UserProfile",
    "Credential",
    "ProfileRole",
    "ProfileStatus",
    "Subject",
    "TeacherAssignment",
    # Importer models
    "ImportRun",
    "ImportRunStatus",
    "RosterKind",
]
