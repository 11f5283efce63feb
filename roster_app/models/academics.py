# roster_app/models/academics.py
"""
Subjects and teacher-to-class subject assignments.
"""

from sqlalchemy import Index, UniqueConstraint

from .base import BaseModel, db


class Subject(BaseModel):
    """A subject taught at a school"""

    __tablename__ = "subjects"

    id = db.Column(db.String(64), primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)

    __table_args__ = (UniqueConstraint("organization_id", "name", name="uq_subjects_org_name"),)

    def __repr__(self):
        return f"<Subject {self.name}>"


class TeacherAssignment(BaseModel):
    """
    A teacher teaching one subject to one grade/section.

    ``major``, ``periods_per_week`` and ``academic_year`` are descriptive; the
    identity of an assignment is (teacher, subject, grade, section, organization).
    """

    __tablename__ = "teacher_assignments"

    id = db.Column(db.String(64), primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    teacher_id = db.Column(db.String(64), db.ForeignKey("users.id"), nullable=False, index=True)
    teacher_name = db.Column(db.String(255), nullable=True)
    subject_id = db.Column(db.String(64), db.ForeignKey("subjects.id"), nullable=False)
    subject_name = db.Column(db.String(200), nullable=True)
    grade = db.Column(db.String(50), nullable=False)
    section = db.Column(db.String(50), nullable=False)
    periods_per_week = db.Column(db.Integer, nullable=True)
    major = db.Column(db.String(100), nullable=True)
    academic_year = db.Column(db.String(20), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "teacher_id",
            "subject_id",
            "grade",
            "section",
            "organization_id",
            name="uq_teacher_assignments_key",
        ),
        Index("idx_teacher_assignments_org_grade", "organization_id", "grade", "section"),
    )

    def __repr__(self):
        return f"<TeacherAssignment {self.teacher_id} {self.subject_id} {self.grade}/{self.section}>"
