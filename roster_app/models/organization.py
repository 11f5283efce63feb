# roster_app/models/organization.py

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .base import BaseModel, db


class Organization(BaseModel):
    """A school. Every roster record belongs to exactly one organization."""

    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    slug = db.Column(db.String(100), unique=True, nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    # Used when an import run does not name an academic year
    default_academic_year = db.Column(db.String(20), nullable=True)

    subjects = db.relationship("Subject", lazy="select", order_by="Subject.name")

    def __repr__(self):
        return f"<Organization {self.slug}>"

    @staticmethod
    def find_by_slug(slug):
        """Look up an organization by slug; slugs are matched case-insensitively."""
        normalized = (slug or "").strip().lower()
        if not normalized:
            return None
        try:
            return Organization.query.filter_by(slug=normalized).first()
        except SQLAlchemyError as exc:
            current_app.logger.error("Database error finding organization %r: %s", normalized, exc)
            return None
