"""
SQLAlchemy-backed datastore for the reconciliation engine.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence
from uuid import uuid4

from sqlalchemy import inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from roster_app.models import Subject, TeacherAssignment, UserProfile, db

from .errors import BatchCommitError
from .ports import (
    COLLECTION_ASSIGNMENTS,
    COLLECTION_SUBJECTS,
    COLLECTION_USERS,
    DATASTORE_BATCH_CEILING,
    WriteOperation,
)

logger = logging.getLogger(__name__)

COLLECTION_MODELS = {
    COLLECTION_USERS: UserProfile,
    COLLECTION_SUBJECTS: Subject,
    COLLECTION_ASSIGNMENTS: TeacherAssignment,
}


def _model_for(collection: str):
    try:
        return COLLECTION_MODELS[collection]
    except KeyError:
        raise ValueError(f"Unknown collection '{collection}'.") from None


def record_to_dict(instance: Any) -> dict[str, Any]:
    mapper = inspect(type(instance))
    return {attr.key: getattr(instance, attr.key) for attr in mapper.column_attrs}


class SQLAlchemyDatastore:
    """``Datastore`` port over the roster models; one commit per batch."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    def query(self, collection: str, **equals: Any) -> list[dict[str, Any]]:
        model = _model_for(collection)
        stmt = select(model).filter_by(**equals)
        return [record_to_dict(instance) for instance in self.session.scalars(stmt).all()]

    def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        instance = self.session.get(_model_for(collection), record_id)
        if instance is None:
            return None
        return record_to_dict(instance)

    def new_id(self, collection: str) -> str:
        _model_for(collection)
        return uuid4().hex

    def commit_batch(self, operations: Sequence[WriteOperation]) -> None:
        if len(operations) > DATASTORE_BATCH_CEILING:
            raise BatchCommitError(
                f"Batch of {len(operations)} operations exceeds the datastore limit of {DATASTORE_BATCH_CEILING}."
            )

        staged: dict[tuple[str, str], Any] = {}
        try:
            for operation in operations:
                model = _model_for(operation.collection)
                key = (operation.collection, operation.record_id)
                instance = staged.get(key) or self.session.get(model, operation.record_id)
                if instance is None:
                    if operation.action == "update":
                        raise BatchCommitError(
                            f"Cannot update missing {operation.collection} record {operation.record_id}"
                        )
                    instance = model(id=operation.record_id)
                    self.session.add(instance)
                for name, value in operation.fields.items():
                    if not hasattr(model, name):
                        raise BatchCommitError(f"Unknown field '{name}' for collection {operation.collection}")
                    setattr(instance, name, value)
                staged[key] = instance
            self.session.commit()
        except BatchCommitError:
            self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Datastore rejected batch of %s operations", len(operations))
            raise BatchCommitError(f"Datastore rejected the batch: {exc.__class__.__name__}") from exc


__all__ = ["COLLECTION_MODELS", "SQLAlchemyDatastore", "record_to_dict"]
