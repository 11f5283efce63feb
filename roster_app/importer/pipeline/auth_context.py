"""
Disposable authentication context for credential claims.

Credential calls run on their own SQLAlchemy session so they never share a
transaction with roster batches. The session is opened once per run and
closed on every exit path.
"""

from __future__ import annotations

import contextlib
import logging
from datetime import datetime, timezone
from typing import Iterator
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from roster_app.models import Credential, db

from .errors import CredentialExistsError, CredentialRejectedError, CredentialServiceError

logger = logging.getLogger(__name__)


class SQLAlchemyCredentialService:
    """``CredentialService`` backed by the ``credentials`` table."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _find(self, address: str) -> Credential | None:
        return self.session.scalars(select(Credential).filter_by(email=address)).first()

    def create_credential(self, address: str, secret: str) -> str:
        address = address.strip().lower()
        if self._find(address) is not None:
            raise CredentialExistsError(address)

        uid = uuid4().hex
        self.session.add(Credential(uid=uid, email=address, password_hash=generate_password_hash(secret)))
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise CredentialExistsError(address) from None
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise CredentialServiceError(f"Could not create credential for {address}.") from exc
        logger.info("Created credential %s for %s", uid, address)
        return uid

    def authenticate(self, address: str, secret: str) -> str:
        address = address.strip().lower()
        credential = self._find(address)
        if credential is None or not check_password_hash(credential.password_hash, secret):
            raise CredentialRejectedError(address)

        credential.last_authenticated_at = datetime.now(timezone.utc)
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise CredentialServiceError(f"Could not record authentication for {address}.") from exc
        return credential.uid


@contextlib.contextmanager
def credential_context(engine: Engine | None = None) -> Iterator[SQLAlchemyCredentialService]:
    """Open a private session for credential calls and always close it."""

    session = Session(bind=engine if engine is not None else db.engine, expire_on_commit=False)
    logger.debug("Opened credential context")
    try:
        yield SQLAlchemyCredentialService(session)
    finally:
        session.close()
        logger.debug("Closed credential context")


__all__ = ["SQLAlchemyCredentialService", "credential_context"]
