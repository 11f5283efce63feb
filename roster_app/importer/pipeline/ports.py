"""
Ports the reconciliation engine talks to.

The engine never touches SQLAlchemy or password hashing directly; it goes
through a ``Datastore`` for records and a ``CredentialService`` for logins.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Literal, Mapping, Protocol, Sequence

COLLECTION_USERS = "users"
COLLECTION_SUBJECTS = "subjects"
COLLECTION_ASSIGNMENTS = "teacher_assignments"

DATASTORE_BATCH_CEILING = 500


@dataclass(frozen=True)
class WriteOperation:
    """
    One pending write.

    ``create`` inserts ``record_id`` with ``fields``; ``update`` merges
    ``fields`` into the existing record and leaves other columns untouched.
    """

    action: Literal["create", "update"]
    collection: str
    record_id: str
    fields: Mapping[str, Any] = field(default_factory=dict)
    row_number: int | None = None

    def __post_init__(self) -> None:
        if self.action not in ("create", "update"):
            raise ValueError(f"Unsupported write action '{self.action}'.")
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))


class Datastore(Protocol):
    def query(self, collection: str, **equals: Any) -> list[dict[str, Any]]:
        """Return records of ``collection`` whose columns equal every keyword."""

    def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        ...

    def new_id(self, collection: str) -> str:
        ...

    def commit_batch(self, operations: Sequence[WriteOperation]) -> None:
        """Apply ``operations`` atomically or raise ``BatchCommitError``."""


class CredentialService(Protocol):
    def create_credential(self, address: str, secret: str) -> str:
        """Register a login and return its uid; raises ``CredentialExistsError``."""

    def authenticate(self, address: str, secret: str) -> str:
        """Return the uid for a matching login; raises ``CredentialRejectedError``."""


class CredentialContextFactory(Protocol):
    """Callable returning a context manager that yields a ``CredentialService``."""

    def __call__(self) -> Any:
        ...


__all__ = [
    "COLLECTION_ASSIGNMENTS",
    "COLLECTION_SUBJECTS",
    "COLLECTION_USERS",
    "CredentialContextFactory",
    "CredentialService",
    "DATASTORE_BATCH_CEILING",
    "Datastore",
    "WriteOperation",
]
