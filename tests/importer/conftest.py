from __future__ import annotations

import contextlib
import copy
import itertools
from collections import defaultdict
from typing import Any, Sequence

import pytest

from roster_app.importer.contracts import ImportRow
from roster_app.importer.pipeline import TenantScope
from roster_app.importer.pipeline.errors import BatchCommitError, CredentialExistsError, CredentialRejectedError
from roster_app.importer.pipeline.ports import DATASTORE_BATCH_CEILING, WriteOperation

ORG_ID = 1
OTHER_ORG_ID = 2


class InMemoryDatastore:
    """Dict-backed ``Datastore`` recording every call the engine makes."""

    def __init__(self, *, fail_on_batch: int | None = None) -> None:
        self.collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self.fail_on_batch = fail_on_batch
        self.commit_attempts: list[list[WriteOperation]] = []
        self.committed_batches: list[list[WriteOperation]] = []
        self.query_calls: list[tuple[str, dict[str, Any]]] = []
        self.get_calls: list[tuple[str, str]] = []
        self._ids = itertools.count(1)

    def seed(self, collection: str, record_id: str, **fields: Any) -> dict[str, Any]:
        record = {"id": record_id, **fields}
        self.collections[collection][record_id] = record
        return record

    def record(self, collection: str, record_id: str) -> dict[str, Any] | None:
        return self.collections[collection].get(record_id)

    def records(self, collection: str) -> list[dict[str, Any]]:
        return list(self.collections[collection].values())

    def query(self, collection: str, **equals: Any) -> list[dict[str, Any]]:
        self.query_calls.append((collection, dict(equals)))
        return [
            dict(record)
            for record in self.collections[collection].values()
            if all(record.get(key) == value for key, value in equals.items())
        ]

    def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        self.get_calls.append((collection, record_id))
        record = self.collections[collection].get(record_id)
        return dict(record) if record is not None else None

    def new_id(self, collection: str) -> str:
        return f"{collection}-{next(self._ids)}"

    def commit_batch(self, operations: Sequence[WriteOperation]) -> None:
        self.commit_attempts.append(list(operations))
        if self.fail_on_batch is not None and len(self.commit_attempts) == self.fail_on_batch:
            raise BatchCommitError("simulated datastore outage")
        if len(operations) > DATASTORE_BATCH_CEILING:
            raise BatchCommitError("batch too large")

        staged = copy.deepcopy(self.collections)
        for operation in operations:
            bucket = staged[operation.collection]
            if operation.action == "create":
                bucket[operation.record_id] = {"id": operation.record_id, **operation.fields}
            else:
                if operation.record_id not in bucket:
                    raise BatchCommitError(f"missing record {operation.record_id}")
                bucket[operation.record_id].update(operation.fields)
        self.collections = staged
        self.committed_batches.append(list(operations))


class FakeCredentialService:
    """Credential port keyed by address, with open/close bookkeeping."""

    def __init__(self) -> None:
        self.accounts: dict[str, tuple[str, str]] = {}
        self.calls: list[tuple[str, str]] = []
        self.opened = 0
        self.closed = 0
        self._ids = itertools.count(1)

    def register(self, address: str, secret: str, uid: str | None = None) -> str:
        uid = uid or f"uid-existing-{next(self._ids)}"
        self.accounts[address] = (uid, secret)
        return uid

    def create_credential(self, address: str, secret: str) -> str:
        self.calls.append(("create", address))
        if address in self.accounts:
            raise CredentialExistsError(address)
        uid = f"uid-{next(self._ids)}"
        self.accounts[address] = (uid, secret)
        return uid

    def authenticate(self, address: str, secret: str) -> str:
        self.calls.append(("authenticate", address))
        account = self.accounts.get(address)
        if account is None or account[1] != secret:
            raise CredentialRejectedError(address)
        return account[0]

    @contextlib.contextmanager
    def open(self):
        self.opened += 1
        try:
            yield self
        finally:
            self.closed += 1


@pytest.fixture
def tenant() -> TenantScope:
    return TenantScope(organization_id=ORG_ID, slug="test-school")


@pytest.fixture
def datastore() -> InMemoryDatastore:
    return InMemoryDatastore()


@pytest.fixture
def credentials() -> FakeCredentialService:
    return FakeCredentialService()


@pytest.fixture
def make_rows():
    """Build ``ImportRow`` records numbered from 2, as the CSV adapter does."""

    def _factory(*records: dict[str, str], start: int = 2) -> list[ImportRow]:
        return [ImportRow(row_number=start + offset, values=values) for offset, values in enumerate(records)]

    return _factory


@pytest.fixture
def datastore_factory():
    return InMemoryDatastore
