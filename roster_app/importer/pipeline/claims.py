"""
Credential claim resolution for rows that carry login details.

A row either updates a profile already in the tenant, creates a new login, or
authenticates against an existing login and then adopts it (orphan), updates
it (owned here) or fails (owned elsewhere / secret mismatch). The allowed moves
live in ``TRANSITIONS``; anything else is a programming error.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from roster_app.importer.metrics import record_claim_state

from .context import ResolvedEntity, RunContext
from .errors import (
    ClaimDeniedError,
    CredentialExistsError,
    CredentialRejectedError,
    ImportSystemError,
    OwnedElsewhereError,
)
from .ports import COLLECTION_USERS, CredentialService, Datastore

logger = logging.getLogger(__name__)


class ClaimState(str, enum.Enum):
    NO_ACCOUNT = "no_account"
    ACCOUNT_OWNED_HERE = "account_owned_here"
    ACCOUNT_ORPHANED = "account_orphaned"
    ACCOUNT_OWNED_ELSEWHERE = "account_owned_elsewhere"
    CLAIM_DENIED = "claim_denied"
    CREATED = "created"


class ClaimEvent(str, enum.Enum):
    PROFILE_IN_TENANT = "profile_in_tenant"
    CREDENTIAL_CREATED = "credential_created"
    AUTHENTICATED_ORPHAN = "authenticated_orphan"
    AUTHENTICATED_OWNED_HERE = "authenticated_owned_here"
    AUTHENTICATED_OWNED_ELSEWHERE = "authenticated_owned_elsewhere"
    AUTHENTICATION_REJECTED = "authentication_rejected"


TRANSITIONS: Mapping[tuple[ClaimState, ClaimEvent], ClaimState] = MappingProxyType(
    {
        (ClaimState.NO_ACCOUNT, ClaimEvent.PROFILE_IN_TENANT): ClaimState.ACCOUNT_OWNED_HERE,
        (ClaimState.NO_ACCOUNT, ClaimEvent.CREDENTIAL_CREATED): ClaimState.CREATED,
        (ClaimState.NO_ACCOUNT, ClaimEvent.AUTHENTICATED_ORPHAN): ClaimState.ACCOUNT_ORPHANED,
        (ClaimState.NO_ACCOUNT, ClaimEvent.AUTHENTICATED_OWNED_HERE): ClaimState.ACCOUNT_OWNED_HERE,
        (ClaimState.NO_ACCOUNT, ClaimEvent.AUTHENTICATED_OWNED_ELSEWHERE): ClaimState.ACCOUNT_OWNED_ELSEWHERE,
        (ClaimState.NO_ACCOUNT, ClaimEvent.AUTHENTICATION_REJECTED): ClaimState.CLAIM_DENIED,
    }
)

TERMINAL_STATES = frozenset(
    {
        ClaimState.ACCOUNT_OWNED_HERE,
        ClaimState.ACCOUNT_ORPHANED,
        ClaimState.ACCOUNT_OWNED_ELSEWHERE,
        ClaimState.CLAIM_DENIED,
        ClaimState.CREATED,
    }
)


@dataclass(frozen=True)
class ClaimResult:
    """Where the row's profile write should go after a successful claim."""

    state: ClaimState
    profile_id: str
    is_update: bool

    def as_entity(self) -> ResolvedEntity:
        return ResolvedEntity(id=self.profile_id, is_update=self.is_update)


@dataclass
class AccountClaimStateMachine:
    """Drives one row's claim from ``no_account`` to a terminal state."""

    address: str
    secret: str
    credentials: CredentialService
    datastore: Datastore
    context: RunContext
    state: ClaimState = ClaimState.NO_ACCOUNT
    history: list[ClaimEvent] = field(default_factory=list)

    def fire(self, event: ClaimEvent) -> ClaimState:
        try:
            target = TRANSITIONS[(self.state, event)]
        except KeyError:
            raise ImportSystemError(
                f"Illegal claim transition from '{self.state.value}' on '{event.value}' for {self.address}."
            ) from None
        self.history.append(event)
        self.state = target
        if target in TERMINAL_STATES:
            record_claim_state(target.value)
        return target

    def run(self, existing: ResolvedEntity | None = None) -> ClaimResult:
        """
        Resolve the credential for this row.

        ``existing`` is the in-tenant profile the identity resolver matched, if
        any; such rows never call the credential service.
        """

        if existing is not None:
            self.fire(ClaimEvent.PROFILE_IN_TENANT)
            return ClaimResult(state=self.state, profile_id=existing.id, is_update=True)

        try:
            uid = self.credentials.create_credential(self.address, self.secret)
        except CredentialExistsError:
            logger.info("Credential for %s already exists; attempting to claim it", self.address)
        else:
            self.fire(ClaimEvent.CREDENTIAL_CREATED)
            return ClaimResult(state=self.state, profile_id=uid, is_update=False)

        try:
            uid = self.credentials.authenticate(self.address, self.secret)
        except CredentialRejectedError:
            self.fire(ClaimEvent.AUTHENTICATION_REJECTED)
            raise ClaimDeniedError(self.address) from None

        owner = self._owning_organization(uid)
        if owner is None:
            self.fire(ClaimEvent.AUTHENTICATED_ORPHAN)
            logger.info("Adopting orphaned credential %s for %s", uid, self.address)
            return ClaimResult(state=self.state, profile_id=uid, is_update=False)
        if owner == self.context.tenant.organization_id:
            self.fire(ClaimEvent.AUTHENTICATED_OWNED_HERE)
            return ClaimResult(state=self.state, profile_id=uid, is_update=True)

        self.fire(ClaimEvent.AUTHENTICATED_OWNED_ELSEWHERE)
        raise OwnedElsewhereError(self.address, owner)

    def _owning_organization(self, uid: str) -> Any:
        if uid in self.context.index.profile_ids:
            return self.context.tenant.organization_id
        profile = self.datastore.get(COLLECTION_USERS, uid)
        if profile is None:
            return None
        return profile.get("organization_id")


__all__ = [
    "AccountClaimStateMachine",
    "ClaimEvent",
    "ClaimResult",
    "ClaimState",
    "TERMINAL_STATES",
    "TRANSITIONS",
]
