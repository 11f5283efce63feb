"""Roster reconciliation pipeline."""

from __future__ import annotations

from .batching import DEFAULT_MAX_BATCH_SIZE, BatchCommitter, BatchSignal, clamp_batch_size
from .claims import AccountClaimStateMachine, ClaimEvent, ClaimResult, ClaimState
from .context import AssignmentKey, CancellationToken, ResolvedEntity, RunContext, TenantScope, TenantSnapshot
from .errors import (
    BatchCommitError,
    ClaimDeniedError,
    CredentialExistsError,
    CredentialRejectedError,
    CredentialServiceError,
    ImportSystemError,
    OwnedElsewhereError,
    ReferenceNotFoundError,
    RosterImportError,
    RowValidationError,
)
from .identity import IdentityResolver, is_valid_email, normalize_email
from .ledger import ImportReport, OutcomeLedger, RowOutcome, RowStatus
from .payloads import UNSET, build_payload, strip_unset
from .ports import CredentialService, Datastore, WriteOperation
from .runner import ReconciliationRunner, RowFailure, run_import

__all__ = [
    "AccountClaimStateMachine",
    "AssignmentKey",
    "BatchCommitError",
    "BatchCommitter",
    "BatchSignal",
    "CancellationToken",
    "ClaimDeniedError",
    "ClaimEvent",
    "ClaimResult",
    "ClaimState",
    "CredentialExistsError",
    "CredentialRejectedError",
    "CredentialService",
    "CredentialServiceError",
    "DEFAULT_MAX_BATCH_SIZE",
    "Datastore",
    "IdentityResolver",
    "ImportReport",
    "ImportSystemError",
    "OutcomeLedger",
    "OwnedElsewhereError",
    "ReconciliationRunner",
    "ReferenceNotFoundError",
    "ResolvedEntity",
    "RosterImportError",
    "RowFailure",
    "RowOutcome",
    "RowStatus",
    "RowValidationError",
    "RunContext",
    "TenantScope",
    "TenantSnapshot",
    "UNSET",
    "WriteOperation",
    "build_payload",
    "clamp_batch_size",
    "is_valid_email",
    "normalize_email",
    "run_import",
    "strip_unset",
]
