"""
Error taxonomy for roster imports.

Row-level errors are converted into ``RowFailure`` values by the runner and the
run continues. ``BatchCommitError`` and ``ImportSystemError`` stop the run.
"""

from __future__ import annotations


class RosterImportError(Exception):
    """Base class for every error raised by the roster import engine."""

    kind = "error"
    fatal = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class RowValidationError(RosterImportError):
    """A row is missing required data or carries malformed values."""

    kind = "validation"

    def __init__(self, message: str, *, fields: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.fields = fields


class ReferenceNotFoundError(RosterImportError):
    """A row references a teacher or subject that does not exist in the tenant."""

    kind = "reference_not_found"

    def __init__(self, message: str, *, reference: str, value: str) -> None:
        super().__init__(message)
        self.reference = reference
        self.value = value


class ClaimDeniedError(RosterImportError):
    """A credential exists for the address but the supplied secret does not match it."""

    kind = "credential_conflict"

    def __init__(self, address: str) -> None:
        super().__init__(
            f"Auth account for {address} already exists, and the provided password does not match. "
            "Cannot claim account."
        )
        self.address = address


class OwnedElsewhereError(RosterImportError):
    """The credential already backs a profile in another organization."""

    kind = "credential_conflict"

    def __init__(self, address: str, organization_id: int | str) -> None:
        super().__init__(
            f"User {address} already belongs to another school (ID: {organization_id}). Cannot import."
        )
        self.address = address
        self.organization_id = organization_id


class CredentialServiceError(RosterImportError):
    """The credential backend refused or failed a call for one row."""

    kind = "credential_service"


class CredentialExistsError(CredentialServiceError):
    """Raised by a credential port when the address is already registered."""

    def __init__(self, address: str) -> None:
        super().__init__(f"A credential for {address} already exists.")
        self.address = address


class CredentialRejectedError(CredentialServiceError):
    """Raised by a credential port when authentication fails."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Authentication failed for {address}.")
        self.address = address


class BatchCommitError(RosterImportError):
    """An atomic batch commit failed; the rows of that batch were not written."""

    kind = "batch_commit"
    fatal = True


class ImportSystemError(RosterImportError):
    """Unexpected failure that stops the run."""

    kind = "system"
    fatal = True


__all__ = [
    "BatchCommitError",
    "ClaimDeniedError",
    "CredentialExistsError",
    "CredentialRejectedError",
    "CredentialServiceError",
    "ImportSystemError",
    "OwnedElsewhereError",
    "ReferenceNotFoundError",
    "RosterImportError",
    "RowValidationError",
]
