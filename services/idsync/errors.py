"""Error taxonomy shared by service-account creation and link reconciliation.

Every error carries the HTTP status the API layer answers with. Row-level
errors raised while reconciling an upload are caught by the reconciler and
reported in its result instead of aborting the upload.
"""

from collections.abc import Iterable
from uuid import UUID


class IdSyncError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(IdSyncError):
    """Request content is invalid; nothing has been changed."""

    status_code = 400


class NotFoundError(IdSyncError):
    """A referenced company, user, role or identity provider does not exist."""

    status_code = 404


class ConflictError(IdSyncError):
    """Requested change contradicts state that must not be reassigned."""

    status_code = 409


class RowFormatError(IdSyncError):
    """An upload row does not match the declared header."""

    status_code = 400


class ExternalSystemError(IdSyncError):
    """The IAM gateway call failed or timed out."""

    status_code = 502


class UnauthorizedError(IdSyncError):
    """The acting identifier does not resolve to a known company user."""

    status_code = 401


class UnresolvedRolesError(ValidationError, NotFoundError):
    """One or more requested user role ids do not exist."""

    status_code = 404

    def __init__(self, missing_role_ids: Iterable[UUID]) -> None:
        self.missing_role_ids = list(missing_role_ids)
        super().__init__(
            "user role ids not found: " + ", ".join(str(i) for i in self.missing_role_ids)
        )


class InvalidHeaderError(ValidationError):
    """The upload header cannot be parsed; the whole upload is rejected."""


class ClientSetupError(ExternalSystemError):
    """A client was created in the IAM gateway but configuring it failed.

    The client is left behind and must be removed by whoever handles orphans.
    """

    def __init__(self, message: str, client_id: str, internal_client_id: str) -> None:
        super().__init__(message)
        self.client_id = client_id
        self.internal_client_id = internal_client_id
