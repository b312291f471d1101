"""Identity-provider upload Pydantic models."""

from idsync.services.identity_provider_links import ReconciliationResult

from .common import IdSyncBaseModel


class RowErrorResponse(IdSyncBaseModel):
    line: int
    message: str
    error_type: str


class UserLinkUploadResponse(IdSyncBaseModel):
    """Outcome of an identity-provider link upload."""

    total: int
    updated: int
    unchanged: int
    error: int
    errors: list[RowErrorResponse]
    cancelled: bool = False

    @classmethod
    def from_result(cls, result: ReconciliationResult) -> "UserLinkUploadResponse":
        return cls(
            total=result.total,
            updated=result.updated,
            unchanged=result.unchanged,
            error=result.error,
            errors=[
                RowErrorResponse(line=e.line, message=e.message, error_type=e.error_type)
                for e in result.errors
            ],
            cancelled=result.cancelled,
        )
