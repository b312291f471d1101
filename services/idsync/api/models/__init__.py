"""Pydantic request and response models."""

from .common import IdSyncBaseModel
from .identity_providers import RowErrorResponse, UserLinkUploadResponse
from .service_accounts import (
    CreatedServiceAccountResponse,
    ServiceAccountCreateRequest,
    ServiceAccountCreateResponse,
    ServiceAccountDataResponse,
    UserRoleResponse,
)

__all__ = [
    "CreatedServiceAccountResponse",
    "IdSyncBaseModel",
    "RowErrorResponse",
    "ServiceAccountCreateRequest",
    "ServiceAccountCreateResponse",
    "ServiceAccountDataResponse",
    "UserLinkUploadResponse",
    "UserRoleResponse",
]
