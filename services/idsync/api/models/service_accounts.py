"""Service-account Pydantic models."""

from uuid import UUID

from pydantic import Field

from idsync.db.enums import IamClientAuthMethod, UserStatus
from idsync.services.service_account_creation import CreatedServiceAccountData

from .common import IdSyncBaseModel


class ServiceAccountCreateRequest(IdSyncBaseModel):
    """Model for creating a service account of the caller's company."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(default="", max_length=255)
    auth_method: IamClientAuthMethod = IamClientAuthMethod.SECRET
    user_role_ids: list[UUID] = Field(default_factory=list)


class UserRoleResponse(IdSyncBaseModel):
    user_role_id: UUID
    client_id: str
    user_role: str


class ServiceAccountDataResponse(IdSyncBaseModel):
    """Gateway-side data of a created client."""

    internal_client_id: str
    iam_user_id: str
    auth_method: IamClientAuthMethod
    secret: str | None = None


class CreatedServiceAccountResponse(IdSyncBaseModel):
    service_account_id: UUID
    name: str
    description: str
    status: UserStatus
    client_id: str | None
    service_account_data: ServiceAccountDataResponse | None
    user_roles: list[UserRoleResponse]

    @classmethod
    def from_data(cls, data: CreatedServiceAccountData) -> "CreatedServiceAccountResponse":
        sa_data = data.service_account_data
        return cls(
            service_account_id=data.service_account_id,
            name=data.name,
            description=data.description,
            status=data.status,
            client_id=data.client_id,
            service_account_data=(
                ServiceAccountDataResponse(
                    internal_client_id=sa_data.internal_client_id,
                    iam_user_id=sa_data.iam_user_id,
                    auth_method=sa_data.auth_method,
                    secret=sa_data.secret,
                )
                if sa_data is not None
                else None
            ),
            user_roles=[
                UserRoleResponse(
                    user_role_id=role.user_role_id,
                    client_id=role.client_client_id,
                    user_role=role.user_role_text,
                )
                for role in data.user_role_data
            ],
        )


class ServiceAccountCreateResponse(IdSyncBaseModel):
    has_external_account: bool
    service_accounts: list[CreatedServiceAccountResponse]
