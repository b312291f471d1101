"""Portal persistence store.

PortalRepository wraps one AsyncSession. Creation methods stage new rows in
the session (ids are assigned up front so callers can link rows before the
flush); query methods hit the database. The session owner commits.
"""

import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from idsync.logging_config import get_logger

from .enums import (
    IdentityProviderCategory,
    IdentityType,
    ProcessStepStatus,
    ProcessStepType,
    ProcessType,
    ServiceAccountKind,
    ServiceAccountType,
    UserStatus,
)
from .models import (
    Company,
    CompanyServiceAccount,
    CompanyUser,
    DimUserCreationData,
    Identity,
    IdentityAssignedRole,
    IdentityProvider,
    Process,
    ProcessStep,
    UserRole,
    client_sequence,
    generate_uuid7,
    utc_now,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class UserRoleData:
    """A resolved role: id, owning client identifier and role name."""

    user_role_id: uuid.UUID
    client_client_id: str
    user_role_text: str


@dataclass(frozen=True)
class ActingUser:
    company_id: uuid.UUID
    company_user_id: uuid.UUID


@dataclass(frozen=True)
class IdentityProviderCategoryData:
    identity_provider_id: uuid.UUID
    category: IdentityProviderCategory
    alias: str


@dataclass(frozen=True)
class CompanyUserEntityData:
    """Local view of a company user plus its IAM gateway user id."""

    company_user_id: uuid.UUID
    user_entity_id: str | None
    firstname: str | None
    lastname: str | None
    email: str | None


class PortalRepository:
    """Persistence store for identities, roles, service accounts and processes."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    # --- sequence ---

    async def next_client_sequence(self) -> int:
        """Return the next value of the client sequence (atomic nextval)."""
        result = await self._db.execute(select(client_sequence.next_value()))
        return int(result.scalar_one())

    # --- roles ---

    async def get_user_role_data(self, user_role_ids: Iterable[uuid.UUID]) -> list[UserRoleData]:
        """Resolve role ids; ids that do not exist are simply absent from the result."""
        ids = list(user_role_ids)
        if not ids:
            return []
        result = await self._db.execute(
            select(UserRole.id, UserRole.client_client_id, UserRole.user_role).where(
                UserRole.id.in_(ids)
            )
        )
        return [UserRoleData(row[0], row[1], row[2]) for row in result.all()]

    def create_identity_assigned_roles(
        self, assignments: Iterable[tuple[uuid.UUID, uuid.UUID]]
    ) -> list[IdentityAssignedRole]:
        rows = [
            IdentityAssignedRole(identity_id=identity_id, user_role_id=user_role_id)
            for identity_id, user_role_id in assignments
        ]
        self._db.add_all(rows)
        return rows

    # --- identities and service accounts ---

    def create_identity(
        self,
        company_id: uuid.UUID,
        user_status: UserStatus,
        identity_type: IdentityType,
        user_entity_id: str | None = None,
    ) -> Identity:
        identity = Identity(
            id=generate_uuid7(),
            company_id=company_id,
            user_status=user_status,
            identity_type=identity_type,
            user_entity_id=user_entity_id,
        )
        self._db.add(identity)
        return identity

    def create_company_service_account(
        self,
        identity_id: uuid.UUID,
        name: str,
        description: str,
        client_client_id: str | None,
        service_account_type: ServiceAccountType,
        service_account_kind: ServiceAccountKind,
        set_optional_parameter: Callable[[CompanyServiceAccount], None] | None = None,
    ) -> CompanyServiceAccount:
        service_account = CompanyServiceAccount(
            id=identity_id,
            name=name,
            description=description,
            client_client_id=client_client_id,
            service_account_type=service_account_type,
            service_account_kind=service_account_kind,
        )
        if set_optional_parameter is not None:
            set_optional_parameter(service_account)
        self._db.add(service_account)
        return service_account

    # --- processes ---

    def create_process(self, process_type: ProcessType) -> Process:
        process = Process(id=generate_uuid7(), process_type=process_type, version=uuid.uuid4())
        self._db.add(process)
        return process

    def create_process_step(
        self,
        process_step_type: ProcessStepType,
        process_step_status: ProcessStepStatus,
        process_id: uuid.UUID,
    ) -> ProcessStep:
        step = ProcessStep(
            id=generate_uuid7(),
            process_step_type=process_step_type,
            process_step_status=process_step_status,
            process_id=process_id,
            date_created=utc_now(),
        )
        self._db.add(step)
        return step

    def create_dim_user_creation_data(
        self, service_account_id: uuid.UUID, process_id: uuid.UUID
    ) -> DimUserCreationData:
        data = DimUserCreationData(
            id=generate_uuid7(),
            service_account_id=service_account_id,
            process_id=process_id,
        )
        self._db.add(data)
        return data

    async def flush(self) -> None:
        await self._db.flush()

    # --- companies and users ---

    async def get_own_company_and_company_user_id(self, iam_user_id: str) -> ActingUser | None:
        """Resolve the gateway user id of a caller to its company and company user."""
        result = await self._db.execute(
            select(Identity.company_id, CompanyUser.id)
            .join(CompanyUser, CompanyUser.id == Identity.id)
            .where(
                Identity.user_entity_id == iam_user_id,
                Identity.identity_type == IdentityType.COMPANY_USER,
            )
        )
        row = result.first()
        if row is None:
            return None
        return ActingUser(company_id=row[0], company_user_id=row[1])

    async def get_company_business_partner_numbers(self, company_id: uuid.UUID) -> list[str]:
        result = await self._db.execute(
            select(Company.business_partner_number).where(Company.id == company_id)
        )
        bpn = result.scalar_one_or_none()
        return [bpn] if bpn else []

    async def get_company_identity_provider_category_data(
        self, company_id: uuid.UUID
    ) -> list[IdentityProviderCategoryData]:
        result = await self._db.execute(
            select(IdentityProvider.id, IdentityProvider.category, IdentityProvider.alias)
            .where(IdentityProvider.company_id == company_id)
            .order_by(IdentityProvider.alias)
        )
        return [IdentityProviderCategoryData(row[0], row[1], row[2]) for row in result.all()]

    async def get_user_entity_data(
        self, company_user_id: uuid.UUID, company_id: uuid.UUID
    ) -> CompanyUserEntityData | None:
        """Look up a company user, but only within the given company."""
        result = await self._db.execute(
            select(
                CompanyUser.id,
                Identity.user_entity_id,
                CompanyUser.firstname,
                CompanyUser.lastname,
                CompanyUser.email,
            )
            .join(Identity, Identity.id == CompanyUser.id)
            .where(CompanyUser.id == company_user_id, Identity.company_id == company_id)
        )
        row = result.first()
        if row is None:
            return None
        return CompanyUserEntityData(*row)

    async def update_company_user_profile(
        self,
        company_user_id: uuid.UUID,
        firstname: str,
        lastname: str,
        email: str,
    ) -> None:
        await self._db.execute(
            update(CompanyUser)
            .where(CompanyUser.id == company_user_id)
            .values(firstname=firstname, lastname=lastname, email=email, updated_at=utc_now())
        )
        logger.debug("Company user profile updated", company_user_id=str(company_user_id))
