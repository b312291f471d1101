"""Service-account creation.

Creates the service account in the IAM gateway first, then records it in the
portal database. Requested roles are validated before anything is created.
When assigned roles include roles configured as externally provisioned, a
second, PENDING service account of kind EXTERNAL is recorded and linked to a
process that a separate worker drives to completion.

There is no transaction spanning the gateway and the database. A failure
after the gateway client was created leaves that client orphaned, whether it
happens while the gateway grants the client its roles or later while
recording it; the orphan is reported to the OrphanedClientHook and the error
is re-raised.
"""

import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from idsync.config import ServiceAccountCreationSettings
from idsync.db.enums import (
    INITIAL_SA_CREATION_STEP,
    IamClientAuthMethod,
    IdentityType,
    ProcessStepStatus,
    ProcessStepType,
    ProcessType,
    ServiceAccountKind,
    ServiceAccountType,
    UserStatus,
)
from idsync.db.models import CompanyServiceAccount
from idsync.db.repositories import PortalRepository, UserRoleData
from idsync.errors import ClientSetupError, UnresolvedRolesError, ValidationError
from idsync.iam.gateway import ClientConfigRolesData, IamGateway, ServiceAccountData
from idsync.logging_config import get_logger

from .client_sequence import ClientIdAllocator

logger = get_logger(__name__)

EXTERNAL_ACCOUNT_NAME_PREFIX = "dim-"


@dataclass(frozen=True)
class ServiceAccountCreationInfo:
    name: str
    description: str
    auth_method: IamClientAuthMethod
    user_role_ids: Sequence[uuid.UUID]


@dataclass(frozen=True)
class ServiceAccountCreationProcessData:
    """Process to attach external provisioning to.

    Without process_id a new process of process_type is created.
    """

    process_type: ProcessType | None
    process_id: uuid.UUID | None = None


@dataclass(frozen=True)
class CreatedServiceAccountData:
    service_account_id: uuid.UUID
    name: str
    description: str
    status: UserStatus
    client_id: str | None
    service_account_data: ServiceAccountData | None
    user_role_data: list[UserRoleData] = field(default_factory=list)


class OrphanedClientHook(Protocol):
    """Receives gateway clients whose local recording failed."""

    async def client_orphaned(
        self, client_id: str, internal_client_id: str, error: Exception
    ) -> None: ...


class LoggingOrphanedClientHook:
    """Default hook: make the orphan visible for the cleanup job."""

    async def client_orphaned(
        self, client_id: str, internal_client_id: str, error: Exception
    ) -> None:
        logger.error(
            "IAM client orphaned after failed service account creation",
            client_id=client_id,
            internal_client_id=internal_client_id,
            error=str(error),
        )


def build_external_role_table(
    settings: ServiceAccountCreationSettings,
) -> dict[str, frozenset[str]]:
    """Owning client id -> role names that trigger external provisioning."""
    table: dict[str, set[str]] = {}
    for entry in settings.dim_user_roles:
        table.setdefault(entry.client_id, set()).update(entry.user_role_names)
    return {client_id: frozenset(names) for client_id, names in table.items()}


def select_external_roles(
    roles: Iterable[UserRoleData], external_role_table: Mapping[str, frozenset[str]]
) -> list[UserRoleData]:
    """Roles whose (owning client, name) pair is configured as externally provisioned."""
    return [
        role
        for role in roles
        if role.user_role_text in external_role_table.get(role.client_client_id, frozenset())
    ]


def initial_process_step_type(process_type: ProcessType) -> ProcessStepType:
    """First step of a process created for external service-account provisioning."""
    try:
        return INITIAL_SA_CREATION_STEP[process_type]
    except KeyError:
        raise ValidationError(
            f"process type {process_type} is not supported for service account creation"
        ) from None


def group_roles_by_client(roles: Iterable[UserRoleData]) -> dict[str, list[str]]:
    grouped: dict[str, list[str]] = {}
    for role in roles:
        grouped.setdefault(role.client_client_id, []).append(role.user_role_text)
    return grouped


class ServiceAccountCreation:
    """Creates service accounts in the IAM gateway and the portal database."""

    def __init__(
        self,
        gateway: IamGateway,
        repository: PortalRepository,
        settings: ServiceAccountCreationSettings,
        orphaned_client_hook: OrphanedClientHook | None = None,
    ) -> None:
        self._gateway = gateway
        self._repository = repository
        self._settings = settings
        self._external_role_table = build_external_role_table(settings)
        self._client_ids = ClientIdAllocator(repository, settings.client_prefix)
        self._orphaned_client_hook = orphaned_client_hook or LoggingOrphanedClientHook()

    async def create_service_account(
        self,
        creation_info: ServiceAccountCreationInfo,
        company_id: uuid.UUID,
        bpns: Sequence[str],
        service_account_type: ServiceAccountType,
        enhance_technical_user_name: bool,
        enabled: bool,
        process_data: ServiceAccountCreationProcessData | None = None,
        set_optional_parameter: Callable[[CompanyServiceAccount], None] | None = None,
    ) -> tuple[bool, list[CreatedServiceAccountData]]:
        """Create a service account; returns (has_external_account, created accounts).

        The primary (ACTIVE, INTERNAL) account comes first, followed by the
        PENDING external account when one was created.
        """
        user_role_data = await self._get_and_validate_user_role_data(creation_info.user_role_ids)
        external_roles = select_external_roles(user_role_data, self._external_role_table)
        initial_step: ProcessStepType | None = None
        if (
            external_roles
            and process_data is not None
            and process_data.process_type is not None
            and process_data.process_id is None
        ):
            initial_step = initial_process_step_type(process_data.process_type)

        client_id = await self._client_ids.allocate()
        enhanced_name = (
            f"{client_id}-{creation_info.name}"
            if enhance_technical_user_name
            else creation_info.name
        )

        service_account_data: ServiceAccountData | None = None
        try:
            service_account_data = await self._gateway.setup_service_account_client(
                client_id,
                ClientConfigRolesData(
                    name=enhanced_name,
                    description=creation_info.description,
                    auth_method=creation_info.auth_method,
                    client_roles=group_roles_by_client(user_role_data),
                ),
                enabled,
            )
            if bpns:
                await self._gateway.add_bpn_attribute_to_user(
                    service_account_data.iam_user_id, bpns
                )
                await self._gateway.add_protocol_mapper(service_account_data.internal_client_id)

            created: list[CreatedServiceAccountData] = []
            service_account_id = self._create_database_service_account(
                company_id,
                UserStatus.ACTIVE,
                service_account_type,
                ServiceAccountKind.INTERNAL,
                creation_info.name,
                client_id,
                creation_info.description,
                user_role_data,
                set_optional_parameter,
            )
            created.append(
                CreatedServiceAccountData(
                    service_account_id=service_account_id,
                    name=enhanced_name,
                    description=creation_info.description,
                    status=UserStatus.ACTIVE,
                    client_id=client_id,
                    service_account_data=service_account_data,
                    user_role_data=list(user_role_data),
                )
            )

            if external_roles:
                created.append(
                    self._create_external_service_account(
                        company_id,
                        service_account_id,
                        service_account_type,
                        creation_info,
                        external_roles,
                        process_data,
                        initial_step,
                        set_optional_parameter,
                    )
                )

            await self._repository.flush()
        except ClientSetupError as e:
            await self._orphaned_client_hook.client_orphaned(client_id, e.internal_client_id, e)
            raise
        except Exception as e:
            if service_account_data is not None:
                await self._orphaned_client_hook.client_orphaned(
                    client_id, service_account_data.internal_client_id, e
                )
            raise

        logger.info(
            "Service account created",
            client_id=client_id,
            company_id=str(company_id),
            roles=len(user_role_data),
            has_external_account=bool(external_roles),
        )
        return bool(external_roles), created

    async def _get_and_validate_user_role_data(
        self, user_role_ids: Sequence[uuid.UUID]
    ) -> list[UserRoleData]:
        requested = list(dict.fromkeys(user_role_ids))
        user_role_data = await self._repository.get_user_role_data(requested)
        if len(user_role_data) != len(requested):
            found = {role.user_role_id for role in user_role_data}
            missing = [role_id for role_id in requested if role_id not in found]
            if missing:
                raise UnresolvedRolesError(missing)
        return user_role_data

    def _create_external_service_account(
        self,
        company_id: uuid.UUID,
        service_account_id: uuid.UUID,
        service_account_type: ServiceAccountType,
        creation_info: ServiceAccountCreationInfo,
        external_roles: list[UserRoleData],
        process_data: ServiceAccountCreationProcessData | None,
        initial_step: ProcessStepType | None,
        set_optional_parameter: Callable[[CompanyServiceAccount], None] | None,
    ) -> CreatedServiceAccountData:
        name = f"{EXTERNAL_ACCOUNT_NAME_PREFIX}{creation_info.name}"
        external_id = self._create_database_service_account(
            company_id,
            UserStatus.PENDING,
            service_account_type,
            ServiceAccountKind.EXTERNAL,
            name,
            None,
            creation_info.description,
            external_roles,
            set_optional_parameter,
        )

        if process_data is not None and process_data.process_type is not None:
            if process_data.process_id is None:
                process = self._repository.create_process(process_data.process_type)
                self._repository.create_process_step(
                    initial_step,
                    ProcessStepStatus.TODO,
                    process.id,
                )
                process_id = process.id
            else:
                process_id = process_data.process_id
            self._repository.create_dim_user_creation_data(service_account_id, process_id)

        return CreatedServiceAccountData(
            service_account_id=external_id,
            name=name,
            description=creation_info.description,
            status=UserStatus.PENDING,
            client_id=None,
            service_account_data=None,
            user_role_data=list(external_roles),
        )

    def _create_database_service_account(
        self,
        company_id: uuid.UUID,
        user_status: UserStatus,
        service_account_type: ServiceAccountType,
        service_account_kind: ServiceAccountKind,
        name: str,
        client_id: str | None,
        description: str,
        user_role_data: Iterable[UserRoleData],
        set_optional_parameter: Callable[[CompanyServiceAccount], None] | None,
    ) -> uuid.UUID:
        identity = self._repository.create_identity(
            company_id, user_status, IdentityType.COMPANY_SERVICE_ACCOUNT
        )
        service_account = self._repository.create_company_service_account(
            identity.id,
            name,
            description,
            client_id,
            service_account_type,
            service_account_kind,
            set_optional_parameter,
        )
        self._repository.create_identity_assigned_roles(
            (identity.id, role.user_role_id) for role in user_role_data
        )
        return service_account.id
