"""Tests for service-account creation."""

import uuid
from unittest.mock import AsyncMock

import pytest

from idsync.config import ServiceAccountCreationSettings
from idsync.db.enums import (
    IamClientAuthMethod,
    IdentityType,
    ProcessStepStatus,
    ProcessStepType,
    ProcessType,
    ServiceAccountKind,
    ServiceAccountType,
    UserStatus,
)
from idsync.db.repositories import UserRoleData
from idsync.errors import (
    ClientSetupError,
    ExternalSystemError,
    NotFoundError,
    UnresolvedRolesError,
    ValidationError,
)
from idsync.services.service_account_creation import (
    ServiceAccountCreation,
    ServiceAccountCreationInfo,
    ServiceAccountCreationProcessData,
    build_external_role_table,
    group_roles_by_client,
    initial_process_step_type,
    select_external_roles,
)
from tests.fakes import FakeIamGateway, FakePortalRepository


def _info(
    roles: list[UserRoleData], name: str = "testName", **kwargs
) -> ServiceAccountCreationInfo:
    return ServiceAccountCreationInfo(
        name=name,
        description=kwargs.get("description", "abc"),
        auth_method=kwargs.get("auth_method", IamClientAuthMethod.SECRET),
        user_role_ids=[role.user_role_id for role in roles],
    )


@pytest.fixture
def creation(
    gateway: FakeIamGateway,
    repository: FakePortalRepository,
    service_account_settings: ServiceAccountCreationSettings,
) -> ServiceAccountCreation:
    return ServiceAccountCreation(gateway, repository, service_account_settings)


class TestRoleValidation:
    """Role validation happens before any mutation."""

    @pytest.mark.asyncio
    async def test_unresolved_roles_fail_without_mutation(
        self, creation, gateway, repository, portal_roles
    ):
        missing = [uuid.uuid4(), uuid.uuid4()]
        info = ServiceAccountCreationInfo(
            name="testName",
            description="abc",
            auth_method=IamClientAuthMethod.SECRET,
            user_role_ids=[portal_roles[0].user_role_id, *missing],
        )

        with pytest.raises(UnresolvedRolesError) as exc_info:
            await creation.create_service_account(
                info, uuid.uuid4(), [], ServiceAccountType.OWN, False, True
            )

        assert exc_info.value.missing_role_ids == missing
        assert all(str(m) in exc_info.value.message for m in missing)
        assert gateway.calls == []
        assert repository.staged == []
        assert repository.flush_count == 0

    @pytest.mark.asyncio
    async def test_unresolved_roles_error_is_not_found_and_validation(self, creation):
        with pytest.raises(NotFoundError):
            await creation.create_service_account(
                ServiceAccountCreationInfo("n", "d", IamClientAuthMethod.SECRET, [uuid.uuid4()]),
                uuid.uuid4(),
                [],
                ServiceAccountType.OWN,
                False,
                True,
            )

        assert issubclass(UnresolvedRolesError, ValidationError)

    @pytest.mark.asyncio
    async def test_duplicate_role_ids_resolve_once(self, creation, repository, portal_roles):
        role = portal_roles[0]
        info = ServiceAccountCreationInfo(
            "testName", "abc", IamClientAuthMethod.SECRET, [role.user_role_id, role.user_role_id]
        )

        _, created = await creation.create_service_account(
            info, uuid.uuid4(), [], ServiceAccountType.OWN, False, True
        )

        assert [r.user_role_id for r in created[0].user_role_data] == [role.user_role_id]
        assert len(repository.assigned_roles) == 1

    @pytest.mark.asyncio
    async def test_unsupported_process_type_fails_before_mutation(
        self, creation, gateway, repository, portal_roles
    ):
        with pytest.raises(ValidationError):
            await creation.create_service_account(
                _info(portal_roles),
                uuid.uuid4(),
                [],
                ServiceAccountType.OWN,
                False,
                True,
                ServiceAccountCreationProcessData(ProcessType.APPLICATION_CHECKLIST),
            )

        assert gateway.calls == []
        assert repository.staged == []


class TestCreateServiceAccount:
    """Primary account creation."""

    @pytest.mark.asyncio
    async def test_creates_primary_account(self, creation, gateway, repository, portal_roles):
        company_id = uuid.uuid4()
        roles = portal_roles[:2]

        has_external, created = await creation.create_service_account(
            _info(roles), company_id, [], ServiceAccountType.OWN, False, True
        )

        assert has_external is False
        assert len(created) == 1
        account = created[0]
        assert account.client_id == "sa1"
        assert account.name == "testName"
        assert account.status == UserStatus.ACTIVE
        assert account.service_account_data.secret == "s3cr3t"
        assert account.user_role_data == roles

        (identity,) = repository.identities
        assert identity.company_id == company_id
        assert identity.user_status == UserStatus.ACTIVE
        assert identity.identity_type == IdentityType.COMPANY_SERVICE_ACCOUNT

        (record,) = repository.service_accounts
        assert record.id == identity.id == account.service_account_id
        assert record.client_client_id == "sa1"
        assert record.service_account_kind == ServiceAccountKind.INTERNAL
        assert record.service_account_type == ServiceAccountType.OWN
        assert {r.user_role_id for r in repository.assigned_roles} == {
            r.user_role_id for r in roles
        }
        assert repository.flush_count == 1

    @pytest.mark.asyncio
    async def test_client_ids_use_prefix_and_sequence(self, creation, portal_roles):
        first = await creation.create_service_account(
            _info(portal_roles[:1]), uuid.uuid4(), [], ServiceAccountType.OWN, False, True
        )
        second = await creation.create_service_account(
            _info(portal_roles[:1]), uuid.uuid4(), [], ServiceAccountType.OWN, False, True
        )

        assert first[1][0].client_id == "sa1"
        assert second[1][0].client_id == "sa2"

    @pytest.mark.asyncio
    async def test_enhanced_name_is_prefixed_with_client_id(self, creation, gateway, portal_roles):
        _, created = await creation.create_service_account(
            _info(portal_roles[:1]), uuid.uuid4(), [], ServiceAccountType.MANAGED, True, False
        )

        assert created[0].name == "sa1-testName"
        (call,) = gateway.calls_to("setup_service_account_client")
        _, client_id, config, enabled = call
        assert client_id == "sa1"
        assert config.name == "sa1-testName"
        assert enabled is False

    @pytest.mark.asyncio
    async def test_roles_are_grouped_by_owning_client(self, creation, gateway, portal_roles):
        await creation.create_service_account(
            _info(portal_roles), uuid.uuid4(), [], ServiceAccountType.OWN, False, True
        )

        (call,) = gateway.calls_to("setup_service_account_client")
        assert dict(call[2].client_roles) == {
            "Cl1-CX-Registration": ["Company Admin", "App Manager"],
            "technical_roles_management": ["Identity Wallet Management"],
        }

    @pytest.mark.asyncio
    async def test_bpns_add_attribute_and_protocol_mapper(self, creation, gateway, portal_roles):
        await creation.create_service_account(
            _info(portal_roles[:1]),
            uuid.uuid4(),
            ["BPNL00000003CRHK"],
            ServiceAccountType.OWN,
            False,
            True,
        )

        assert gateway.calls_to("add_bpn_attribute_to_user") == [
            ("add_bpn_attribute_to_user", "sa-user-sa1", ["BPNL00000003CRHK"])
        ]
        assert gateway.calls_to("add_protocol_mapper") == [
            ("add_protocol_mapper", "internal-sa1")
        ]

    @pytest.mark.asyncio
    async def test_no_bpns_skip_attribute_and_mapper(self, creation, gateway, portal_roles):
        await creation.create_service_account(
            _info(portal_roles[:1]), uuid.uuid4(), [], ServiceAccountType.OWN, False, True
        )

        assert gateway.calls_to("add_bpn_attribute_to_user") == []
        assert gateway.calls_to("add_protocol_mapper") == []

    @pytest.mark.asyncio
    async def test_jwt_auth_has_no_secret(self, creation, portal_roles):
        _, created = await creation.create_service_account(
            _info(portal_roles[:1], auth_method=IamClientAuthMethod.JWT),
            uuid.uuid4(),
            [],
            ServiceAccountType.OWN,
            False,
            True,
        )

        assert created[0].service_account_data.secret is None

    @pytest.mark.asyncio
    async def test_optional_parameter_is_applied_to_records(
        self, creation, repository, portal_roles
    ):
        subscription_id = uuid.uuid4()

        def set_subscription(service_account):
            service_account.offer_subscription_id = subscription_id

        await creation.create_service_account(
            _info(portal_roles),
            uuid.uuid4(),
            [],
            ServiceAccountType.MANAGED,
            True,
            True,
            ServiceAccountCreationProcessData(ProcessType.OFFER_SUBSCRIPTION),
            set_subscription,
        )

        assert len(repository.service_accounts) == 2
        assert all(
            sa.offer_subscription_id == subscription_id for sa in repository.service_accounts
        )


class TestExternalServiceAccount:
    """Secondary PENDING account for externally provisioned roles."""

    @pytest.mark.asyncio
    async def test_external_account_created_for_trigger_roles(
        self, creation, repository, portal_roles
    ):
        has_external, created = await creation.create_service_account(
            _info(portal_roles),
            uuid.uuid4(),
            [],
            ServiceAccountType.OWN,
            False,
            True,
            ServiceAccountCreationProcessData(ProcessType.DIM_TECHNICAL_USER),
        )

        assert has_external is True
        assert len(created) == 2
        primary, external = created
        assert primary.status == UserStatus.ACTIVE
        assert external.name == "dim-testName"
        assert external.status == UserStatus.PENDING
        assert external.client_id is None
        assert external.service_account_data is None
        assert external.user_role_data == [portal_roles[2]]

        external_record = repository.service_accounts[1]
        assert external_record.service_account_kind == ServiceAccountKind.EXTERNAL
        assert external_record.client_client_id is None
        assert repository.identities[1].user_status == UserStatus.PENDING

    @pytest.mark.asyncio
    async def test_new_process_and_todo_step(self, creation, repository, portal_roles):
        _, created = await creation.create_service_account(
            _info(portal_roles),
            uuid.uuid4(),
            [],
            ServiceAccountType.OWN,
            False,
            True,
            ServiceAccountCreationProcessData(ProcessType.DIM_TECHNICAL_USER),
        )

        (process,) = repository.processes
        (step,) = repository.process_steps
        (link,) = repository.dim_user_creation_data
        assert process.process_type == ProcessType.DIM_TECHNICAL_USER
        assert step.process_id == process.id
        assert step.process_step_type == ProcessStepType.CREATE_DIM_TECHNICAL_USER
        assert step.process_step_status == ProcessStepStatus.TODO
        assert link.process_id == process.id
        assert link.service_account_id == created[0].service_account_id

    @pytest.mark.asyncio
    async def test_existing_process_is_reused(self, creation, repository, portal_roles):
        process_id = uuid.uuid4()

        _, created = await creation.create_service_account(
            _info(portal_roles),
            uuid.uuid4(),
            [],
            ServiceAccountType.MANAGED,
            True,
            True,
            ServiceAccountCreationProcessData(ProcessType.OFFER_SUBSCRIPTION, process_id),
        )

        assert repository.processes == []
        assert repository.process_steps == []
        (link,) = repository.dim_user_creation_data
        assert link.process_id == process_id
        assert link.service_account_id == created[0].service_account_id

    @pytest.mark.asyncio
    async def test_no_trigger_roles_no_external_account(self, creation, repository, portal_roles):
        has_external, created = await creation.create_service_account(
            _info(portal_roles[:2]),
            uuid.uuid4(),
            [],
            ServiceAccountType.OWN,
            False,
            True,
            ServiceAccountCreationProcessData(ProcessType.DIM_TECHNICAL_USER),
        )

        assert has_external is False
        assert len(created) == 1
        assert repository.processes == []
        assert repository.dim_user_creation_data == []

    @pytest.mark.asyncio
    async def test_external_account_without_process_data(self, creation, repository, portal_roles):
        has_external, created = await creation.create_service_account(
            _info(portal_roles), uuid.uuid4(), [], ServiceAccountType.OWN, False, True
        )

        assert has_external is True
        assert len(created) == 2
        assert repository.processes == []
        assert repository.dim_user_creation_data == []


class TestGatewayFailures:
    """No rollback; the orphan hook sees clients whose recording failed."""

    @pytest.mark.asyncio
    async def test_setup_failure_propagates_without_hook(self, gateway, repository, portal_roles):
        hook = AsyncMock()
        creation = ServiceAccountCreation(
            gateway, repository, ServiceAccountCreationSettings(), orphaned_client_hook=hook
        )
        gateway.fail_on["setup_service_account_client"] = ExternalSystemError("boom")

        with pytest.raises(ExternalSystemError):
            await creation.create_service_account(
                _info(portal_roles[:1]), uuid.uuid4(), [], ServiceAccountType.OWN, False, True
            )

        hook.client_orphaned.assert_not_awaited()
        assert repository.staged == []

    @pytest.mark.asyncio
    async def test_role_grant_failure_reports_orphan(self, gateway, repository, portal_roles):
        hook = AsyncMock()
        creation = ServiceAccountCreation(
            gateway, repository, ServiceAccountCreationSettings(), orphaned_client_hook=hook
        )
        error = ClientSetupError(
            "client sa1 was created but could not be configured",
            client_id="sa1",
            internal_client_id="kc-sa1",
        )
        gateway.fail_on["setup_service_account_client"] = error

        with pytest.raises(ClientSetupError):
            await creation.create_service_account(
                _info(portal_roles[:1]), uuid.uuid4(), [], ServiceAccountType.OWN, False, True
            )

        hook.client_orphaned.assert_awaited_once_with("sa1", "kc-sa1", error)
        assert repository.staged == []

    @pytest.mark.asyncio
    async def test_mapper_failure_reports_orphan(self, gateway, repository, portal_roles):
        hook = AsyncMock()
        creation = ServiceAccountCreation(
            gateway, repository, ServiceAccountCreationSettings(), orphaned_client_hook=hook
        )
        error = ExternalSystemError("mapper failed")
        gateway.fail_on["add_protocol_mapper"] = error

        with pytest.raises(ExternalSystemError):
            await creation.create_service_account(
                _info(portal_roles[:1]),
                uuid.uuid4(),
                ["BPNL1"],
                ServiceAccountType.OWN,
                False,
                True,
            )

        hook.client_orphaned.assert_awaited_once_with("sa1", "internal-sa1", error)
        assert gateway.calls_to("delete_client") == []
        assert repository.staged == []

    @pytest.mark.asyncio
    async def test_persistence_failure_reports_orphan(self, gateway, repository, portal_roles):
        hook = AsyncMock()
        creation = ServiceAccountCreation(
            gateway, repository, ServiceAccountCreationSettings(), orphaned_client_hook=hook
        )
        repository.flush = AsyncMock(side_effect=RuntimeError("db down"))

        with pytest.raises(RuntimeError):
            await creation.create_service_account(
                _info(portal_roles[:1]), uuid.uuid4(), [], ServiceAccountType.OWN, False, True
            )

        hook.client_orphaned.assert_awaited_once()


class TestPureHelpers:
    def test_build_external_role_table_merges_entries(self):
        from idsync.config import DimUserRoleConfig

        table = build_external_role_table(
            ServiceAccountCreationSettings(
                dim_user_roles=[
                    DimUserRoleConfig(client_id="c1", user_role_names=["a"]),
                    DimUserRoleConfig(client_id="c1", user_role_names=["b"]),
                    DimUserRoleConfig(client_id="c2", user_role_names=["a"]),
                ]
            )
        )
        assert table == {"c1": frozenset({"a", "b"}), "c2": frozenset({"a"})}

    def test_select_external_roles_requires_client_and_name_match(self):
        roles = [
            UserRoleData(uuid.uuid4(), "c1", "a"),
            UserRoleData(uuid.uuid4(), "c2", "b"),
            UserRoleData(uuid.uuid4(), "c3", "a"),
        ]
        table = {"c1": frozenset({"a"}), "c2": frozenset({"a"})}
        assert select_external_roles(roles, table) == [roles[0]]

    def test_group_roles_by_client_keeps_order(self):
        roles = [
            UserRoleData(uuid.uuid4(), "c1", "a"),
            UserRoleData(uuid.uuid4(), "c2", "b"),
            UserRoleData(uuid.uuid4(), "c1", "c"),
        ]
        assert group_roles_by_client(roles) == {"c1": ["a", "c"], "c2": ["b"]}

    def test_initial_process_step_type(self):
        assert (
            initial_process_step_type(ProcessType.OFFER_SUBSCRIPTION)
            == ProcessStepType.OFFER_SUBSCRIPTION_CREATE_DIM_TECHNICAL_USER
        )
        assert (
            initial_process_step_type(ProcessType.DIM_TECHNICAL_USER)
            == ProcessStepType.CREATE_DIM_TECHNICAL_USER
        )
        with pytest.raises(ValidationError):
            initial_process_step_type(ProcessType.APPLICATION_CHECKLIST)
