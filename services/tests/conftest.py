"""Pytest configuration and fixtures.

API tests run against in-memory fakes of the IAM gateway and the portal
store; no database or Keycloak is needed.
"""

import uuid
from collections.abc import AsyncGenerator
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from idsync.api.app import create_application
from idsync.api.dependencies import get_iam_gateway, get_portal_repository
from idsync.config import (
    DimUserRoleConfig,
    IdentityProviderCsvSettings,
    ServiceAccountCreationSettings,
)
from idsync.db.repositories import UserRoleData
from idsync.db.session import get_db
from tests.fakes import ACTING_IAM_USER_ID, FakeIamGateway, FakePortalRepository


@pytest.fixture
def gateway() -> FakeIamGateway:
    return FakeIamGateway()


@pytest.fixture
def portal_roles() -> list[UserRoleData]:
    """Roles of two owning clients; the wallet role triggers external provisioning."""
    return [
        UserRoleData(uuid.uuid4(), "Cl1-CX-Registration", "Company Admin"),
        UserRoleData(uuid.uuid4(), "Cl1-CX-Registration", "App Manager"),
        UserRoleData(uuid.uuid4(), "technical_roles_management", "Identity Wallet Management"),
    ]


@pytest.fixture
def repository(portal_roles: list[UserRoleData]) -> FakePortalRepository:
    return FakePortalRepository(portal_roles)


@pytest.fixture
def company_id(repository: FakePortalRepository) -> uuid.UUID:
    """Company of the acting user."""
    company_id = uuid.uuid4()
    repository.add_acting_user(ACTING_IAM_USER_ID, company_id)
    return company_id


@pytest.fixture
def service_account_settings() -> ServiceAccountCreationSettings:
    return ServiceAccountCreationSettings(
        client_prefix="sa",
        dim_user_roles=[
            DimUserRoleConfig(
                client_id="technical_roles_management",
                user_role_names=["Identity Wallet Management"],
            )
        ],
    )


@pytest.fixture
def csv_settings() -> IdentityProviderCsvSettings:
    return IdentityProviderCsvSettings()


@pytest.fixture
def mock_db() -> MagicMock:
    """Session stand-in; audit entries are only staged with db.add."""
    return MagicMock()


@pytest.fixture
def app(
    gateway: FakeIamGateway,
    repository: FakePortalRepository,
    mock_db: MagicMock,
    service_account_settings: ServiceAccountCreationSettings,
    monkeypatch: pytest.MonkeyPatch,
) -> FastAPI:
    """Create FastAPI application for testing."""
    from idsync.config import settings

    monkeypatch.setattr(settings, "service_accounts", service_account_settings)
    application = create_application()

    async def override_get_db() -> AsyncGenerator[MagicMock]:
        yield mock_db

    application.dependency_overrides[get_db] = override_get_db
    application.dependency_overrides[get_iam_gateway] = lambda: gateway
    application.dependency_overrides[get_portal_repository] = lambda: repository

    return application


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Create sync test client."""
    return TestClient(app)


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
