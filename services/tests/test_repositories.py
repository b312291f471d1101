"""Tests for the portal repository's queries against a mocked session."""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from idsync.db.enums import ProcessStepStatus, ProcessStepType, ProcessType
from idsync.db.models import Process, ProcessStep
from idsync.db.repositories import CompanyUserEntityData, PortalRepository


def _sql(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


def _params(statement) -> dict:
    return statement.compile(dialect=postgresql.dialect()).params


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.add = MagicMock()
    return db


@pytest.fixture
def repository(mock_db) -> PortalRepository:
    return PortalRepository(mock_db)


class TestClientSequence:
    """Client ids come from the database sequence, never from process state."""

    @pytest.mark.asyncio
    async def test_next_value_uses_nextval(self, repository, mock_db):
        result = MagicMock()
        result.scalar_one.return_value = 7
        mock_db.execute = AsyncMock(return_value=result)

        assert await repository.next_client_sequence() == 7

        statement = mock_db.execute.await_args.args[0]
        assert "nextval('client_sequence')" in _sql(statement)

    @pytest.mark.asyncio
    async def test_every_call_hits_the_database(self, repository, mock_db):
        first, second = MagicMock(), MagicMock()
        first.scalar_one.return_value = 41
        second.scalar_one.return_value = 42
        mock_db.execute = AsyncMock(side_effect=[first, second])

        assert [await repository.next_client_sequence() for _ in range(2)] == [41, 42]
        assert mock_db.execute.await_count == 2


class TestUserEntityData:
    """Company users are only visible within their own company."""

    @pytest.mark.asyncio
    async def test_query_is_scoped_to_company(self, repository, mock_db):
        company_user_id = uuid.uuid4()
        company_id = uuid.uuid4()
        result = MagicMock()
        result.first.return_value = (company_user_id, "kc-1", "Jane", "Doe", "j@x.org")
        mock_db.execute = AsyncMock(return_value=result)

        data = await repository.get_user_entity_data(company_user_id, company_id)

        assert data == CompanyUserEntityData(company_user_id, "kc-1", "Jane", "Doe", "j@x.org")
        statement = mock_db.execute.await_args.args[0]
        sql = _sql(statement)
        assert "JOIN identities ON identities.id = company_users.id" in sql
        assert "identities.company_id = " in sql
        assert "company_users.id = " in sql
        params = _params(statement).values()
        assert company_id in params
        assert company_user_id in params

    @pytest.mark.asyncio
    async def test_user_of_other_company_is_none(self, repository, mock_db):
        result = MagicMock()
        result.first.return_value = None
        mock_db.execute = AsyncMock(return_value=result)

        assert await repository.get_user_entity_data(uuid.uuid4(), uuid.uuid4()) is None


class TestActingUser:
    @pytest.mark.asyncio
    async def test_only_company_user_identities_act(self, repository, mock_db):
        result = MagicMock()
        result.first.return_value = None
        mock_db.execute = AsyncMock(return_value=result)

        assert await repository.get_own_company_and_company_user_id("kc-1") is None

        statement = mock_db.execute.await_args.args[0]
        assert "identities.identity_type = " in _sql(statement)
        assert "kc-1" in _params(statement).values()


class TestBusinessPartnerNumbers:
    @pytest.mark.asyncio
    async def test_company_without_bpn(self, repository, mock_db):
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        mock_db.execute = AsyncMock(return_value=result)

        assert await repository.get_company_business_partner_numbers(uuid.uuid4()) == []

    @pytest.mark.asyncio
    async def test_company_with_bpn(self, repository, mock_db):
        result = MagicMock()
        result.scalar_one_or_none.return_value = "BPNL00000003CRHK"
        mock_db.execute = AsyncMock(return_value=result)

        assert await repository.get_company_business_partner_numbers(uuid.uuid4()) == [
            "BPNL00000003CRHK"
        ]


class TestStaging:
    """Creation methods stage rows on the session without flushing."""

    def test_process_step_is_staged_with_status(self, repository, mock_db):
        process = repository.create_process(ProcessType.DIM_TECHNICAL_USER)
        step = repository.create_process_step(
            ProcessStepType.CREATE_DIM_TECHNICAL_USER, ProcessStepStatus.TODO, process.id
        )

        staged = [call.args[0] for call in mock_db.add.call_args_list]
        assert [type(row) for row in staged] == [Process, ProcessStep]
        assert step.process_id == process.id
        assert step.process_step_status == ProcessStepStatus.TODO
        mock_db.flush.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_flush_delegates_to_session(self, repository, mock_db):
        await repository.flush()
        mock_db.flush.assert_awaited_once()
