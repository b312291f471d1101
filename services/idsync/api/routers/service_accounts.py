"""Service accounts router."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from idsync.api.dependencies import (
    get_acting_user_id,
    get_portal_repository,
    get_service_account_creation,
)
from idsync.api.models.common import ErrorResponse
from idsync.api.models.service_accounts import (
    CreatedServiceAccountResponse,
    ServiceAccountCreateRequest,
    ServiceAccountCreateResponse,
)
from idsync.db.enums import ProcessType, ServiceAccountType
from idsync.db.repositories import PortalRepository
from idsync.db.session import get_db
from idsync.errors import UnauthorizedError
from idsync.logging_config import get_logger
from idsync.services.audit_service import log_audit_event
from idsync.services.service_account_creation import (
    ServiceAccountCreation,
    ServiceAccountCreationInfo,
    ServiceAccountCreationProcessData,
)

router = APIRouter(prefix="/service-accounts", tags=["service-accounts"])
logger = get_logger(__name__)


@router.post(
    "/owncompany",
    response_model=ServiceAccountCreateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def create_own_company_service_account(
    body: ServiceAccountCreateRequest,
    iam_user_id: str = Depends(get_acting_user_id),
    db: AsyncSession = Depends(get_db),
    repository: PortalRepository = Depends(get_portal_repository),
    creation: ServiceAccountCreation = Depends(get_service_account_creation),
) -> ServiceAccountCreateResponse:
    """Create a service account owned by the caller's company."""
    acting_user = await repository.get_own_company_and_company_user_id(iam_user_id)
    if acting_user is None:
        raise UnauthorizedError(f"user {iam_user_id} is not assigned to a company")

    bpns = await repository.get_company_business_partner_numbers(acting_user.company_id)
    has_external_account, created = await creation.create_service_account(
        ServiceAccountCreationInfo(
            name=body.name,
            description=body.description,
            auth_method=body.auth_method,
            user_role_ids=body.user_role_ids,
        ),
        acting_user.company_id,
        bpns,
        ServiceAccountType.OWN,
        enhance_technical_user_name=False,
        enabled=True,
        process_data=ServiceAccountCreationProcessData(ProcessType.DIM_TECHNICAL_USER),
    )

    primary = created[0]
    await log_audit_event(
        db,
        action="service_account_created",
        actor_id=iam_user_id,
        company_id=acting_user.company_id,
        target_type="service_account",
        target_id=str(primary.service_account_id),
        details={
            "client_id": primary.client_id,
            "has_external_account": has_external_account,
        },
    )

    return ServiceAccountCreateResponse(
        has_external_account=has_external_account,
        service_accounts=[CreatedServiceAccountResponse.from_data(c) for c in created],
    )
