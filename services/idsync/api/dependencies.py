"""FastAPI dependencies.

Authentication happens upstream: the authenticating proxy forwards the
caller's IAM user id in a configured header. Requests without it are
rejected with 401.
"""

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from idsync.config import settings
from idsync.db.repositories import PortalRepository
from idsync.db.session import get_db
from idsync.iam.gateway import IamGateway
from idsync.services.identity_provider_links import IdentityProviderLinkReconciler
from idsync.services.service_account_creation import ServiceAccountCreation


async def get_acting_user_id(request: Request) -> str:
    """Dependency returning the IAM user id of the caller."""
    iam_user_id = request.headers.get(settings.acting_user_header, "").strip()
    if not iam_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {settings.acting_user_header} header",
        )
    return iam_user_id


def get_iam_gateway(request: Request) -> IamGateway:
    """The gateway created in the application lifespan."""
    return request.app.state.iam_gateway


def get_portal_repository(db: AsyncSession = Depends(get_db)) -> PortalRepository:
    return PortalRepository(db)


def get_service_account_creation(
    gateway: IamGateway = Depends(get_iam_gateway),
    repository: PortalRepository = Depends(get_portal_repository),
) -> ServiceAccountCreation:
    return ServiceAccountCreation(gateway, repository, settings.service_accounts)


def get_identity_provider_link_reconciler(
    gateway: IamGateway = Depends(get_iam_gateway),
    repository: PortalRepository = Depends(get_portal_repository),
) -> IdentityProviderLinkReconciler:
    return IdentityProviderLinkReconciler(gateway, repository, settings.identity_provider_csv)
