"""Identity providers router."""

import asyncio
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from idsync.api.dependencies import get_acting_user_id, get_identity_provider_link_reconciler
from idsync.api.models.common import ErrorResponse
from idsync.api.models.identity_providers import UserLinkUploadResponse
from idsync.config import settings
from idsync.db.session import get_db
from idsync.logging_config import get_logger
from idsync.services.audit_service import log_audit_event
from idsync.services.identity_provider_links import IdentityProviderLinkReconciler

router = APIRouter(prefix="/identity-providers", tags=["identity-providers"])
logger = get_logger(__name__)

UPLOAD_CHUNK_SIZE = 64 * 1024


async def _read_chunks(
    request: Request, document: UploadFile, cancellation: asyncio.Event
) -> AsyncIterator[bytes]:
    """Yield the upload in chunks, setting cancellation once the client goes away."""
    while chunk := await document.read(UPLOAD_CHUNK_SIZE):
        if not cancellation.is_set() and await request.is_disconnected():
            logger.info("Client disconnected during upload", filename=document.filename)
            cancellation.set()
        yield chunk


@router.post(
    "/owncompany/usersfile",
    response_model=UserLinkUploadResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
async def upload_own_company_users_identity_provider_links(
    request: Request,
    document: UploadFile = File(...),
    iam_user_id: str = Depends(get_acting_user_id),
    db: AsyncSession = Depends(get_db),
    reconciler: IdentityProviderLinkReconciler = Depends(get_identity_provider_link_reconciler),
) -> UserLinkUploadResponse:
    """Reconcile the caller's company users with an uploaded link file."""
    expected = settings.identity_provider_csv.content_type
    media_type = (document.content_type or "").split(";")[0].strip()
    if media_type != expected:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=f"Only {expected} files are allowed",
        )

    cancellation = asyncio.Event()
    try:
        result = await reconciler.reconcile_upload(
            _read_chunks(request, document, cancellation), iam_user_id, cancellation
        )
    finally:
        await document.close()

    await log_audit_event(
        db,
        action="identity_provider_links_uploaded",
        actor_id=iam_user_id,
        company_id=result.company_id,
        target_type="upload",
        target_id=(document.filename or "")[:255] or None,
        details={
            "total": result.total,
            "updated": result.updated,
            "unchanged": result.unchanged,
            "error": result.error,
            "cancelled": result.cancelled,
        },
        success=result.error == 0 and not result.cancelled,
    )

    return UserLinkUploadResponse.from_result(result)
