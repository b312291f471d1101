"""Audit trail for provisioning and reconciliation actions.

Entries are staged on the request's session and committed with it, so an
action that rolls back leaves no audit entry behind.
"""

import uuid
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from idsync.db.models import AuditLog
from idsync.logging_config import get_logger

logger = get_logger(__name__)


async def log_audit_event(
    db: AsyncSession,
    *,
    action: str,
    actor_id: str | None = None,
    company_id: uuid.UUID | None = None,
    target_type: str | None = None,
    target_id: str | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
    error_message: str | None = None,
) -> AuditLog:
    """
    Stage an audit entry for an action taken on behalf of a company.

    Args:
        db: Database session
        action: What happened ('service_account_created', 'identity_provider_links_uploaded')
        actor_id: IAM user id of the caller
        company_id: Company the caller acted for
        target_type: Type of target ('service_account', 'upload')
        target_id: Identifier of the target
        details: Additional event details
        success: Whether the action completed without errors
        error_message: Summary of what failed

    The request id is taken from the structlog context bound by the request
    middleware.
    """
    request_id = structlog.contextvars.get_contextvars().get("request_id")

    entry = AuditLog(
        action=action,
        actor_id=actor_id,
        company_id=company_id,
        target_type=target_type,
        target_id=target_id,
        request_id=request_id,
        details=details or {},
        success=success,
        error_message=error_message,
    )
    db.add(entry)

    (logger.info if success else logger.warning)(
        "Audit event recorded",
        action=action,
        actor_id=actor_id,
        company_id=str(company_id) if company_id else None,
        target=f"{target_type}/{target_id}" if target_type else None,
        error_message=error_message,
    )
    return entry
