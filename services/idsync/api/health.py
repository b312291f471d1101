"""
Health check endpoints for the idsync API server.

/health answers while the process runs. /ready reports ready only when both
the portal database and the IAM gateway can be used.
"""

from fastapi import APIRouter, Depends, Response, status

from idsync.api.dependencies import get_iam_gateway
from idsync.db.session import get_db_health
from idsync.iam.gateway import IamGateway
from idsync.logging_config import get_logger

router = APIRouter(tags=["health"])
logger = get_logger(__name__)


def _state(healthy: bool) -> str:
    return "healthy" if healthy else "unhealthy"


@router.get("/health", status_code=status.HTTP_200_OK)
async def health() -> dict[str, str]:
    """Liveness endpoint."""
    return {"status": "healthy"}


@router.get("/ready", status_code=status.HTTP_200_OK)
async def ready(
    response: Response, gateway: IamGateway = Depends(get_iam_gateway)
) -> dict[str, str | dict[str, str]]:
    """
    Readiness endpoint.

    Service-account creation and link uploads both write to the database and
    the IAM gateway, so either being unavailable makes the service not ready.
    """
    checks = {
        "database": _state(await get_db_health()),
        "iam_gateway": _state(await gateway.is_available()),
    }

    if "unhealthy" in checks.values():
        logger.warning("Readiness check failed", checks=checks)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not ready", "checks": checks}

    return {"status": "ready", "checks": checks}
