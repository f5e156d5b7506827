"""
Operator key check for the dispatch API.

Every /api/v1 router (alert intake, incidents, technicians, escalation)
is mounted behind `require_operator_key`. The key is shared by the
forecasting job that posts predictions and the facilities desk; /health
stays open for load balancer health checks.

- No key configured: open in development/staging, 503 in production
- Key configured: missing header -> 401, wrong key -> 403
"""
import logging
import secrets
from typing import Optional

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from facility_dispatch.config import settings

logger = logging.getLogger(__name__)

OPERATOR_KEY_HEADER = "X-API-Key"

operator_key_header = APIKeyHeader(
    name=OPERATOR_KEY_HEADER,
    auto_error=False,
    description="Shared key for alert sources and the facilities desk",
)


def _configured_key() -> Optional[str]:
    key = settings.api_key.get_secret_value()
    return key or None


def _caller(request: Request) -> str:
    host = request.client.host if request.client else "unknown"
    return f"{request.method} {request.url.path} from {host}"


async def require_operator_key(
    request: Request,
    presented: Optional[str] = Security(operator_key_header),
) -> Optional[str]:
    """Admit the request or raise; returns the accepted key (None when open)."""
    expected = _configured_key()

    if expected is None:
        if settings.environment == "production":
            logger.error(f"Dispatch API has no operator key in production; refusing {_caller(request)}")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Dispatch API is not configured for authentication",
            )
        return None

    if not presented:
        logger.info(f"Missing operator key: {_caller(request)}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Operator key required in the {OPERATOR_KEY_HEADER} header",
        )

    if not secrets.compare_digest(presented.encode(), expected.encode()):
        logger.warning(f"Rejected operator key: {_caller(request)}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Operator key not recognized",
        )

    return presented
