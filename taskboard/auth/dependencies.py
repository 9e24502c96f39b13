from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Query, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from .core import Principal, principal_from_token
from ..database import db_session
from ..models import Tenant

logger = logging.getLogger("taskboard.auth")

bearer_scheme = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------------
# Resolve the caller from a bearer JWT
# ---------------------------------------------------------------------------

def get_principal(
    bearer: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
    token: str | None = Query(None, description="JWT via query param (for SSE/EventSource)"),
) -> Principal:
    """
    Accepts either:
      - Authorization: Bearer <jwt>
      - ?token=<jwt>  (query param, needed for EventSource which can't set headers)
    Returns the caller's Principal or raises 401.
    """
    jwt_token = (bearer.credentials if bearer and bearer.credentials else None) or token
    if not jwt_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization required.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return principal_from_token(jwt_token)
    except JWTError as exc:
        logger.info("Rejected access token: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token is invalid or expired.",
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_tenant(principal: Principal = Depends(get_principal)) -> Principal:
    """Authenticated caller whose tenant exists and is active."""
    with db_session() as session:
        tenant = session.get(Tenant, principal.tenant_id)
        if tenant is None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant not found.")
        if not tenant.is_active:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Tenant is inactive. Please contact support.",
            )
    return principal


# ---------------------------------------------------------------------------
# Role guards
# ---------------------------------------------------------------------------

def require_admin(principal: Principal = Depends(require_tenant)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Admin access required.")
    return principal
