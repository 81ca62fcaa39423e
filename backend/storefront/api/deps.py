"""
FastAPI dependencies for identity, authorization and service wiring.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger, set_user_id
from storefront.core.security import (
    ROLE_ADMIN,
    ROLE_SUPER_ADMIN,
    SessionContext,
    TokenError,
    session_from_token,
)
from storefront.database.connection import get_db
from storefront.services.payments.paystack_client import PaystackClient, get_paystack_client

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def get_session_context(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> SessionContext:
    """
    Resolve the caller from the identity provider's bearer token.

    Raises:
        HTTPException: 401 if the token is missing or invalid
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise credentials_exception

    try:
        ctx = session_from_token(credentials.credentials)
    except TokenError as e:
        logger.warning("Authentication failed", error_code=e.code)
        raise credentials_exception from e

    set_user_id(str(ctx.user_id))
    return ctx


def require_roles(*allowed_roles: str):
    """
    Create a dependency that requires one of the given roles.

    Example:
        @router.post("/admin/thing")
        async def thing(ctx: Annotated[SessionContext, Depends(require_roles("admin"))]):
            ...
    """

    async def role_checker(
        ctx: Annotated[SessionContext, Depends(get_session_context)],
    ) -> SessionContext:
        if not ctx.has_role(*allowed_roles):
            logger.warning(
                "Access denied: Insufficient permissions",
                user_id=str(ctx.user_id),
                roles=sorted(ctx.roles),
                required_roles=list(allowed_roles),
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return ctx

    return role_checker


def get_paystack() -> PaystackClient:
    return get_paystack_client()


CurrentContext = Annotated[SessionContext, Depends(get_session_context)]
AdminContext = Annotated[SessionContext, Depends(require_roles(ROLE_ADMIN, ROLE_SUPER_ADMIN))]
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
Paystack = Annotated[PaystackClient, Depends(get_paystack)]
