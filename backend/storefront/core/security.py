"""
Identity handling for requests authenticated by the external identity provider.

The provider issues signed JWT access tokens. This module verifies them with
python-jose and turns their claims into a read-only ``SessionContext`` that
is passed explicitly to every service operation needing an identity.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional
from uuid import UUID

from jose import ExpiredSignatureError, JWTError, jwt

from storefront.core.config import get_settings
from storefront.core.logging import get_logger

logger = get_logger(__name__)

ROLE_CLIENT = "client"
ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"
ADMIN_ROLES = frozenset({ROLE_ADMIN, ROLE_SUPER_ADMIN})


class SecurityError(Exception):
    """Base exception for security-related errors."""

    def __init__(self, message: str, code: str, **context):
        super().__init__(message)
        self.code = code
        self.context = context


class TokenError(SecurityError):
    pass


@dataclass(frozen=True)
class SessionContext:
    """Authenticated caller identity for one request."""

    user_id: UUID
    roles: frozenset[str] = field(default_factory=lambda: frozenset({ROLE_CLIENT}))
    email: Optional[str] = None

    def has_role(self, *roles: str) -> bool:
        return any(role in self.roles for role in roles)

    @property
    def is_admin(self) -> bool:
        return bool(self.roles & ADMIN_ROLES)


def _extract_roles(claims: Dict[str, Any]) -> frozenset[str]:
    app_metadata = claims.get("app_metadata") or {}
    raw: Iterable[str] | str | None = app_metadata.get("roles") or claims.get("roles")
    if raw is None:
        raw = app_metadata.get("role") or claims.get("user_role")
    if isinstance(raw, str):
        raw = [raw]
    roles = frozenset(str(role) for role in (raw or []))
    return roles or frozenset({ROLE_CLIENT})


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate an identity provider access token.

    Args:
        token: JWT token string

    Returns:
        Dictionary of decoded token claims

    Raises:
        TokenError: If the token is empty, expired or otherwise invalid
    """
    if not token:
        raise TokenError("Token cannot be empty", code="EMPTY_TOKEN")

    settings = get_settings()
    try:
        return jwt.decode(
            token,
            settings.identity_jwt_secret,
            algorithms=[settings.identity_jwt_algorithm],
            audience=settings.identity_jwt_audience,
            options={"verify_aud": settings.identity_jwt_audience is not None},
        )
    except ExpiredSignatureError as e:
        logger.warning("Token has expired", error=str(e))
        raise TokenError("Token has expired", code="TOKEN_EXPIRED") from e
    except JWTError as e:
        logger.warning(
            "Invalid token",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise TokenError(
            "Invalid token",
            code="TOKEN_INVALID",
            original_error=str(e),
        ) from e


def session_from_token(token: str) -> SessionContext:
    """
    Build a session context from a bearer token.

    Raises:
        TokenError: If the token is invalid or its subject is not a UUID
    """
    claims = decode_access_token(token)
    subject = claims.get("sub")
    if not subject:
        raise TokenError("Token missing 'sub' claim", code="TOKEN_NO_SUBJECT")

    try:
        user_id = UUID(str(subject))
    except ValueError as e:
        raise TokenError(
            "Invalid user ID format",
            code="TOKEN_INVALID_SUBJECT",
            subject=str(subject),
        ) from e

    return SessionContext(
        user_id=user_id,
        roles=_extract_roles(claims),
        email=claims.get("email"),
    )


def create_access_token(
    user_id: UUID,
    roles: Iterable[str] = (ROLE_CLIENT,),
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Issue a token in the identity provider's format.

    Used by service-to-service callers and local tooling that share the
    provider's signing secret.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    claims: Dict[str, Any] = {
        "sub": str(user_id),
        "app_metadata": {"roles": sorted(roles)},
        "iat": int(now.timestamp()),
        "exp": int((now + (expires_delta or timedelta(hours=1))).timestamp()),
    }
    if email:
        claims["email"] = email
    if settings.identity_jwt_audience:
        claims["aud"] = settings.identity_jwt_audience
    return jwt.encode(
        claims, settings.identity_jwt_secret, algorithm=settings.identity_jwt_algorithm
    )
