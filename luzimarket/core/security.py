"""
Security utilities for access token verification and response hardening.

Tokens are issued by the storefront's authentication service; this service
only verifies them. Claims used here:

- ``sub``: actor identifier
- ``role``: one of customer, vendor, admin
- ``vendor_id``: present on vendor tokens
- ``email``: optional, used for audit records
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from luzimarket.core.config import get_settings
from luzimarket.core.logging import get_logger

settings = get_settings()
logger = get_logger(__name__)


class SecurityError(Exception):
    """Base exception for security-related errors."""

    def __init__(self, message: str, code: str, **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


class TokenError(SecurityError):
    """Exception raised for token-related errors."""

    pass


def create_access_token(
    subject: str,
    role: str,
    vendor_id: Optional[str] = None,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a signed access token.

    Used by internal tooling and tests; production tokens come from the
    storefront authentication service with the same claim layout.
    """
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=30))
    claims: Dict[str, Any] = {
        "sub": subject,
        "role": role,
        "exp": expire,
        "type": "access",
    }
    if vendor_id:
        claims["vendor_id"] = vendor_id
    if email:
        claims["email"] = email

    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a JWT token.

    Args:
        token: JWT token string to decode

    Returns:
        Dictionary of decoded token claims

    Raises:
        TokenError: If token is invalid, expired, or malformed
    """
    if not token:
        raise TokenError("Token cannot be empty", code="EMPTY_TOKEN")

    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError as e:
        logger.warning("Token has expired", error=str(e))
        raise TokenError("Token has expired", code="TOKEN_EXPIRED") from e
    except JWTError as e:
        logger.warning(
            "Invalid token",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise TokenError("Invalid token", code="TOKEN_INVALID") from e

    if payload.get("type", "access") != "access":
        raise TokenError("Token is not an access token", code="TOKEN_TYPE")

    return payload


def get_security_headers(is_production: bool) -> Dict[str, str]:
    """Security headers attached to every API response."""
    headers = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    }
    if is_production:
        headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return headers
