"""
FastAPI dependencies for authentication, authorization and service wiring.

Access tokens are verified locally; the actor's role and vendor come from
token claims, so no user table is consulted.
"""

import hmac
from dataclasses import dataclass
from typing import Annotated, Callable, Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from luzimarket.core.config import get_settings
from luzimarket.core.logging import get_logger, set_actor_id
from luzimarket.core.security import TokenError, decode_token
from luzimarket.database.connection import get_db
from luzimarket.services.notifications.email import EmailSender, get_email_sender
from luzimarket.services.payments.stripe_client import StripeClient, get_stripe_client

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)

ROLE_CUSTOMER = "customer"
ROLE_VENDOR = "vendor"
ROLE_ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    """Authenticated caller."""

    id: str
    role: str
    vendor_id: Optional[UUID] = None
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def user_uuid(self) -> Optional[UUID]:
        try:
            return UUID(self.id)
        except ValueError:
            return None


async def get_current_actor(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Actor:
    """
    Validate the bearer token and build the actor.

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
        payload = decode_token(credentials.credentials)
    except TokenError as e:
        logger.warning("Authentication failed", error_code=e.code)
        raise credentials_exception

    subject = payload.get("sub")
    role = payload.get("role")
    if not subject or role not in (ROLE_CUSTOMER, ROLE_VENDOR, ROLE_ADMIN):
        logger.warning("Authentication failed: Missing claims", role=role)
        raise credentials_exception

    vendor_id: Optional[UUID] = None
    if role == ROLE_VENDOR:
        try:
            vendor_id = UUID(str(payload.get("vendor_id")))
        except ValueError:
            logger.warning("Authentication failed: Invalid vendor claim", actor_id=subject)
            raise credentials_exception

    set_actor_id(subject)
    return Actor(id=subject, role=role, vendor_id=vendor_id, email=payload.get("email"))


def require_role(*allowed_roles: str) -> Callable:
    """
    Dependency factory restricting an endpoint to some roles.

    Example:
        @router.post("/{order_id}/cancellation/resume")
        async def resume(actor: Annotated[Actor, Depends(require_role("admin"))]):
            ...
    """

    async def role_checker(
        actor: Annotated[Actor, Depends(get_current_actor)],
    ) -> Actor:
        if actor.role not in allowed_roles:
            logger.warning(
                "Authorization failed: Insufficient permissions",
                actor_id=actor.id,
                role=actor.role,
                allowed_roles=list(allowed_roles),
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return actor

    return role_checker


def ensure_vendor_access(actor: Actor, vendor_id: UUID) -> None:
    """
    Allow admins, or the vendor acting on its own resources.

    Raises:
        HTTPException: 403 otherwise
    """
    if actor.is_admin or (actor.role == ROLE_VENDOR and actor.vendor_id == vendor_id):
        return
    logger.warning(
        "Authorization failed: Vendor mismatch",
        actor_id=actor.id,
        vendor_id=str(vendor_id),
    )
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")


def customer_scope(actor: Actor) -> Optional[UUID]:
    """
    User id an order must belong to for this actor; None for admins.

    Raises:
        HTTPException: 403 for non-customers or a non-UUID subject
    """
    if actor.is_admin:
        return None
    if actor.role == ROLE_CUSTOMER and actor.user_uuid is not None:
        return actor.user_uuid
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")


async def verify_cron_secret(
    x_cron_secret: Annotated[Optional[str], Header(alias="X-Cron-Secret")] = None,
) -> None:
    """
    Authenticate the external scheduler.

    Raises:
        HTTPException: 503 if no secret is configured, 401 on mismatch
    """
    expected = get_settings().cron_secret
    if not expected:
        logger.error("Cron secret not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cron endpoint not configured",
        )
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret, expected):
        logger.warning("Cron request rejected")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
VendorActor = Annotated[Actor, Depends(require_role(ROLE_VENDOR))]
VendorOrAdmin = Annotated[Actor, Depends(require_role(ROLE_VENDOR, ROLE_ADMIN))]
AdminActor = Annotated[Actor, Depends(require_role(ROLE_ADMIN))]
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
Stripe = Annotated[StripeClient, Depends(get_stripe_client)]
Mailer = Annotated[EmailSender, Depends(get_email_sender)]
