from functools import lru_cache
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.application.errors import AuthError, ForbiddenError
from app.application.notifications import Notifier
from app.application.principal import (
    ADMIN_CAPABILITIES,
    CUSTOMER_CAPABILITIES,
    Principal,
)
from app.auth_local import decode_access_token, decode_admin_session
from app.core_settings import get_settings
from app.domain.models import User
from app.infrastructure.db import get_db
from app.infrastructure.mailer import Mailer
from app.infrastructure.stripe_client import StripeGateway
from shared.core import get_logger, set_request_context

BEARER_PREFIX = "Bearer "

logger = get_logger(__name__)


@lru_cache
def get_payment_gateway() -> StripeGateway:
    settings = get_settings()
    return StripeGateway(
        secret_key=settings.STRIPE_SECRET_KEY,
        currency=settings.CURRENCY,
    )


@lru_cache
def get_mailer() -> Mailer:
    settings = get_settings()
    return Mailer(
        api_key=settings.SENDGRID_API_KEY,
        from_address=settings.EMAIL_FROM,
        api_base=settings.SENDGRID_API_BASE,
        timeout=settings.MAIL_TIMEOUT_SECONDS,
    )


def get_notifier(mailer=Depends(get_mailer)) -> Notifier:
    return Notifier(mailer, store_url=get_settings().STORE_URL)


def get_principal(request: Request, db: Session = Depends(get_db)) -> Optional[Principal]:
    """Resolve the caller from a bearer token and/or the admin session cookie."""
    user_id = None
    capabilities = set()
    sources = []

    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith(BEARER_PREFIX):
        claims = decode_access_token(auth_header[len(BEARER_PREFIX):])
        subject = str(claims.get("sub", "")) if claims else ""
        if not subject.isdigit():
            logger.warning("Authentication failed: Invalid token",
                           extra={"extra_fields": {"path": request.url.path}})
            raise AuthError("Not authorized, token failed")
        user = db.get(User, int(subject))
        if user is None:
            logger.warning("Authentication failed: User not found",
                           extra={"extra_fields": {"path": request.url.path}})
            raise AuthError("Not authorized, user not found")
        user_id = user.id
        capabilities |= CUSTOMER_CAPABILITIES
        if user.is_admin:
            capabilities |= ADMIN_CAPABILITIES
        sources.append("bearer")

    cookie = request.cookies.get(get_settings().ADMIN_SESSION_COOKIE)
    if cookie and decode_admin_session(cookie):
        capabilities |= ADMIN_CAPABILITIES
        sources.append("admin_session")

    if not sources:
        return None
    if user_id is not None:
        set_request_context(user_id=str(user_id))
    return Principal(user_id=user_id, capabilities=frozenset(capabilities), source="+".join(sources))


def require_user(principal: Optional[Principal] = Depends(get_principal)) -> Principal:
    if principal is None:
        raise AuthError("Not authorized, no token")
    return principal


def require_admin(principal: Optional[Principal] = Depends(get_principal)) -> Principal:
    if principal is None:
        raise AuthError("Not authorized, no token")
    if not principal.is_admin:
        logger.warning("Admin access denied", extra={"extra_fields": {"user_id": principal.user_id}})
        raise ForbiddenError("Not authorized as an admin")
    return principal
