from datetime import datetime, timedelta, timezone
import jwt
from typing import Optional
from .core_settings import get_settings

settings = get_settings()


def create_access_token(subject: str, expires_minutes: int = 60) -> str:
    now = datetime.now(timezone.utc)
    payload = {"sub": str(subject), "iat": now, "exp": now + timedelta(minutes=expires_minutes)}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_access_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.PyJWTError:
        return None


def create_admin_session(admin_name: str, expires_minutes: int = 480) -> str:
    """Signed value for the admin dashboard's session cookie."""
    now = datetime.now(timezone.utc)
    payload = {"sub": admin_name, "admin": True, "iat": now, "exp": now + timedelta(minutes=expires_minutes)}
    return jwt.encode(payload, settings.SESSION_SECRET, algorithm=settings.JWT_ALG)


def decode_admin_session(value: str) -> Optional[dict]:
    try:
        claims = jwt.decode(value, settings.SESSION_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.PyJWTError:
        return None
    return claims if claims.get("admin") is True else None
