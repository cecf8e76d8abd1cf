"""
Access-token authentication.

Tokens are issued by the surrounding auth system as short-lived HS256 JWTs:
    sub  = user id
    role = student | educator | admin

This service only verifies them. issue_access_token() exists for that auth
system and for tests.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Optional

import jwt
from fastapi import Depends, Header

from config import settings
from domain.enums import UserRole, STAFF_ROLES
from domain.errors import DomainError, PermissionDeniedError, UnauthorizedError

logger = logging.getLogger(__name__)

_VALID_ROLES = {r.value for r in UserRole}


@dataclass(frozen=True)
class CurrentUser:
    user_id: str
    role: str

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _require_secret() -> str:
    if not settings.jwt_secret:
        raise DomainError(
            "Server auth misconfigured (JWT secret missing).",
            status_code=500,
        )
    return settings.jwt_secret


def _parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    token = parts[1].strip()
    return token or None


def decode_access_token(token: str) -> dict:
    secret = _require_secret()
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            issuer=settings.jwt_issuer,
            options={"require": ["exp", "iat", "iss", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Access token expired.")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid access token.")


def issue_access_token(*, user_id: str, role: str = UserRole.STUDENT.value) -> str:
    now = _now_utc()
    exp = now.replace(microsecond=0) + timedelta(minutes=settings.jwt_access_ttl_minutes)
    payload = {
        "iss": settings.jwt_issuer,
        "sub": user_id,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, _require_secret(), algorithm="HS256")


async def require_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> CurrentUser:
    """Dependency: any authenticated caller."""
    token = _parse_bearer_token(authorization)
    if not token:
        raise UnauthorizedError(
            "Authentication required. Provide Authorization: Bearer <token>."
        )
    payload = decode_access_token(token)
    role = payload.get("role", UserRole.STUDENT.value)
    if role not in _VALID_ROLES:
        logger.warning(f"Token for {payload.get('sub')} carries unknown role {role!r}")
        raise UnauthorizedError("Invalid access token.")
    return CurrentUser(user_id=payload["sub"], role=role)


async def require_staff(user: CurrentUser = Depends(require_user)) -> CurrentUser:
    """Dependency: educators and admins only."""
    if not user.is_staff:
        raise PermissionDeniedError("Educator or admin role required for this endpoint.")
    return user
