"""
Authentication and authorization for the org users API.

- JWT sessions, sent as ``Authorization: Bearer <token>`` or the
  ``orgusers_session`` cookie
- ``SignedInUser``: the requester and their role in the active org
- Authorization dependencies: org membership, org admin, server admin and
  fine-grained permission checks when extended access control is enabled
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from fastapi import Depends, HTTPException, Request
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgusers.core.config import Settings, get_settings
from orgusers.core.database import get_session
from orgusers.core.errors import UserNotFoundError
from orgusers.models.org_user import OrgUser
from orgusers.services import users as user_service
from orgusers.services.access_control import AccessControl, SCOPE_USERS_ALL
from orgusers_shared.schemas.common import OrgRole

log = structlog.get_logger()

SESSION_COOKIE = "orgusers_session"

api_key_header = APIKeyHeader(name="Authorization", auto_error=False)


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_jwt(
    user_id: int,
    settings: Settings,
    *,
    org_id: Optional[int] = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed session token for a user, optionally pinned to an org."""
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": exp,
        "jti": str(uuid.uuid4()),
    }
    if org_id is not None:
        payload["org_id"] = org_id
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_jwt(token: str, settings: Settings) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


# ---------------------------------------------------------------------------
# Signed-in user
# ---------------------------------------------------------------------------

@dataclass
class SignedInUser:
    """The requester and their membership in the active org."""

    user_id: int
    login: str
    email: str
    org_id: Optional[int]
    org_role: Optional[str]
    is_server_admin: bool = False

    @property
    def is_org_admin(self) -> bool:
        return self.org_role == OrgRole.ADMIN.value


def get_access_control(settings: Settings = Depends(get_settings)) -> AccessControl:
    return AccessControl(settings)


def _extract_token(request: Request, authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:].strip()
    return request.cookies.get(SESSION_COOKIE)


async def get_signed_in_user(
    request: Request,
    authorization: Optional[str] = Depends(api_key_header),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> SignedInUser:
    """Main authentication dependency."""
    token = _extract_token(request, authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        payload = decode_jwt(token, settings)
        user_id = int(payload["sub"])
    except (jwt.PyJWTError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid or expired session")

    try:
        user = await user_service.get_user_by_id(session, user_id)
    except UserNotFoundError:
        raise HTTPException(status_code=401, detail="User not found")

    org_id = payload.get("org_id") or user.org_id
    org_role: Optional[str] = None
    if org_id is not None:
        result = await session.execute(
            select(OrgUser.role).where(OrgUser.org_id == org_id, OrgUser.user_id == user.id)
        )
        org_role = result.scalar_one_or_none()
        if org_role is None and not user.is_admin:
            raise HTTPException(status_code=403, detail="Not a member of this organization")

    await user_service.touch_last_seen(session, user)

    signed_in = SignedInUser(
        user_id=user.id,
        login=user.login,
        email=user.email,
        org_id=org_id,
        org_role=org_role,
        is_server_admin=user.is_admin,
    )
    structlog.contextvars.bind_contextvars(user_id=user.id, org_id=org_id)
    return signed_in


# ---------------------------------------------------------------------------
# Authorization dependencies
# ---------------------------------------------------------------------------

async def require_member(
    user: SignedInUser = Depends(get_signed_in_user),
) -> SignedInUser:
    """Any member of the active org."""
    if user.org_id is None or (user.org_role is None and not user.is_server_admin):
        raise HTTPException(status_code=403, detail="Organization membership required")
    return user


async def require_server_admin(
    user: SignedInUser = Depends(get_signed_in_user),
) -> SignedInUser:
    if not user.is_server_admin:
        raise HTTPException(status_code=403, detail="Server admin access required")
    return user


def authorize(action: str, target_scope: str = SCOPE_USERS_ALL):
    """
    Dependency factory for current-org endpoints.

    With extended access control the requester needs ``action`` on
    ``target_scope``; otherwise they must be an org Admin.
    """

    async def _check(
        user: SignedInUser = Depends(require_member),
        ac: AccessControl = Depends(get_access_control),
    ) -> SignedInUser:
        if ac.is_disabled():
            allowed = user.is_org_admin
        else:
            allowed = await ac.evaluate(user, action, target_scope)
        if not allowed:
            log.info("auth.denied", action=action, scope=target_scope, user_id=user.user_id)
            raise HTTPException(status_code=403, detail="Permission denied")
        return user

    return _check
