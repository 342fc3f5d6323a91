"""
User lookup: resolves logins, emails and ids to user rows.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgusers.core.errors import UserNotFoundError
from orgusers.models.user import User

log = structlog.get_logger()

LAST_SEEN_UPDATE_INTERVAL = timedelta(minutes=5)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def get_user_by_login(session: AsyncSession, login_or_email: str) -> User:
    """Find a user by login, falling back to email."""
    if not login_or_email:
        raise UserNotFoundError()

    result = await session.execute(select(User).where(User.login == login_or_email))
    user = result.scalar_one_or_none()
    if user is None:
        result = await session.execute(select(User).where(User.email == login_or_email))
        user = result.scalar_one_or_none()
    if user is None:
        raise UserNotFoundError()
    return user


async def get_user_by_id(session: AsyncSession, user_id: int) -> User:
    user = await session.get(User, user_id)
    if user is None:
        raise UserNotFoundError()
    return user


async def touch_last_seen(session: AsyncSession, user: User) -> None:
    """Record activity, at most once per update interval."""
    now = datetime.now(timezone.utc)
    if now - as_utc(user.last_seen_at) < LAST_SEEN_UPDATE_INTERVAL:
        return
    user.last_seen_at = now
    session.add(user)
    await session.flush()
    log.debug("user.seen", user_id=user.id)
