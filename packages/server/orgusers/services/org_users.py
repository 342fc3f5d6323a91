"""
Org membership store: SQL access for the (org, user) membership relation.

Every function works inside the caller's session; commit and rollback are
owned by the request's session dependency. Failures are reported with the
domain errors in ``orgusers.core.errors`` and leave membership untouched.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgusers.core.errors import (
    LastOrgAdminError,
    OrgNotFoundError,
    OrgUserAlreadyAddedError,
    OrgUserNotFoundError,
)
from orgusers.models.org_user import OrgUser
from orgusers.models.organization import Organization
from orgusers.models.user import User
from orgusers.services.users import as_utc, get_user_by_id
from orgusers_shared.schemas.common import OrgRole
from orgusers_shared.schemas.org_users import OrgUserDTO, SearchOrgUsersQueryResult

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Commands and queries
# ---------------------------------------------------------------------------

@dataclass
class AddOrgUserCommand:
    org_id: int
    user_id: int
    role: str


@dataclass
class UpdateOrgUserCommand:
    org_id: int
    user_id: int
    role: str


@dataclass
class RemoveOrgUserCommand:
    org_id: int
    user_id: int
    should_delete_orphaned_user: bool = False
    # Set by remove_org_user when the account itself was deleted.
    user_was_deleted: bool = False


@dataclass
class GetOrgUsersQuery:
    org_id: int
    query: str = ""
    limit: int = 0


@dataclass
class SearchOrgUsersQuery:
    org_id: int
    query: str = ""
    page: int = 1
    limit: int = 1000


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def last_seen_age(value: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Compact age string for a last-seen timestamp, e.g. ``3d`` or ``< 1m``."""
    if value is None:
        return "?"
    now = now or datetime.now(timezone.utc)
    minutes = (now - as_utc(value)).total_seconds() / 60

    for unit_minutes, suffix in ((525600, "y"), (43800, "M"), (1440, "d"), (60, "h")):
        amount = math.floor(minutes / unit_minutes)
        if amount > 0:
            return f"{amount}{suffix}"
    if int(minutes) > 0:
        return f"{int(minutes)}m"
    return "< 1m"


def _to_dto(membership: OrgUser, user: User) -> OrgUserDTO:
    return OrgUserDTO(
        org_id=membership.org_id,
        user_id=user.id,
        email=user.email,
        name=user.name,
        login=user.login,
        role=membership.role,
        last_seen_at=user.last_seen_at,
        last_seen_at_age=last_seen_age(user.last_seen_at),
    )


def _members_stmt(org_id: int, text: str, *columns):
    stmt = (
        select(*(columns or (OrgUser, User)))
        .select_from(OrgUser)
        .join(User, User.id == OrgUser.user_id)
        .where(OrgUser.org_id == org_id)
    )
    if text:
        pattern = f"%{text}%"
        stmt = stmt.where(
            or_(User.email.ilike(pattern), User.name.ilike(pattern), User.login.ilike(pattern))
        )
    return stmt


async def _get_membership(
    session: AsyncSession, org_id: int, user_id: int
) -> Optional[OrgUser]:
    result = await session.execute(
        select(OrgUser).where(OrgUser.org_id == org_id, OrgUser.user_id == user_id)
    )
    return result.scalar_one_or_none()


def _admin_memberships_stmt(org_id: int):
    # Row locks serialize concurrent demotions and removals of the same org's admins.
    return (
        select(OrgUser.user_id)
        .where(OrgUser.org_id == org_id, OrgUser.role == OrgRole.ADMIN.value)
        .with_for_update()
    )


async def _count_other_admins(session: AsyncSession, org_id: int, user_id: int) -> int:
    result = await session.execute(_admin_memberships_stmt(org_id))
    return sum(1 for admin_id in result.scalars() if admin_id != user_id)


# ---------------------------------------------------------------------------
# Store operations
# ---------------------------------------------------------------------------

async def add_org_user(session: AsyncSession, cmd: AddOrgUserCommand) -> None:
    """Create a membership. A user's first org becomes their active org."""
    if await session.get(Organization, cmd.org_id) is None:
        raise OrgNotFoundError()
    if await _get_membership(session, cmd.org_id, cmd.user_id) is not None:
        raise OrgUserAlreadyAddedError()

    user = await get_user_by_id(session, cmd.user_id)
    result = await session.execute(
        select(func.count()).select_from(OrgUser).where(OrgUser.user_id == cmd.user_id)
    )
    first_membership = result.scalar_one() == 0

    session.add(OrgUser(org_id=cmd.org_id, user_id=cmd.user_id, role=cmd.role))
    if first_membership or user.org_id is None:
        user.org_id = cmd.org_id
        session.add(user)
    await session.flush()

    log.info("org_user.added", org_id=cmd.org_id, user_id=cmd.user_id, role=cmd.role)


async def get_org_users(session: AsyncSession, query: GetOrgUsersQuery) -> list[OrgUserDTO]:
    """Members of an org, optionally filtered by login, email or name."""
    stmt = _members_stmt(query.org_id, query.query).order_by(User.email, User.login)
    if query.limit > 0:
        stmt = stmt.limit(query.limit)

    result = await session.execute(stmt)
    return [_to_dto(membership, user) for membership, user in result.all()]


async def search_org_users(
    session: AsyncSession, query: SearchOrgUsersQuery
) -> SearchOrgUsersQueryResult:
    """One page of members plus the total match count."""
    count_result = await session.execute(
        _members_stmt(query.org_id, query.query, func.count())
    )
    total = count_result.scalar_one()

    stmt = _members_stmt(query.org_id, query.query).order_by(User.email, User.login)
    if query.limit > 0:
        stmt = stmt.offset((query.page - 1) * query.limit).limit(query.limit)
    result = await session.execute(stmt)

    return SearchOrgUsersQueryResult(
        total_count=total,
        org_users=[_to_dto(membership, user) for membership, user in result.all()],
        page=query.page,
        per_page=query.limit,
    )


async def update_org_user(session: AsyncSession, cmd: UpdateOrgUserCommand) -> None:
    """Change a member's role; the org must keep at least one Admin."""
    membership = await _get_membership(session, cmd.org_id, cmd.user_id)
    if membership is None:
        raise OrgUserNotFoundError()

    demoting_admin = membership.role == OrgRole.ADMIN.value and cmd.role != OrgRole.ADMIN.value
    if demoting_admin and await _count_other_admins(session, cmd.org_id, cmd.user_id) == 0:
        raise LastOrgAdminError()

    membership.role = cmd.role
    session.add(membership)
    await session.flush()

    log.info("org_user.updated", org_id=cmd.org_id, user_id=cmd.user_id, role=cmd.role)


async def remove_org_user(session: AsyncSession, cmd: RemoveOrgUserCommand) -> None:
    """
    Delete a membership.

    When the user still belongs to other orgs and this was their active org,
    the active org moves to one of the remaining ones. When no memberships
    remain and ``should_delete_orphaned_user`` is set, the user account is
    deleted as well and ``cmd.user_was_deleted`` is set.
    """
    user = await get_user_by_id(session, cmd.user_id)
    membership = await _get_membership(session, cmd.org_id, cmd.user_id)
    if membership is None:
        raise OrgUserNotFoundError()

    if (
        membership.role == OrgRole.ADMIN.value
        and await _count_other_admins(session, cmd.org_id, cmd.user_id) == 0
    ):
        raise LastOrgAdminError()

    await session.delete(membership)
    await session.flush()

    result = await session.execute(
        select(OrgUser.org_id).where(OrgUser.user_id == cmd.user_id).order_by(OrgUser.org_id)
    )
    remaining = list(result.scalars().all())

    if remaining:
        if user.org_id not in remaining:
            user.org_id = remaining[0]
            session.add(user)
    elif cmd.should_delete_orphaned_user:
        await session.delete(user)
        cmd.user_was_deleted = True
    else:
        user.org_id = None
        session.add(user)
    await session.flush()

    log.info(
        "org_user.removed",
        org_id=cmd.org_id,
        user_id=cmd.user_id,
        user_deleted=cmd.user_was_deleted,
    )
