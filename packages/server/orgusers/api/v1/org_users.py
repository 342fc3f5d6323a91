"""
Org user endpoints.

POST   /api/org/users                      Add a user to the current org
POST   /api/orgs/{orgId}/users             Add a user to any org (server admin)
GET    /api/org/users                      List members of the current org
GET    /api/orgs/{orgId}/users             List members of any org (server admin)
GET    /api/org/users/lookup               Minimal member identities for pickers
GET    /api/org/users/search               Paged member search
PATCH  /api/org/users/{userId}             Change a member's role
PATCH  /api/orgs/{orgId}/users/{userId}    Change a member's role (server admin)
DELETE /api/org/users/{userId}             Remove a member (deletes orphaned accounts)
DELETE /api/orgs/{orgId}/users/{userId}    Remove a member (server admin)
"""

from __future__ import annotations

from typing import List

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from orgusers.core.auth import (
    SignedInUser,
    authorize,
    get_access_control,
    require_member,
    require_server_admin,
)
from orgusers.core.config import Settings, get_settings
from orgusers.core.database import get_session
from orgusers.core.errors import (
    ApiError,
    LastOrgAdminError,
    OrgNotFoundError,
    OrgUserAlreadyAddedError,
    OrgUserNotFoundError,
    OrgUsersError,
    UserNotFoundError,
)
from orgusers.services import org_users as store
from orgusers.services import users as user_service
from orgusers.services.access_control import (
    ACTION_ORG_USERS_ADD,
    ACTION_ORG_USERS_READ,
    ACTION_ORG_USERS_REMOVE,
    ACTION_ORG_USERS_ROLE_UPDATE,
    AccessControl,
    get_user_access_control_metadata,
)
from orgusers.services.avatar import gravatar_url
from orgusers.services.visibility import is_hidden_user
from orgusers_shared.schemas.common import MessageResponse, OrgRole, UserIdMessageResponse
from orgusers_shared.schemas.org_users import (
    AddOrgUserRequest,
    OrgUserDTO,
    SearchOrgUsersQueryResult,
    UpdateOrgUserRequest,
    UserLookupDTO,
)

log = structlog.get_logger()

router = APIRouter()

DEFAULT_PER_PAGE = 1000


# ---------------------------------------------------------------------------
# Add
# ---------------------------------------------------------------------------

@router.post("/org/users", response_model=UserIdMessageResponse, tags=["Org Users"])
async def add_org_user_to_current_org(
    body: AddOrgUserRequest,
    user: SignedInUser = Depends(authorize(ACTION_ORG_USERS_ADD)),
    session: AsyncSession = Depends(get_session),
):
    """Add an existing user to the current org."""
    return await _add_org_user_helper(session, user.org_id, body)


@router.post("/orgs/{orgId}/users", response_model=UserIdMessageResponse, tags=["Org Users"])
async def add_org_user(
    orgId: int,
    body: AddOrgUserRequest,
    user: SignedInUser = Depends(require_server_admin),
    session: AsyncSession = Depends(get_session),
):
    """Add an existing user to the given org."""
    return await _add_org_user_helper(session, orgId, body)


async def _add_org_user_helper(session: AsyncSession, org_id: int, body: AddOrgUserRequest):
    if not OrgRole.is_valid(body.role):
        raise ApiError(400, "Invalid role specified")

    try:
        user_to_add = await user_service.get_user_by_login(session, body.login_or_email)
    except UserNotFoundError:
        raise ApiError(404, "User not found")

    cmd = store.AddOrgUserCommand(org_id=org_id, user_id=user_to_add.id, role=body.role)
    try:
        await store.add_org_user(session, cmd)
    except OrgUserAlreadyAddedError:
        # The conflict body carries the existing user id.
        return JSONResponse(
            status_code=409,
            content=UserIdMessageResponse(
                message="User is already member of this organization",
                user_id=cmd.user_id,
            ).model_dump(by_alias=True),
        )
    except OrgNotFoundError:
        raise ApiError(404, "Organization not found")
    except (OrgUsersError, SQLAlchemyError) as exc:
        raise ApiError(500, "Could not add user to organization", exc)

    return UserIdMessageResponse(message="User added to organization", user_id=cmd.user_id)


# ---------------------------------------------------------------------------
# List / lookup / search
# ---------------------------------------------------------------------------

@router.get(
    "/org/users",
    response_model=List[OrgUserDTO],
    response_model_exclude_none=True,
    tags=["Org Users"],
)
async def get_org_users_for_current_org(
    query: str = "",
    limit: int = 0,
    accesscontrol: bool = False,
    user: SignedInUser = Depends(authorize(ACTION_ORG_USERS_READ)),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    ac: AccessControl = Depends(get_access_control),
):
    """List members of the current org, optionally with access-control metadata."""
    try:
        return await _get_org_users_helper(
            session,
            store.GetOrgUsersQuery(org_id=user.org_id, query=query, limit=limit),
            user,
            settings,
            ac,
            accesscontrol,
        )
    except (OrgUsersError, SQLAlchemyError) as exc:
        raise ApiError(500, "Failed to get users for current organization", exc)


@router.get("/org/users/lookup", response_model=List[UserLookupDTO], tags=["Org Users"])
async def get_org_users_for_current_org_lookup(
    query: str = "",
    limit: int = 0,
    user: SignedInUser = Depends(require_member),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    """Minimal identities of current org members, for user pickers."""
    try:
        org_users = await _get_org_users_helper(
            session,
            store.GetOrgUsersQuery(org_id=user.org_id, query=query, limit=limit),
            user,
            settings,
        )
    except (OrgUsersError, SQLAlchemyError) as exc:
        raise ApiError(500, "Failed to get users for current organization", exc)

    return [
        UserLookupDTO(user_id=u.user_id, login=u.login, avatar_url=u.avatar_url)
        for u in org_users
    ]


@router.get(
    "/orgs/{orgId}/users",
    response_model=List[OrgUserDTO],
    response_model_exclude_none=True,
    tags=["Org Users"],
)
async def get_org_users(
    orgId: int,
    accesscontrol: bool = False,
    user: SignedInUser = Depends(require_server_admin),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    ac: AccessControl = Depends(get_access_control),
):
    """List all members of the given org."""
    try:
        return await _get_org_users_helper(
            session,
            store.GetOrgUsersQuery(org_id=orgId),
            user,
            settings,
            ac,
            accesscontrol,
        )
    except (OrgUsersError, SQLAlchemyError) as exc:
        raise ApiError(500, "Failed to get users for organization", exc)


async def _get_org_users_helper(
    session: AsyncSession,
    query: store.GetOrgUsersQuery,
    signed_in_user: SignedInUser,
    settings: Settings,
    ac: AccessControl | None = None,
    with_access_control: bool = False,
) -> list[OrgUserDTO]:
    org_users = await store.get_org_users(session, query)

    filtered: list[OrgUserDTO] = []
    user_ids: set[str] = set()
    for org_user in org_users:
        if is_hidden_user(org_user.login, signed_in_user, settings):
            continue
        org_user.avatar_url = gravatar_url(org_user.email, settings)
        user_ids.add(str(org_user.user_id))
        filtered.append(org_user)

    try:
        metadata = await get_user_access_control_metadata(
            ac, signed_in_user, with_access_control, user_ids
        )
    except Exception as exc:
        # On failure the listing is returned without metadata.
        log.error("org_users.access_control_metadata_failed", error=repr(exc))
        return filtered

    if metadata is not None:
        for org_user in filtered:
            org_user.access_control = metadata.get(str(org_user.user_id))
    return filtered


@router.get(
    "/org/users/search",
    response_model=SearchOrgUsersQueryResult,
    response_model_exclude_none=True,
    tags=["Org Users"],
)
async def search_org_users_with_paging(
    query: str = "",
    perpage: int = 0,
    page: int = 0,
    user: SignedInUser = Depends(authorize(ACTION_ORG_USERS_READ)),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    """Search members of the current org, one page at a time."""
    if perpage <= 0:
        perpage = DEFAULT_PER_PAGE
    if page < 1:
        page = 1

    try:
        result = await store.search_org_users(
            session,
            store.SearchOrgUsersQuery(org_id=user.org_id, query=query, page=page, limit=perpage),
        )
    except (OrgUsersError, SQLAlchemyError) as exc:
        raise ApiError(500, "Failed to get users for current organization", exc)

    filtered = []
    for org_user in result.org_users:
        if is_hidden_user(org_user.login, user, settings):
            continue
        org_user.avatar_url = gravatar_url(org_user.email, settings)
        filtered.append(org_user)

    result.org_users = filtered
    result.page = page
    result.per_page = perpage
    return result


# ---------------------------------------------------------------------------
# Update role
# ---------------------------------------------------------------------------

@router.patch("/org/users/{userId}", response_model=MessageResponse, tags=["Org Users"])
async def update_org_user_for_current_org(
    userId: int,
    body: UpdateOrgUserRequest,
    user: SignedInUser = Depends(authorize(ACTION_ORG_USERS_ROLE_UPDATE)),
    session: AsyncSession = Depends(get_session),
):
    """Change the role of a member of the current org."""
    cmd = store.UpdateOrgUserCommand(org_id=user.org_id, user_id=userId, role=body.role)
    return await _update_org_user_helper(session, cmd)


@router.patch("/orgs/{orgId}/users/{userId}", response_model=MessageResponse, tags=["Org Users"])
async def update_org_user(
    orgId: int,
    userId: int,
    body: UpdateOrgUserRequest,
    user: SignedInUser = Depends(require_server_admin),
    session: AsyncSession = Depends(get_session),
):
    """Change the role of a member of the given org."""
    cmd = store.UpdateOrgUserCommand(org_id=orgId, user_id=userId, role=body.role)
    return await _update_org_user_helper(session, cmd)


async def _update_org_user_helper(
    session: AsyncSession, cmd: store.UpdateOrgUserCommand
) -> MessageResponse:
    if not OrgRole.is_valid(cmd.role):
        raise ApiError(400, "Invalid role specified")

    try:
        await store.update_org_user(session, cmd)
    except LastOrgAdminError:
        raise ApiError(400, "Cannot change role so that there is no organization admin left")
    except OrgUserNotFoundError:
        raise ApiError(404, "User not found in organization")
    except (OrgUsersError, SQLAlchemyError) as exc:
        raise ApiError(500, "Failed update org user", exc)

    return MessageResponse(message="Organization user updated")


# ---------------------------------------------------------------------------
# Remove
# ---------------------------------------------------------------------------

@router.delete("/org/users/{userId}", response_model=MessageResponse, tags=["Org Users"])
async def remove_org_user_for_current_org(
    userId: int,
    user: SignedInUser = Depends(authorize(ACTION_ORG_USERS_REMOVE)),
    session: AsyncSession = Depends(get_session),
):
    """Remove a member from the current org, deleting the account if orphaned."""
    cmd = store.RemoveOrgUserCommand(
        org_id=user.org_id,
        user_id=userId,
        should_delete_orphaned_user=True,
    )
    return await _remove_org_user_helper(session, cmd)


@router.delete("/orgs/{orgId}/users/{userId}", response_model=MessageResponse, tags=["Org Users"])
async def remove_org_user(
    orgId: int,
    userId: int,
    user: SignedInUser = Depends(require_server_admin),
    session: AsyncSession = Depends(get_session),
):
    """Remove a member from the given org. The account is never deleted."""
    cmd = store.RemoveOrgUserCommand(org_id=orgId, user_id=userId)
    return await _remove_org_user_helper(session, cmd)


async def _remove_org_user_helper(
    session: AsyncSession, cmd: store.RemoveOrgUserCommand
) -> MessageResponse:
    try:
        await store.remove_org_user(session, cmd)
    except LastOrgAdminError:
        raise ApiError(400, "Cannot remove last organization admin")
    except (UserNotFoundError, OrgUserNotFoundError):
        raise ApiError(404, "User not found in organization")
    except (OrgUsersError, SQLAlchemyError) as exc:
        raise ApiError(500, "Failed to remove user from organization", exc)

    if cmd.user_was_deleted:
        return MessageResponse(message="User deleted")
    return MessageResponse(message="User removed from organization")
