"""
Access-control role endpoints used by the users table role picker.

GET /api/access-control/roles           Role options assignable in an org
GET /api/access-control/builtin-roles   Roles bound to each built-in role
"""

from __future__ import annotations

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from orgusers.core.auth import SignedInUser, get_access_control, require_member
from orgusers.core.errors import ApiError
from orgusers.services.access_control import AccessControl
from orgusers_shared.schemas.access_control import RoleDTO

router = APIRouter()


def _ensure_enabled(ac: AccessControl) -> None:
    if ac.is_disabled():
        raise ApiError(404, "Access control is not enabled")


@router.get("/access-control/roles", response_model=List[RoleDTO], tags=["Access Control"])
async def list_roles(
    target_org_id: Optional[int] = Query(None, alias="targetOrgId"),
    user: SignedInUser = Depends(require_member),
    ac: AccessControl = Depends(get_access_control),
):
    """Roles that can be granted to users of the org."""
    _ensure_enabled(ac)
    return await ac.get_role_options(target_org_id or user.org_id)


@router.get(
    "/access-control/builtin-roles",
    response_model=Dict[str, List[RoleDTO]],
    tags=["Access Control"],
)
async def list_builtin_roles(
    target_org_id: Optional[int] = Query(None, alias="targetOrgId"),
    user: SignedInUser = Depends(require_member),
    ac: AccessControl = Depends(get_access_control),
):
    """Roles bound to Viewer, Editor, Admin and Server Admin."""
    _ensure_enabled(ac)
    return await ac.get_builtin_roles(target_org_id or user.org_id)
