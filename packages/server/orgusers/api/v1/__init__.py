"""
API v1 Router

Current-org endpoints live under /org, cross-org endpoints under /orgs/{orgId}.
"""

from fastapi import APIRouter

from . import access_control, org_users

router = APIRouter()

router.include_router(org_users.router)
router.include_router(access_control.router)
