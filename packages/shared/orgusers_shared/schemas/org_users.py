"""Org user membership schemas.

Request bodies keep ``role`` as a plain string so that an unknown role
reaches the handler and is rejected there with a 400, rather than failing
request binding.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field

from .common import CamelModel

# Mapping of access-control action -> allowed, attached per returned user.
AccessControlMetadata = Dict[str, bool]


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class AddOrgUserRequest(CamelModel):
    """Add an existing user to an organization."""
    login_or_email: str = Field(min_length=1)
    role: str = Field(min_length=1)


class UpdateOrgUserRequest(CamelModel):
    """Change a member's organization role."""
    role: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class OrgUserDTO(CamelModel):
    org_id: int
    user_id: int
    email: str = ""
    name: str = ""
    avatar_url: str = ""
    login: str
    role: str
    last_seen_at: Optional[datetime] = None
    last_seen_at_age: str = "?"
    access_control: Optional[AccessControlMetadata] = None


class UserLookupDTO(CamelModel):
    """Minimal identity used by typeahead pickers."""
    user_id: int
    login: str
    avatar_url: str = ""


class SearchOrgUsersQueryResult(CamelModel):
    total_count: int = 0
    org_users: List[OrgUserDTO] = Field(default_factory=list)
    page: int = 1
    per_page: int = 1000
