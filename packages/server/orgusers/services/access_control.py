"""
Access control: fixed roles, built-in role bindings, capability checks and
per-resource permission metadata.

Permissions are ``(action, scope)`` pairs. A scope is ``*``, a resource
wildcard such as ``users:*`` / ``users:id:*``, or a single resource
``users:id:<id>``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Optional

from orgusers.core.config import Settings
from orgusers_shared.schemas.access_control import BuiltinRoles, Permission, RoleDTO
from orgusers_shared.schemas.common import SERVER_ADMIN_ROLE, OrgRole
from orgusers_shared.schemas.org_users import AccessControlMetadata

if TYPE_CHECKING:
    from orgusers.core.auth import SignedInUser

# ---------------------------------------------------------------------------
# Actions and scopes
# ---------------------------------------------------------------------------

ACTION_ORG_USERS_READ = "org.users:read"
ACTION_ORG_USERS_ADD = "org.users:add"
ACTION_ORG_USERS_ROLE_UPDATE = "org.users.role:update"
ACTION_ORG_USERS_REMOVE = "org.users:remove"

USERS_RESOURCE = "users"
SCOPE_ALL = "*"
SCOPE_USERS_ALL = "users:*"


def scope(*parts: str) -> str:
    return ":".join(parts)


# ---------------------------------------------------------------------------
# Fixed roles and built-in bindings
# ---------------------------------------------------------------------------

ORG_USERS_READER = RoleDTO(
    uid="fixed_org_users_reader",
    name="fixed:org.users:reader",
    display_name="Organization user reader",
    description="Read all users and their roles in the organization.",
    group="User administration",
    global_=True,
    permissions=[Permission(action=ACTION_ORG_USERS_READ, scope=SCOPE_USERS_ALL)],
)

ORG_USERS_WRITER = RoleDTO(
    uid="fixed_org_users_writer",
    name="fixed:org.users:writer",
    display_name="Organization user writer",
    description="Add, remove and change the role of users in the organization.",
    group="User administration",
    global_=True,
    permissions=[
        Permission(action=ACTION_ORG_USERS_READ, scope=SCOPE_USERS_ALL),
        Permission(action=ACTION_ORG_USERS_ADD, scope=SCOPE_USERS_ALL),
        Permission(action=ACTION_ORG_USERS_ROLE_UPDATE, scope=SCOPE_USERS_ALL),
        Permission(action=ACTION_ORG_USERS_REMOVE, scope=SCOPE_USERS_ALL),
    ],
)

FIXED_ROLES: list[RoleDTO] = [ORG_USERS_READER, ORG_USERS_WRITER]

BUILTIN_ROLE_BINDINGS: dict[str, list[RoleDTO]] = {
    OrgRole.VIEWER.value: [],
    OrgRole.EDITOR.value: [],
    OrgRole.ADMIN.value: [ORG_USERS_WRITER],
    SERVER_ADMIN_ROLE: [ORG_USERS_WRITER],
}


# ---------------------------------------------------------------------------
# Capability checks
# ---------------------------------------------------------------------------

def _scope_matches(granted: str, target: str) -> bool:
    if granted == SCOPE_ALL or granted == target:
        return True
    if granted.endswith(":*"):
        return target.startswith(granted[:-1])
    return False


def has_access(permissions: Iterable[Permission], action: str, target_scope: str) -> bool:
    """Does any permission grant ``action`` on ``target_scope``?"""
    return any(
        p.action == action and _scope_matches(p.scope, target_scope)
        for p in permissions
    )


def get_resources_metadata(
    permissions: Iterable[Permission],
    resource: str,
    resource_ids: set[str],
) -> dict[str, AccessControlMetadata]:
    """
    Map each resource id to the actions the permissions grant on it.

    Global scopes (``*``, ``<resource>:*``, ``<resource>:id:*``) grant the
    action on every id; ``<resource>:id:<id>`` grants it on that id only.
    Ids not in ``resource_ids`` never appear in the result.
    """
    all_scopes = {SCOPE_ALL, scope(resource, "*"), scope(resource, "id", "*")}
    id_prefix = scope(resource, "id") + ":"

    result: dict[str, AccessControlMetadata] = {}
    for p in permissions:
        if p.scope in all_scopes:
            for resource_id in resource_ids:
                result.setdefault(resource_id, {})[p.action] = True
        elif p.scope.startswith(id_prefix):
            resource_id = p.scope[len(id_prefix):]
            if resource_id in resource_ids:
                result.setdefault(resource_id, {})[p.action] = True
    return result


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class AccessControl:
    """Resolves permissions and role options for signed-in users."""

    def __init__(self, settings: Settings):
        self._settings = settings

    def is_disabled(self) -> bool:
        return not self._settings.access_control_enabled

    def builtin_roles_for(self, user: "SignedInUser") -> list[str]:
        roles = []
        if user.org_role:
            roles.append(user.org_role)
        if user.is_server_admin:
            roles.append(SERVER_ADMIN_ROLE)
        return roles

    async def get_user_permissions(self, user: "SignedInUser") -> list[Permission]:
        permissions: list[Permission] = []
        for builtin in self.builtin_roles_for(user):
            for role in BUILTIN_ROLE_BINDINGS.get(builtin, []):
                permissions.extend(role.permissions)
        return permissions

    async def evaluate(self, user: "SignedInUser", action: str, target_scope: str) -> bool:
        permissions = await self.get_user_permissions(user)
        return has_access(permissions, action, target_scope)

    async def get_role_options(self, org_id: Optional[int] = None) -> list[RoleDTO]:
        # Fixed roles are global; org_id is accepted for org-scoped custom roles.
        return list(FIXED_ROLES)

    async def get_builtin_roles(self, org_id: Optional[int] = None) -> BuiltinRoles:
        return {name: list(roles) for name, roles in BUILTIN_ROLE_BINDINGS.items()}


async def get_user_access_control_metadata(
    ac: Optional[AccessControl],
    user: "SignedInUser",
    requested: bool,
    resource_ids: set[str],
) -> Optional[dict[str, AccessControlMetadata]]:
    """
    Per-user metadata for a listing, or None when access control is off,
    not requested, or the requester holds no permissions at all.
    """
    if ac is None or ac.is_disabled() or not requested:
        return None

    permissions = await ac.get_user_permissions(user)
    if not permissions:
        return None
    return get_resources_metadata(permissions, USERS_RESOURCE, resource_ids)
