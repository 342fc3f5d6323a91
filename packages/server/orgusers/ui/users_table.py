"""
Org users table.

A stateful view component: it holds the users its owner passes in, the role
options fetched for the org, and which row (if any) has its delete
confirmation open. ``render()`` produces a ``UsersTableView`` that a
template or client renders as a table. Mutations are never performed here;
they are handed to the owner through ``on_role_change`` and
``on_remove_user``, and the owner passes the updated users back in with
``set_users()``.
"""

from __future__ import annotations

from typing import Callable, Literal, Optional, Sequence

import structlog
from pydantic import BaseModel, Field

from orgusers.services.access_control import (
    ACTION_ORG_USERS_REMOVE,
    ACTION_ORG_USERS_ROLE_UPDATE,
)
from orgusers.ui.role_options import RoleOptionsSource
from orgusers_shared.schemas.access_control import BuiltinRoles, RoleDTO
from orgusers_shared.schemas.common import OrgRole
from orgusers_shared.schemas.org_users import OrgUserDTO

log = structlog.get_logger()

RoleChangeCallback = Callable[[OrgRole, OrgUserDTO], None]
RemoveUserCallback = Callable[[OrgUserDTO], None]

HEADERS = ["", "Login", "Email", "Name", "Seen", "Role", ""]


# ---------------------------------------------------------------------------
# View models
# ---------------------------------------------------------------------------

class RolePickerView(BaseModel):
    kind: Literal["builtin", "extended"]
    value: str
    disabled: bool
    options: list[str] = Field(default_factory=lambda: [r.value for r in OrgRole])
    role_options: list[RoleDTO] = Field(default_factory=list)
    builtin_roles: BuiltinRoles = Field(default_factory=dict)


class ConfirmPromptView(BaseModel):
    title: str = "Delete"
    body: str
    confirm_text: str = "Delete"


class UserRowView(BaseModel):
    key: str
    user_id: int
    avatar_url: str
    login: str
    email: str
    name: str
    seen: str
    role_picker: RolePickerView
    can_remove: bool
    confirm: Optional[ConfirmPromptView] = None


class UsersTableView(BaseModel):
    headers: list[str] = Field(default_factory=lambda: list(HEADERS))
    rows: list[UserRowView] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Component
# ---------------------------------------------------------------------------

class UsersTable:
    """Renders org users with a role picker and a confirmed delete action."""

    def __init__(
        self,
        users: Sequence[OrgUserDTO],
        on_role_change: RoleChangeCallback,
        on_remove_user: RemoveUserCallback,
        *,
        org_id: Optional[int] = None,
        access_control_enabled: bool = False,
        role_source: Optional[RoleOptionsSource] = None,
    ):
        self.users = list(users)
        self.org_id = org_id
        self.on_role_change = on_role_change
        self.on_remove_user = on_remove_user
        self.access_control_enabled = access_control_enabled
        self._role_source = role_source

        self.role_options: list[RoleDTO] = []
        self.builtin_roles: BuiltinRoles = {}
        self._pending_removal: Optional[int] = None
        self._fetch_token = 0

    # -- lifecycle ----------------------------------------------------------

    async def mount(self) -> None:
        """First render: load role options for the current org."""
        await self._fetch_options()

    async def set_org_id(self, org_id: Optional[int]) -> None:
        """Switch org and reload role options for it."""
        if org_id == self.org_id:
            return
        self.org_id = org_id
        await self._fetch_options()

    def set_users(self, users: Sequence[OrgUserDTO]) -> None:
        self.users = list(users)
        if self._pending_removal is not None and self._find(self._pending_removal) is None:
            self._pending_removal = None

    async def _fetch_options(self) -> None:
        if not self.access_control_enabled or self._role_source is None:
            return

        self._fetch_token += 1
        token = self._fetch_token
        org_id = self.org_id
        try:
            options = await self._role_source.fetch_role_options(org_id)
            builtin_roles = await self._role_source.fetch_builtin_roles(org_id)
        except Exception as exc:
            # Any failure leaves the picker with empty option lists.
            log.error("users_table.role_options_failed", org_id=org_id, error=repr(exc))
            if token == self._fetch_token:
                self.role_options = []
                self.builtin_roles = {}
            return

        # A newer fetch was started while this one was in flight.
        if token != self._fetch_token:
            log.debug("users_table.stale_role_options", org_id=org_id)
            return
        self.role_options = options
        self.builtin_roles = builtin_roles

    # -- permissions --------------------------------------------------------

    def has_permission_in_metadata(self, action: str, user: OrgUserDTO) -> bool:
        """Rows without metadata are treated as fully permitted."""
        if not self.access_control_enabled or user.access_control is None:
            return True
        return bool(user.access_control.get(action))

    def can_update_role(self, user: OrgUserDTO) -> bool:
        return self.has_permission_in_metadata(ACTION_ORG_USERS_ROLE_UPDATE, user)

    def can_remove(self, user: OrgUserDTO) -> bool:
        return self.has_permission_in_metadata(ACTION_ORG_USERS_REMOVE, user)

    # -- interactions -------------------------------------------------------

    def _find(self, user_id: int) -> Optional[OrgUserDTO]:
        for user in self.users:
            if user.user_id == user_id:
                return user
        return None

    def _get(self, user_id: int) -> OrgUserDTO:
        user = self._find(user_id)
        if user is None:
            raise KeyError(f"user {user_id} is not in the table")
        return user

    def change_role(self, user_id: int, new_role: str) -> bool:
        """Role picker change. Returns False when the picker is disabled."""
        user = self._get(user_id)
        if not self.can_update_role(user):
            log.debug("users_table.role_change_blocked", user_id=user_id)
            return False
        if not OrgRole.is_valid(new_role):
            raise ValueError(f"unknown role: {new_role}")
        self.on_role_change(OrgRole(new_role), user)
        return True

    def request_remove(self, user_id: int) -> bool:
        """Delete button click: open the confirmation for this row."""
        user = self._get(user_id)
        if not user.login or not self.can_remove(user):
            return False
        self._pending_removal = user_id
        return True

    def confirm_remove(self) -> None:
        if self._pending_removal is None:
            return
        user = self._get(self._pending_removal)
        self._pending_removal = None
        self.on_remove_user(user)

    def dismiss_remove(self) -> None:
        self._pending_removal = None

    @property
    def pending_removal(self) -> Optional[OrgUserDTO]:
        if self._pending_removal is None:
            return None
        return self._find(self._pending_removal)

    # -- rendering ----------------------------------------------------------

    def _role_picker(self, user: OrgUserDTO) -> RolePickerView:
        disabled = not self.can_update_role(user)
        if self.access_control_enabled:
            return RolePickerView(
                kind="extended",
                value=user.role,
                disabled=disabled,
                role_options=self.role_options,
                builtin_roles=self.builtin_roles,
            )
        return RolePickerView(kind="builtin", value=user.role, disabled=disabled)

    def render(self) -> UsersTableView:
        rows = []
        for index, user in enumerate(self.users):
            can_remove = self.can_remove(user)
            confirm = None
            if can_remove and self._pending_removal == user.user_id:
                confirm = ConfirmPromptView(
                    body=f"Are you sure you want to delete user {user.login}?"
                )
            rows.append(
                UserRowView(
                    key=f"{user.user_id}-{index}",
                    user_id=user.user_id,
                    avatar_url=user.avatar_url,
                    login=user.login,
                    email=user.email,
                    name=user.name,
                    seen=user.last_seen_at_age,
                    role_picker=self._role_picker(user),
                    can_remove=can_remove,
                    confirm=confirm,
                )
            )
        return UsersTableView(rows=rows)
