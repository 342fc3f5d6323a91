"""Access-control schemas: permissions, roles and built-in role bindings."""

from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, Field

from .common import CamelModel


class Permission(BaseModel):
    action: str
    scope: str = ""


class RoleDTO(CamelModel):
    """A named role and the permissions it grants."""
    uid: str
    name: str
    display_name: str = ""
    description: str = ""
    group: str = ""
    global_: bool = Field(default=False, alias="global")
    permissions: List[Permission] = Field(default_factory=list)


# Built-in role name (Viewer, Editor, Admin, Server Admin) -> bound roles.
BuiltinRoles = Dict[str, List[RoleDTO]]
