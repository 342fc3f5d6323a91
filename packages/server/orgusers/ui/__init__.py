"""Administrative UI components for org user management."""

from .role_options import AccessControlClient, RoleOptionsSource
from .users_table import UsersTable, UsersTableView

__all__ = ["AccessControlClient", "RoleOptionsSource", "UsersTable", "UsersTableView"]
