"""
Visibility filter: decides which users a requester may see in listings.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from orgusers.core.config import Settings

if TYPE_CHECKING:
    from orgusers.core.auth import SignedInUser


def is_hidden_user(login: str, signed_in_user: "SignedInUser", settings: Settings) -> bool:
    """
    True when ``login`` is configured as hidden and the requester is neither
    a server admin nor that user.
    """
    if not login or signed_in_user.is_server_admin or login == signed_in_user.login:
        return False
    return login in settings.hidden_users
