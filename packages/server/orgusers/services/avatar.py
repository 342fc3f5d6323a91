"""Avatar URLs derived from a user's email address."""

from __future__ import annotations

import hashlib

from orgusers.core.config import Settings

DEFAULT_AVATAR_PATH = "/public/img/user_profile.png"


def gravatar_url(email: str, settings: Settings) -> str:
    if settings.disable_gravatar:
        return settings.app_sub_url + DEFAULT_AVATAR_PATH
    if not email:
        return ""
    digest = hashlib.md5(email.strip().lower().encode()).hexdigest()
    return f"{settings.app_sub_url}/avatar/{digest}"
