"""User model."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IDMixin, TimestampMixin


def _never_seen() -> datetime:
    # New accounts start out "seen" ten years ago so they sort as inactive.
    return datetime.now(timezone.utc) - timedelta(days=365 * 10)


class User(IDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"

    login: str = Field(nullable=False, unique=True, index=True)
    email: str = Field(nullable=False, unique=True, index=True)
    name: str = Field(default="")
    org_id: Optional[int] = Field(default=None, foreign_key="orgs.id")  # active org
    is_admin: bool = Field(default=False, nullable=False)  # server admin
    last_seen_at: datetime = Field(
        default_factory=_never_seen,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
