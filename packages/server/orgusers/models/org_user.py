"""User-Organization membership (join table)."""

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IDMixin, TimestampMixin


class OrgUser(IDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "org_users"
    __table_args__ = (sa.UniqueConstraint("org_id", "user_id", name="uq_org_users_org_user"),)

    org_id: int = Field(foreign_key="orgs.id", nullable=False, index=True)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    role: str = Field(nullable=False, default="Viewer")  # Viewer | Editor | Admin
