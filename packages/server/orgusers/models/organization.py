"""Organization model."""

from sqlmodel import Field, SQLModel

from .base import IDMixin, TimestampMixin


class Organization(IDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "orgs"

    name: str = Field(nullable=False, unique=True, index=True)
