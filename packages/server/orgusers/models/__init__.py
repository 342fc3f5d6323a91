# SQLModel definitions: imported here to ensure metadata is populated.
from .base import IDMixin, TimestampMixin  # noqa: F401
from .organization import Organization  # noqa: F401
from .user import User  # noqa: F401
from .org_user import OrgUser  # noqa: F401
