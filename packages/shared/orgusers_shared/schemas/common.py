from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class OrgRole(str, Enum):
    VIEWER = "Viewer"
    EDITOR = "Editor"
    ADMIN = "Admin"

    @classmethod
    def is_valid(cls, value: Optional[str]) -> bool:
        return value in {r.value for r in cls}


# Built-in role name for server administrators, used in role bindings.
SERVER_ADMIN_ROLE = "Server Admin"


class CamelModel(BaseModel):
    """Base for JSON bodies that use camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MessageResponse(BaseModel):
    message: str


class UserIdMessageResponse(CamelModel):
    message: str
    user_id: int
