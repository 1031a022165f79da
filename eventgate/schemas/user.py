from enum import Enum
from typing import Optional

from pydantic import BaseModel


class RoleEnum(str, Enum):
    user = "user"
    admin = "admin"
    superuser = "superuser"


class UserInfo(BaseModel):
    """Display identity of a participant or operator, as resolved by the name chain"""
    user_id: str
    full_name: str
    email: Optional[str] = None
    source: str  # name of the strategy that produced it
