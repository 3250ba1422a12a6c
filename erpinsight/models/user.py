"""Caller identity models."""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class Role(str, Enum):
    """ERP user roles (closed set)."""
    ADMIN = "admin"
    CEO = "ceo"
    MANAGER = "manager"
    OPERATOR = "operator"
    USER = "user"


class Principal(BaseModel):
    """Authenticated caller: user id plus role."""

    user_id: str = Field(..., description="User identifier")
    role: str = Field(..., description="Role name; unknown roles are denied everything")
    name: Optional[str] = None
    email: Optional[str] = None

    def role_enum(self) -> Optional[Role]:
        try:
            return Role(self.role)
        except ValueError:
            return None
