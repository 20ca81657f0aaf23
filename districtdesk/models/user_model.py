"""
user_model.py — User & Role Model
District Data Console
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
import enum


class UserRole(str, enum.Enum):
    MAIN_ADMIN = "main_admin"
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    USER = "user"

    @property
    def rank(self) -> int:
        """0 for main_admin, increasing as privilege decreases."""
        return ROLE_ORDER.index(self)

    @property
    def child_role(self) -> Optional["UserRole"]:
        """The role this role may create, or None for plain users."""
        idx = self.rank + 1
        return ROLE_ORDER[idx] if idx < len(ROLE_ORDER) else None

    @property
    def parent_role(self) -> Optional["UserRole"]:
        return ROLE_ORDER[self.rank - 1] if self.rank > 0 else None

    def outranks(self, other: "UserRole") -> bool:
        return self.rank < other.rank


ROLE_ORDER = [UserRole.MAIN_ADMIN, UserRole.SUPER_ADMIN, UserRole.ADMIN, UserRole.USER]


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class User(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    email: str
    name: str = ""
    phone: str = ""
    role: UserRole
    status: UserStatus = UserStatus.ACTIVE
    created_by: str = Field(default="", alias="createdBy")
    creator_id: Optional[str] = Field(default=None, alias="creatorId")
    password_hash: str = Field(default="", alias="passwordHash", repr=False)
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    # Legacy documents store "Active" / "Inactive".
    @field_validator("status", mode="before")
    @classmethod
    def normalise_status(cls, v):
        return v.lower() if isinstance(v, str) else v

    @field_validator("created_by", mode="before")
    @classmethod
    def normalise_creator(cls, v):
        return v or ""

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    @property
    def is_root(self) -> bool:
        return self.role == UserRole.MAIN_ADMIN

    def public(self) -> dict:
        """Serialisable view without credentials."""
        return self.model_dump(by_alias=True, exclude={"password_hash"}, mode="json")
