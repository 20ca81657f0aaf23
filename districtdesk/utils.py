"""
utils.py — Validation, Auth Helpers & Shared Utilities
District Data Console
"""

from datetime import date, datetime, timedelta, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo
from passlib.context import CryptContext
from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from fastapi import HTTPException, status
from districtdesk.config import settings
from districtdesk.models import MessageType, UserRole

# ── Password hashing ──────────────────────────────────────────────────────────
_pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(plain: str) -> str:
    return _pwd_ctx.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    return _pwd_ctx.verify(plain, hashed)


# ── JWT ───────────────────────────────────────────────────────────────────────
def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode["exp"] = expire
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


# ── Calendar ──────────────────────────────────────────────────────────────────
def today(tz: Optional[str] = None) -> date:
    """Current calendar day in the configured timezone. Never cached."""
    return datetime.now(ZoneInfo(tz or settings.TIMEZONE)).date()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Pydantic Schemas ──────────────────────────────────────────────────────────
class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int = settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60


class UserCreate(BaseModel):
    email: str
    name: str
    password: str
    role: UserRole
    phone: str = ""

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip()
        if "@" not in v:
            raise ValueError("email must contain '@'")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < 8:
            raise ValueError("password must be at least 8 characters")
        return v

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: UserRole) -> UserRole:
        if v == UserRole.MAIN_ADMIN:
            raise ValueError("main_admin accounts cannot be created")
        return v


class UserUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None
    role: Optional[UserRole] = None

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and len(v) < 8:
            raise ValueError("password must be at least 8 characters")
        return v


class LocationGrant(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    start_date: Optional[date] = Field(default=None, alias="startDate")
    end_date: Optional[date] = Field(default=None, alias="endDate")

    @model_validator(mode="after")
    def validate_window(self) -> "LocationGrant":
        if (self.start_date is None) != (self.end_date is None):
            raise ValueError(f"{self.name}: provide both startDate and endDate, or neither")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError(f"{self.name}: start date cannot be after end date")
        return self


class AllocationGrantRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    district: str
    locations: List[LocationGrant] = Field(min_length=1)
    granted_by: Optional[str] = Field(default=None, alias="grantedBy")


class MessageRequest(BaseModel):
    district: str
    village: Optional[str] = None
    message: str
    type: MessageType = MessageType.WHATSAPP

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("message cannot be empty")
        if len(v) > settings.MESSAGE_MAX_LENGTH:
            raise ValueError(f"message exceeds {settings.MESSAGE_MAX_LENGTH} characters")
        return v


# ── Pagination Helper ─────────────────────────────────────────────────────────
def paginate(items: list, page: int = 1, page_size: int = 50) -> dict:
    total = len(items)
    start = (page - 1) * page_size
    end = start + page_size
    return {
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": (total + page_size - 1) // page_size,
        "data": items[start:end],
    }
