"""
db_models.py — Document Models & Store Paths
District Data Console
"""

from datetime import date, datetime
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator
import enum


# ── Enums ─────────────────────────────────────────────────────────────────────
class LocationType(str, enum.Enum):
    CITY = "city"
    VILLAGE = "village"


# ── Store paths ───────────────────────────────────────────────────────────────
USERS_COLLECTION = ("users",)
DISTRICTS_COLLECTION = ("districts",)


def user_path(user_id: str) -> Tuple[str, ...]:
    return ("users", user_id)


def allocations_collection(user_id: str) -> Tuple[str, ...]:
    return ("userAllocations", user_id, "allocations")


def allocation_path(user_id: str, allocation_id: str) -> Tuple[str, ...]:
    return allocations_collection(user_id) + (allocation_id,)


def district_path(district: str) -> Tuple[str, ...]:
    return ("districts", district)


def villages_collection(district: str) -> Tuple[str, ...]:
    return ("districts", district, "villages")


def village_path(district: str, village: str) -> Tuple[str, ...]:
    return villages_collection(district) + (village,)


def records_collection(district: str, village: str) -> Tuple[str, ...]:
    return village_path(district, village) + ("data",)


def record_path(district: str, village: str, record_id: str) -> Tuple[str, ...]:
    return records_collection(district, village) + (record_id,)


def to_document(model: BaseModel) -> dict:
    """Store representation: camelCase keys, no id, ISO dates."""
    return model.model_dump(by_alias=True, exclude_none=True, exclude={"id"}, mode="json")


# ── Allocation ────────────────────────────────────────────────────────────────
class Allocation(BaseModel):
    """A time-bounded grant of one district location to one user."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    user_id: str = Field(alias="userId")
    user_email: str = Field(default="", alias="userEmail")
    district: str = ""
    location: Optional[str] = None
    location_type: Optional[LocationType] = Field(default=None, alias="locationType")
    taluka: Optional[str] = None
    # Older grants carry the location as `city`, `village` or a `villages` array.
    city: Optional[str] = None
    village: Optional[str] = None
    villages: Optional[List[str]] = None
    start_date: Optional[date] = Field(default=None, alias="startDate")
    end_date: Optional[date] = Field(default=None, alias="endDate")
    allocated_by: str = Field(default="", alias="allocatedBy")
    allocated_at: Optional[datetime] = Field(default=None, alias="allocatedAt")
    status: str = "active"

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def calendar_day(cls, v):
        if v in (None, ""):
            return None
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, str):
            return date.fromisoformat(v.strip()[:10])
        return v

    @property
    def primary_location(self) -> Optional[str]:
        return self.location or self.city or self.village

    def location_names(self) -> List[str]:
        names = list(self.villages or [])
        names.extend(n for n in (self.city, self.village, self.location) if n)
        return names


# ── Consumer data partition ───────────────────────────────────────────────────
class ConsumerRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    name: str = ""
    mobile_number: str = Field(default="", alias="mobileNumber")
    address: str = ""
    district_name: str = Field(default="", alias="districtName")
    village_name: str = Field(default="", alias="villageName")
    uploaded_by: str = Field(default="", alias="uploadedBy")
    uploaded_at: Optional[datetime] = Field(default=None, alias="uploadedAt")


class VillageMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    village_name: str = Field(alias="villageName")
    district_name: str = Field(alias="districtName")
    record_count: int = Field(default=0, alias="recordCount")
    uploaders: Dict[str, int] = Field(default_factory=dict)
    uploaded_by: str = Field(default="", alias="uploadedBy")
    uploaded_at: Optional[datetime] = Field(default=None, alias="uploadedAt")
    last_updated: Optional[datetime] = Field(default=None, alias="lastUpdated")
    file_name: str = Field(default="", alias="fileName")
    headers: List[str] = Field(default_factory=list)


class DistrictMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    has_villages: bool = Field(default=True, alias="hasVillages")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    last_updated: Optional[datetime] = Field(default=None, alias="lastUpdated")


class DistrictSummary(BaseModel):
    """District listing row."""

    model_config = ConfigDict(populate_by_name=True)

    district_name: str = Field(alias="districtName")
    total_consumers: int = Field(default=0, alias="totalConsumers")
    contributor_count: int = Field(default=0, alias="contributorCount")
    last_updated: Optional[datetime] = Field(default=None, alias="lastUpdated")


# ── Message history ───────────────────────────────────────────────────────────
MESSAGES_COLLECTION = ("messages",)


def message_path(message_id: str) -> Tuple[str, ...]:
    return ("messages", message_id)


class MessageType(str, enum.Enum):
    WHATSAPP = "whatsapp"
    TEXT = "text"
    VOICE = "voice"


class MessageRecord(BaseModel):
    """One bulk send, as kept in a sender's history."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    sent_by: str = Field(alias="sentBy")
    type: MessageType = MessageType.WHATSAPP
    message: str
    district: str
    village: Optional[str] = None
    area: str = ""
    recipient_count: int = Field(default=0, alias="recipientCount")
    actual_recipients: int = Field(default=0, alias="actualRecipients")
    failed_recipients: int = Field(default=0, alias="failedRecipients")
    send_status: str = Field(default="sent", alias="sendStatus")
    sent_at: Optional[datetime] = Field(default=None, alias="sentAt")
