from districtdesk.models.user_model import ROLE_ORDER, User, UserRole, UserStatus
from districtdesk.models.db_models import (
    Allocation,
    ConsumerRecord,
    DistrictMeta,
    DistrictSummary,
    LocationType,
    MessageRecord,
    MessageType,
    VillageMeta,
)

__all__ = [
    "ROLE_ORDER",
    "User",
    "UserRole",
    "UserStatus",
    "Allocation",
    "ConsumerRecord",
    "DistrictMeta",
    "DistrictSummary",
    "LocationType",
    "MessageRecord",
    "MessageType",
    "VillageMeta",
]
