from enum import Enum
from typing import Generic, List, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


# --- Base Configuration ---
class BaseSchema(BaseModel):
    """Base schema for operation inputs: unknown fields are rejected"""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        frozen=False,
        extra="forbid",
        from_attributes=True,
    )


class ResponseSchema(BaseModel):
    """Base schema for read models built from ORM rows"""

    model_config = ConfigDict(from_attributes=True)


class PaginatedResponse(BaseModel, Generic[T]):
    items: List[T]
    total_items: int
    total_pages: int
    current_page: int
    page_size: int
    has_next: bool
    has_prev: bool


class BloodGroup(str, Enum):
    """Enum for valid blood groups"""

    A_POSITIVE = "A_POSITIVE"
    A_NEGATIVE = "A_NEGATIVE"
    B_POSITIVE = "B_POSITIVE"
    B_NEGATIVE = "B_NEGATIVE"
    AB_POSITIVE = "AB_POSITIVE"
    AB_NEGATIVE = "AB_NEGATIVE"
    O_POSITIVE = "O_POSITIVE"
    O_NEGATIVE = "O_NEGATIVE"

    @classmethod
    def get_values(cls) -> List[str]:
        """Get all valid blood group values"""
        return [item.value for item in cls]

    @classmethod
    def _missing_(cls, value):
        # Accept the short clinical notation as well ("O+", "ab-")
        if isinstance(value, str):
            short = {
                "A+": cls.A_POSITIVE,
                "A-": cls.A_NEGATIVE,
                "B+": cls.B_POSITIVE,
                "B-": cls.B_NEGATIVE,
                "AB+": cls.AB_POSITIVE,
                "AB-": cls.AB_NEGATIVE,
                "O+": cls.O_POSITIVE,
                "O-": cls.O_NEGATIVE,
            }
            return short.get(value.strip().upper())
        return None


class UserRole(str, Enum):

    DONOR = "DONOR"
    HOSPITAL = "HOSPITAL"
    BLOOD_BANK = "BLOOD_BANK"
    NGO = "NGO"
    ADMIN = "ADMIN"


class Gender(str, Enum):

    MALE = "MALE"
    FEMALE = "FEMALE"
    OTHER = "OTHER"


class RequestStatus(str, Enum):

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    FULFILLED = "FULFILLED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class Urgency(str, Enum):

    NORMAL = "NORMAL"
    URGENT = "URGENT"
    CRITICAL = "CRITICAL"


class DonationStatus(str, Enum):

    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
