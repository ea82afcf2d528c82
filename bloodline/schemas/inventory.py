from datetime import datetime
from typing import Annotated, Dict, List, Optional
from uuid import UUID

from pydantic import Field, StringConstraints

from bloodline.schemas.base_schema import (
    BaseSchema,
    BloodGroup,
    DonationStatus,
    RequestStatus,
    ResponseSchema,
)

LocationName = Annotated[str, StringConstraints(min_length=1, max_length=100)]


class AvailabilityFilter(BaseSchema):
    blood_group: Optional[BloodGroup] = None
    city: Optional[LocationName] = None
    state: Optional[LocationName] = None
    min_quantity: int = Field(1, ge=1, description="Only lines holding at least this many units")


class DonorSearchFilter(BaseSchema):
    blood_group: Optional[BloodGroup] = None
    city: Optional[LocationName] = None
    state: Optional[LocationName] = None


class StockLineView(ResponseSchema):
    id: UUID
    blood_group: BloodGroup
    quantity: int
    minimum_quantity: int
    is_low_stock: bool
    last_updated: datetime
    blood_bank_id: UUID
    blood_bank_name: str
    address: str
    city: str
    state: str
    phone: str
    operating_hours: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class DonorView(ResponseSchema):
    id: UUID
    first_name: str
    last_name: str
    email: str
    phone: str
    blood_group: Optional[BloodGroup] = None
    city: Optional[str] = None
    state: Optional[str] = None
    last_donation: Optional[datetime] = None


class AggregateStats(ResponseSchema):
    per_group_totals: Dict[BloodGroup, int]
    per_group_averages: Dict[BloodGroup, float]
    request_counts_by_status: Dict[RequestStatus, int]
    donation_counts_by_status: Dict[DonationStatus, int]


class BloodBankDashboard(ResponseSchema):
    blood_bank_id: UUID
    total_units: int
    blood_group_distribution: Dict[BloodGroup, int]
    low_stock_groups: List[BloodGroup]
    todays_donations: int
    pending_donations: int
    pending_requests: int
    critical_requests: int


class DonorStats(ResponseSchema):
    donor_id: UUID
    total_donations: int
    last_donation_date: Optional[datetime] = None
    next_eligible_date: Optional[datetime] = None
    total_units_contributed: int
    lives_impacted: int
    pending_donations: int
