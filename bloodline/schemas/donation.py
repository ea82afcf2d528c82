from datetime import date, datetime
from typing import Annotated, Optional
from uuid import UUID

from pydantic import Field, StringConstraints, field_validator, model_validator

from bloodline.schemas.base_schema import (
    BaseSchema,
    BloodGroup,
    DonationStatus,
    ResponseSchema,
)

DEFAULT_REJECTION_REASON = "Failed health screening"


class DonationSchedule(BaseSchema):
    donor_id: UUID
    blood_bank_id: UUID
    scheduled_date: datetime
    quantity: int = Field(1, gt=0, le=2, description="Units to collect")
    notes: Optional[Annotated[str, StringConstraints(max_length=2000)]] = None


class HealthCheckInput(BaseSchema):
    """Screening outcome recorded when a scheduled donation is completed."""

    is_eligible: bool
    hemoglobin_level: Optional[float] = Field(None, ge=0, le=25, description="g/dL")
    blood_pressure: Optional[
        Annotated[str, StringConstraints(pattern=r"^\d{2,3}/\d{2,3}$")]
    ] = Field(None, description="Systolic/diastolic, e.g. 120/80")
    weight: Optional[float] = Field(None, gt=0, le=300, description="kg")
    temperature: Optional[float] = Field(None, ge=30, le=45, description="Celsius")
    unit_serial_number: Optional[
        Annotated[str, StringConstraints(min_length=3, max_length=40)]
    ] = Field(None, description="Serial of the collected unit; generated when omitted")
    collected_by: Optional[Annotated[str, StringConstraints(max_length=150)]] = None
    rejection_reason: Optional[Annotated[str, StringConstraints(max_length=255)]] = None
    post_test_notes: Optional[Annotated[str, StringConstraints(max_length=2000)]] = None
    adverse_reaction: Optional[Annotated[str, StringConstraints(max_length=2000)]] = None
    donation_date: Optional[datetime] = Field(
        None, description="When the unit was collected; defaults to now"
    )

    @field_validator("donation_date")
    @classmethod
    def validate_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            raise ValueError("donation_date must be timezone-aware")
        return v

    @model_validator(mode="after")
    def validate_rejection_reason(self) -> "HealthCheckInput":
        if self.is_eligible and self.rejection_reason is not None:
            raise ValueError("rejection_reason only applies to ineligible donors")
        return self


class DonationUpdateInput(BaseSchema):
    reason: Optional[Annotated[str, StringConstraints(max_length=255)]] = None


class DonationResponse(ResponseSchema):
    id: UUID
    donor_id: UUID
    blood_bank_id: UUID
    blood_group: BloodGroup
    quantity: int
    scheduled_date: datetime
    donation_date: Optional[datetime] = None
    status: DonationStatus
    hemoglobin_level: Optional[float] = None
    blood_pressure: Optional[str] = None
    weight: Optional[float] = None
    temperature: Optional[float] = None
    is_eligible: bool
    rejection_reason: Optional[str] = None
    unit_serial_number: Optional[str] = None
    expiry_date: Optional[date] = None
    collected_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
