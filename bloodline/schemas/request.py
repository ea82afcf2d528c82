from datetime import datetime
from typing import Annotated, Optional
from uuid import UUID

from pydantic import Field, StringConstraints

from bloodline.schemas.base_schema import (
    BaseSchema,
    BloodGroup,
    Gender,
    RequestStatus,
    ResponseSchema,
    Urgency,
)


class BloodRequestCreate(BaseSchema):
    requester_id: UUID = Field(..., description="Person placing the request")
    hospital_id: Optional[UUID] = Field(None, description="Requesting hospital")
    blood_bank_id: Optional[UUID] = Field(
        None, description="Blood bank the request is addressed to"
    )
    blood_group: BloodGroup
    quantity_needed: int = Field(
        ..., gt=0, le=100, description="Number of units requested (1-100)"
    )
    urgency: Urgency = Urgency.NORMAL
    patient_name: Annotated[str, StringConstraints(min_length=1, max_length=150)]
    patient_age: Optional[int] = Field(None, ge=0, le=150)
    patient_gender: Optional[Gender] = None
    required_by: datetime
    purpose: Annotated[str, StringConstraints(min_length=1, max_length=255)]
    medical_notes: Optional[Annotated[str, StringConstraints(max_length=2000)]] = None
    doctor_name: Optional[Annotated[str, StringConstraints(max_length=150)]] = None
    doctor_contact: Optional[Annotated[str, StringConstraints(max_length=20)]] = None


class ApproveRequestInput(BaseSchema):
    blood_bank_id: UUID
    approved_by: Optional[Annotated[str, StringConstraints(max_length=150)]] = None


class RejectRequestInput(BaseSchema):
    reason: Annotated[str, StringConstraints(min_length=1, max_length=255)]


class CancelRequestInput(BaseSchema):
    reason: Optional[Annotated[str, StringConstraints(max_length=255)]] = None


class RequestListFilter(BaseSchema):
    """Page and filters for listing blood requests, newest first."""

    page: int = Field(default=1, ge=1, description="Page number (1-based)")
    page_size: int = Field(
        default=20, ge=1, le=100, description="Items per page (max 100)"
    )
    status: Optional[RequestStatus] = None
    urgency: Optional[Urgency] = None
    blood_group: Optional[BloodGroup] = None
    blood_bank_id: Optional[UUID] = None


class BloodRequestResponse(ResponseSchema):
    id: UUID
    requester_id: UUID
    hospital_id: Optional[UUID] = None
    blood_bank_id: Optional[UUID] = None
    blood_group: BloodGroup
    quantity_needed: int
    urgency: Urgency
    patient_name: str
    patient_age: Optional[int] = None
    patient_gender: Optional[Gender] = None
    required_by: datetime
    purpose: str
    status: RequestStatus
    rejection_reason: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    fulfilled_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
