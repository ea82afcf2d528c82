from datetime import datetime
import uuid
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from bloodline.db.base import UTCDateTime, UUID, Base, utcnow
from bloodline.schemas.base_schema import BloodGroup, Gender, RequestStatus, Urgency


class BloodRequest(Base):
    """Model representing a request for units of one blood group."""

    __tablename__ = "blood_requests"

    # --- Columns ---
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(), primary_key=True, default=uuid.uuid4
    )
    blood_group: Mapped[BloodGroup] = mapped_column(
        Enum(BloodGroup), nullable=False, index=True
    )
    quantity_needed: Mapped[int] = mapped_column(Integer, nullable=False)
    urgency: Mapped[Urgency] = mapped_column(
        Enum(Urgency), default=Urgency.NORMAL, nullable=False, index=True
    )
    patient_name: Mapped[str] = mapped_column(String(150), nullable=False)
    patient_age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    patient_gender: Mapped[Optional[Gender]] = mapped_column(Enum(Gender), nullable=True)
    required_by: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    purpose: Mapped[str] = mapped_column(String(255), nullable=False)
    medical_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    doctor_name: Mapped[Optional[str]] = mapped_column(String(150), nullable=True)
    doctor_contact: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    status: Mapped[RequestStatus] = mapped_column(
        Enum(RequestStatus), default=RequestStatus.PENDING, nullable=False, index=True
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    approved_by: Mapped[Optional[str]] = mapped_column(String(150), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    fulfilled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, nullable=False, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False
    )

    # --- Relationships ---
    requester_id: Mapped[uuid.UUID] = mapped_column(
        UUID(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    hospital_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(),
        ForeignKey("hospitals.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    blood_bank_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(),
        ForeignKey("blood_banks.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Blood bank that fulfils (or is asked to fulfil) the request",
    )

    requester = relationship("User", back_populates="blood_requests")
    hospital = relationship("Hospital", back_populates="blood_requests")
    blood_bank = relationship("BloodBank", back_populates="blood_requests")

    # --- Validation Methods ---
    @validates("quantity_needed")
    def validate_quantity_needed(self, key, value):
        """Validate that requested quantity is positive."""
        if value is None or value <= 0:
            raise ValueError("Requested quantity must be greater than 0")
        return value

    def __repr__(self) -> str:
        return (
            f"<BloodRequest(id={self.id}, blood_group={self.blood_group}, "
            f"quantity_needed={self.quantity_needed}, status={self.status})>"
        )

    # --- Table Configuration for Performance ---
    __table_args__ = (
        CheckConstraint("quantity_needed > 0", name="ck_request_quantity_positive"),
        Index("idx_request_bank_status", "blood_bank_id", "status"),
        Index("idx_request_status_urgency", "status", "urgency"),
        Index("idx_request_group_status", "blood_group", "status"),
    )
