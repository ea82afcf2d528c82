from datetime import date, datetime
import uuid
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from bloodline.db.base import UTCDateTime, UUID, Base, utcnow
from bloodline.schemas.base_schema import BloodGroup, DonationStatus

# Minimum gap between two completed donations by the same donor
ELIGIBILITY_WINDOW_DAYS = 90

# Shelf life of a collected whole-blood unit
UNIT_SHELF_LIFE_DAYS = 35


class Donation(Base):
    """A scheduled or completed donation by one donor at one blood bank."""

    __tablename__ = "donations"

    # --- Columns ---
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(), primary_key=True, default=uuid.uuid4
    )
    blood_group: Mapped[BloodGroup] = mapped_column(
        Enum(BloodGroup), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    scheduled_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    donation_date: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True, index=True
    )
    status: Mapped[DonationStatus] = mapped_column(
        Enum(DonationStatus),
        default=DonationStatus.SCHEDULED,
        nullable=False,
        index=True,
    )

    # Health check
    hemoglobin_level: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    blood_pressure: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    weight: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    temperature: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_eligible: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    pre_test_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    post_test_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    adverse_reaction: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Collected unit
    unit_serial_number: Mapped[Optional[str]] = mapped_column(
        String(40), unique=True, nullable=True
    )
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    collected_by: Mapped[Optional[str]] = mapped_column(String(150), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False
    )

    # --- Relationships ---
    donor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    blood_bank_id: Mapped[uuid.UUID] = mapped_column(
        UUID(),
        ForeignKey("blood_banks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    donor = relationship("User", back_populates="donations")
    blood_bank = relationship("BloodBank", back_populates="donations")

    @validates("quantity")
    def validate_quantity(self, key, value):
        if value is None or value <= 0:
            raise ValueError("Donated quantity must be greater than 0")
        return value

    def __repr__(self) -> str:
        return (
            f"<Donation(id={self.id}, donor_id={self.donor_id}, "
            f"blood_group={self.blood_group}, status={self.status})>"
        )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_donation_quantity_positive"),
        Index("idx_donation_bank_status", "blood_bank_id", "status"),
        Index("idx_donation_donor_status", "donor_id", "status"),
    )
