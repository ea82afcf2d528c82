from datetime import date, datetime, timedelta
import uuid
from typing import Optional

from sqlalchemy import Boolean, Date, Enum, Float, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bloodline.db.base import UTCDateTime, UUID, Base, utcnow
from bloodline.models.donation import ELIGIBILITY_WINDOW_DAYS
from bloodline.schemas.base_schema import BloodGroup, Gender, UserRole


class User(Base):
    """A person on the platform: donor, facility staff or administrator."""

    __tablename__ = "users"

    # --- Columns ---
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(), primary_key=True, default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    phone: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole), default=UserRole.DONOR, nullable=False, index=True
    )

    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    gender: Mapped[Optional[Gender]] = mapped_column(Enum(Gender), nullable=True)
    blood_group: Mapped[Optional[BloodGroup]] = mapped_column(
        Enum(BloodGroup), nullable=True, index=True
    )
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    pincode: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    country: Mapped[str] = mapped_column(String(60), default="India", nullable=False)
    weight: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    last_donation: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )
    medical_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False
    )

    # --- Relationships ---
    blood_requests = relationship(
        "BloodRequest",
        back_populates="requester",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    donations = relationship(
        "Donation",
        back_populates="donor",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    managed_blood_bank = relationship(
        "BloodBank", back_populates="manager", uselist=False, passive_deletes=True
    )
    hospital = relationship(
        "Hospital", back_populates="contact_person", uselist=False, passive_deletes=True
    )

    # --- Methods ---
    def __str__(self) -> str:
        return f"{self.last_name} ({self.email})"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def days_until_eligible(self, now: datetime) -> int:
        """Whole days left before the donor may give again (0 when eligible)."""
        if self.last_donation is None:
            return 0
        next_eligible = self.last_donation + timedelta(days=ELIGIBILITY_WINDOW_DAYS)
        if now >= next_eligible:
            return 0
        remaining = next_eligible - now
        return remaining.days + (1 if remaining.seconds or remaining.microseconds else 0)

    def is_eligible_to_donate(self, now: datetime) -> bool:
        return self.days_until_eligible(now) == 0

    # --- Table Configuration for Performance ---
    __table_args__ = (
        Index("idx_users_donor_search", "role", "blood_group", "city"),
        Index("idx_users_last_donation", "last_donation"),
    )
