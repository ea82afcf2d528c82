from datetime import date, datetime
import uuid
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    Enum,
    ForeignKey,
    Index,
    Integer,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bloodline.db.base import UTCDateTime, UUID, Base, utcnow
from bloodline.schemas.base_schema import BloodGroup

# Low-stock threshold given to lines created without explicit bounds
DEFAULT_MINIMUM_QUANTITY = 10
DEFAULT_MAXIMUM_QUANTITY = 100


class BloodInventory(Base):
    """
    Stock line: the quantity of one blood group held by one blood bank.

    There is at most one row per (blood_bank_id, blood_group). Quantities are
    changed in place by the inventory engine, never by inserting extra rows.
    """

    __tablename__ = "blood_inventory"

    # --- Columns ---
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(), primary_key=True, default=uuid.uuid4
    )
    blood_group: Mapped[BloodGroup] = mapped_column(
        Enum(BloodGroup), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)
    minimum_quantity: Mapped[int] = mapped_column(
        Integer, nullable=False, default=DEFAULT_MINIMUM_QUANTITY
    )
    maximum_quantity: Mapped[int] = mapped_column(
        Integer, nullable=False, default=DEFAULT_MAXIMUM_QUANTITY
    )
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    last_updated: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )

    # --- Relationships ---
    blood_bank_id: Mapped[uuid.UUID] = mapped_column(
        UUID(),
        ForeignKey("blood_banks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    blood_bank = relationship("BloodBank", back_populates="inventory")

    # --- Methods ---
    def __str__(self) -> str:
        return f"{self.blood_group.value} x{self.quantity} @ {self.blood_bank_id}"

    @property
    def is_low_stock(self) -> bool:
        return self.quantity < self.minimum_quantity

    # --- Table Configuration ---
    __table_args__ = (
        UniqueConstraint(
            "blood_bank_id", "blood_group", name="uq_inventory_bank_blood_group"
        ),
        CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
        Index("idx_inventory_group_quantity", "blood_group", "quantity"),
    )
