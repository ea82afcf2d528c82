"""
Populate a database with demo blood banks, a hospital, donors and stock.

Run with ``python -m bloodline.seed``. Rows are looked up by their unique
keys first, so running the script again leaves existing data untouched.
"""

import asyncio
from datetime import date, datetime, timezone
import random
from typing import Any, Dict, Optional, Type

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bloodline.config import get_settings
from bloodline.database import Database
from bloodline.db.base import Base
from bloodline.models.donation import Donation
from bloodline.models.facility import BloodBank, Hospital
from bloodline.models.inventory import BloodInventory
from bloodline.models.user import User
from bloodline.schemas.base_schema import (
    BloodGroup,
    DonationStatus,
    Gender,
    UserRole,
)
from bloodline.utils.logging_config import configure_logging, get_logger

logger = get_logger(__name__)

ADMIN = {
    "email": "admin@bloodbank.com",
    "role": UserRole.ADMIN,
    "first_name": "System",
    "last_name": "Administrator",
    "phone": "+919876543210",
    "city": "Mumbai",
    "state": "Maharashtra",
    "is_active": True,
    "is_verified": True,
}

BLOOD_BANKS = [
    {
        "name": "Central Blood Bank",
        "registration_no": "BB-MH-001-2024",
        "email": "contact@centralbloodbank.com",
        "phone": "+912226789012",
        "address": "123 Main Street, Andheri",
        "city": "Mumbai",
        "state": "Maharashtra",
        "pincode": "400058",
        "latitude": 19.1136,
        "longitude": 72.8697,
        "operating_hours": "24/7",
        "is_active": True,
        "is_verified": True,
    },
    {
        "name": "Lifesaver Blood Bank",
        "registration_no": "BB-DL-002-2024",
        "email": "info@lifesaverbloodbank.com",
        "phone": "+911126543210",
        "address": "456 MG Road, Connaught Place",
        "city": "New Delhi",
        "state": "Delhi",
        "pincode": "110001",
        "latitude": 28.6304,
        "longitude": 77.2177,
        "operating_hours": "8 AM - 8 PM",
        "is_active": True,
        "is_verified": True,
    },
]

# Inclusive range of starting units per blood group, per bank
STOCK_RANGES = [(20, 69), (15, 64)]

HOSPITAL = {
    "name": "City General Hospital",
    "registration_no": "HOSP-MH-001-2024",
    "email": "contact@cityhospital.com",
    "phone": "+912227890123",
    "emergency_phone": "+912227890100",
    "address": "789 Hospital Road, Bandra",
    "city": "Mumbai",
    "state": "Maharashtra",
    "pincode": "400050",
    "latitude": 19.0596,
    "longitude": 72.8295,
    "total_beds": 500,
    "has_blood_bank": False,
    "is_active": True,
    "is_verified": True,
}

DONORS = [
    {
        "email": "john.doe@example.com",
        "role": UserRole.DONOR,
        "first_name": "John",
        "last_name": "Doe",
        "phone": "+919876543211",
        "date_of_birth": date(1995, 5, 15),
        "gender": Gender.MALE,
        "blood_group": BloodGroup.O_POSITIVE,
        "city": "Mumbai",
        "state": "Maharashtra",
        "pincode": "400001",
        "weight": 75.5,
        "is_active": True,
        "is_verified": True,
    },
    {
        "email": "jane.smith@example.com",
        "role": UserRole.DONOR,
        "first_name": "Jane",
        "last_name": "Smith",
        "phone": "+919876543212",
        "date_of_birth": date(1992, 8, 22),
        "gender": Gender.FEMALE,
        "blood_group": BloodGroup.A_POSITIVE,
        "city": "New Delhi",
        "state": "Delhi",
        "pincode": "110001",
        "weight": 60.0,
        "is_active": True,
        "is_verified": True,
    },
]

SAMPLE_DONATION_DATE = datetime(2025, 1, 10, tzinfo=timezone.utc)
SAMPLE_UNIT_SERIAL = "UNIT-2025-001"


async def get_or_create(
    session: AsyncSession, model: Type[Base], lookup: Dict[str, Any], values: Dict[str, Any]
):
    """Return the row matching ``lookup``, creating it from ``values`` if absent."""
    existing = (await session.execute(select(model).filter_by(**lookup))).scalar_one_or_none()
    if existing is not None:
        return existing, False
    instance = model(**values)
    session.add(instance)
    await session.flush()
    return instance, True


async def seed(database: Database, rng: Optional[random.Random] = None) -> Dict[str, int]:
    """Seed demo data; returns how many rows of each kind were created."""
    rng = rng or random.Random()
    created = {"users": 0, "blood_banks": 0, "hospitals": 0, "stock_lines": 0, "donations": 0}

    async with database.session() as session:
        async with session.begin():
            _, new = await get_or_create(session, User, {"email": ADMIN["email"]}, ADMIN)
            created["users"] += new

            banks = []
            for bank_data, (low, high) in zip(BLOOD_BANKS, STOCK_RANGES):
                bank, new = await get_or_create(
                    session, BloodBank, {"email": bank_data["email"]}, bank_data
                )
                created["blood_banks"] += new
                banks.append(bank)

                for blood_group in BloodGroup:
                    _, new = await get_or_create(
                        session,
                        BloodInventory,
                        {"blood_bank_id": bank.id, "blood_group": blood_group},
                        {
                            "blood_bank_id": bank.id,
                            "blood_group": blood_group,
                            "quantity": rng.randint(low, high),
                            "minimum_quantity": 10,
                            "maximum_quantity": 100,
                        },
                    )
                    created["stock_lines"] += new

            _, new = await get_or_create(
                session, Hospital, {"email": HOSPITAL["email"]}, HOSPITAL
            )
            created["hospitals"] += new

            donors = []
            for donor_data in DONORS:
                donor, new = await get_or_create(
                    session, User, {"email": donor_data["email"]}, donor_data
                )
                created["users"] += new
                donors.append(donor)

            first_donor = donors[0]
            _, new = await get_or_create(
                session,
                Donation,
                {"unit_serial_number": SAMPLE_UNIT_SERIAL},
                {
                    "donor_id": first_donor.id,
                    "blood_bank_id": banks[0].id,
                    "blood_group": first_donor.blood_group,
                    "quantity": 1,
                    "scheduled_date": SAMPLE_DONATION_DATE,
                    "donation_date": SAMPLE_DONATION_DATE,
                    "status": DonationStatus.COMPLETED,
                    "hemoglobin_level": 14.5,
                    "blood_pressure": "120/80",
                    "weight": 75.5,
                    "temperature": 36.8,
                    "is_eligible": True,
                    "unit_serial_number": SAMPLE_UNIT_SERIAL,
                    "expiry_date": date(2025, 2, 14),
                    "collected_by": "Staff-001",
                },
            )
            created["donations"] += new
            if new and (
                first_donor.last_donation is None
                or first_donor.last_donation < SAMPLE_DONATION_DATE
            ):
                first_donor.last_donation = SAMPLE_DONATION_DATE

    logger.info("Database seeded", extra={"extra_fields": {"created": created}})
    return created


async def main() -> None:
    settings = get_settings()
    configure_logging(level=settings.LOG_LEVEL, environment=settings.ENVIRONMENT)
    database = Database.from_settings(settings)
    try:
        await database.init_db()
        await seed(database)
    finally:
        await database.close()


if __name__ == "__main__":
    asyncio.run(main())
