"""
Test configuration and fixtures for the blood inventory ledger.
Provides a fresh file-backed SQLite database per test and data factories.
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("ENVIRONMENT", "test")

from bloodline.config import Settings
from bloodline.database import Database
from bloodline.models.donation import Donation
from bloodline.models.facility import BloodBank, Hospital
from bloodline.models.inventory import BloodInventory
from bloodline.models.request import BloodRequest
from bloodline.models.user import User
from bloodline.schemas.base_schema import (
    BloodGroup,
    DonationStatus,
    RequestStatus,
    Urgency,
    UserRole,
)
from bloodline.services.donation import DonationService
from bloodline.services.inventory import InventoryQueryService
from bloodline.services.inventory_engine import InventoryTransactionEngine
from bloodline.services.request import BloodRequestService


def make_settings(database_url: str, **overrides) -> Settings:
    values = {
        "ENVIRONMENT": "test",
        "DATABASE_URL": database_url,
        "TRANSACTION_MAX_RETRIES": 10,
        "TRANSACTION_TIMEOUT_SECONDS": 10.0,
        "LOG_TO_FILE": False,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'ledger.sqlite3'}"


@pytest.fixture
def settings(database_url) -> Settings:
    return make_settings(database_url)


@pytest.fixture
async def database(settings) -> AsyncGenerator[Database, None]:
    """Create the schema in a fresh database for each test."""
    db = Database(settings.DATABASE_URL)
    await db.init_db()
    yield db
    await db.close()


@pytest.fixture
def engine(database, settings) -> InventoryTransactionEngine:
    return InventoryTransactionEngine(database, settings)


@pytest.fixture
def query_service(database) -> InventoryQueryService:
    return InventoryQueryService(database)


@pytest.fixture
def request_service(database, settings) -> BloodRequestService:
    return BloodRequestService(database, settings)


@pytest.fixture
def donation_service(database, settings) -> DonationService:
    return DonationService(database, settings)


# --- Data Factories ---


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TestDataFactory:
    """Factory for creating persisted test data."""

    __test__ = False

    @staticmethod
    def unique_email(prefix: str = "test") -> str:
        return f"{prefix}_{uuid4().hex[:8]}@example.com"

    @staticmethod
    def unique_phone() -> str:
        return f"+91{str(uuid4().int)[:10]}"

    @staticmethod
    async def _save(database: Database, instance):
        async with database.session() as session:
            async with session.begin():
                session.add(instance)
            await session.refresh(instance)
        return instance

    @staticmethod
    async def create_user(database: Database, **overrides) -> User:
        values = {
            "email": TestDataFactory.unique_email("donor"),
            "phone": TestDataFactory.unique_phone(),
            "first_name": "Asha",
            "last_name": "Rao",
            "role": UserRole.DONOR,
            "blood_group": BloodGroup.O_POSITIVE,
            "city": "Mumbai",
            "state": "Maharashtra",
            "is_active": True,
            "is_verified": True,
        }
        values.update(overrides)
        return await TestDataFactory._save(database, User(**values))

    @staticmethod
    async def create_blood_bank(database: Database, **overrides) -> BloodBank:
        values = {
            "name": f"Blood Bank {uuid4().hex[:4]}",
            "registration_no": f"BB-{uuid4().hex[:10]}",
            "email": TestDataFactory.unique_email("bank"),
            "phone": TestDataFactory.unique_phone(),
            "address": "123 Main Street, Andheri",
            "city": "Mumbai",
            "state": "Maharashtra",
            "pincode": "400058",
            "operating_hours": "24/7",
            "is_active": True,
            "is_verified": True,
        }
        values.update(overrides)
        return await TestDataFactory._save(database, BloodBank(**values))

    @staticmethod
    async def create_hospital(database: Database, **overrides) -> Hospital:
        values = {
            "name": f"Hospital {uuid4().hex[:4]}",
            "registration_no": f"HOSP-{uuid4().hex[:10]}",
            "email": TestDataFactory.unique_email("hospital"),
            "phone": TestDataFactory.unique_phone(),
            "address": "789 Hospital Road, Bandra",
            "city": "Mumbai",
            "state": "Maharashtra",
            "pincode": "400050",
            "is_active": True,
            "is_verified": True,
        }
        values.update(overrides)
        return await TestDataFactory._save(database, Hospital(**values))

    @staticmethod
    async def create_stock_line(
        database: Database,
        blood_bank: BloodBank,
        blood_group: BloodGroup = BloodGroup.O_POSITIVE,
        quantity: int = 10,
        **overrides,
    ) -> BloodInventory:
        values = {
            "blood_bank_id": blood_bank.id,
            "blood_group": blood_group,
            "quantity": quantity,
        }
        values.update(overrides)
        return await TestDataFactory._save(database, BloodInventory(**values))

    @staticmethod
    async def create_request(
        database: Database,
        requester: User,
        blood_group: BloodGroup = BloodGroup.O_POSITIVE,
        quantity_needed: int = 4,
        status: RequestStatus = RequestStatus.PENDING,
        **overrides,
    ) -> BloodRequest:
        values = {
            "requester_id": requester.id,
            "blood_group": blood_group,
            "quantity_needed": quantity_needed,
            "urgency": Urgency.URGENT,
            "patient_name": "Ravi Kumar",
            "patient_age": 45,
            "required_by": utc_now() + timedelta(days=1),
            "purpose": "Surgery",
            "status": status,
        }
        values.update(overrides)
        return await TestDataFactory._save(database, BloodRequest(**values))

    @staticmethod
    async def create_donation(
        database: Database,
        donor: User,
        blood_bank: BloodBank,
        blood_group: Optional[BloodGroup] = None,
        quantity: int = 1,
        status: DonationStatus = DonationStatus.SCHEDULED,
        **overrides,
    ) -> Donation:
        values = {
            "donor_id": donor.id,
            "blood_bank_id": blood_bank.id,
            "blood_group": blood_group or donor.blood_group,
            "quantity": quantity,
            "scheduled_date": utc_now(),
            "status": status,
        }
        values.update(overrides)
        return await TestDataFactory._save(database, Donation(**values))

    @staticmethod
    async def get(database: Database, model, id_):
        async with database.session() as session:
            return await session.get(model, id_)

    @staticmethod
    async def stock_quantity(
        database: Database, blood_bank: BloodBank, blood_group: BloodGroup
    ) -> Optional[int]:
        from sqlalchemy import select

        async with database.session() as session:
            return await session.scalar(
                select(BloodInventory.quantity).where(
                    BloodInventory.blood_bank_id == blood_bank.id,
                    BloodInventory.blood_group == blood_group,
                )
            )


# --- API Fixtures ---


@pytest.fixture
def api_data(database_url) -> dict:
    """Seed a bank, a donor and a stock line for route tests.

    Runs on its own event loop before the test client starts the application.
    """

    async def setup() -> dict:
        db = Database(database_url)
        await db.init_db()
        try:
            bank = await TestDataFactory.create_blood_bank(db)
            donor = await TestDataFactory.create_user(db)
            requester = await TestDataFactory.create_user(
                db, role=UserRole.HOSPITAL, blood_group=None
            )
            await TestDataFactory.create_stock_line(db, bank, BloodGroup.O_POSITIVE, 10)
        finally:
            await db.close()
        return {
            "blood_bank_id": str(bank.id),
            "donor_id": str(donor.id),
            "requester_id": str(requester.id),
        }

    return asyncio.run(setup())


@pytest.fixture
def client(database_url, api_data) -> TestClient:
    from bloodline.main import create_application

    app = create_application(make_settings(database_url))
    with TestClient(app) as test_client:
        yield test_client


# --- Helper Functions ---


def assert_response_success(response, expected_status: int = 200):
    """Assert the API envelope reports success and return its data."""
    assert response.status_code == expected_status, response.text
    body = response.json()
    assert body["success"] is True
    return body["data"]


def assert_response_error(response, expected_status: int, expected_code: str) -> dict:
    """Assert the API envelope reports the given error code."""
    assert response.status_code == expected_status, response.text
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == expected_code
    return body["error"]
