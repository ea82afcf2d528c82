"""
Storage failure handling: error classification, retry decisions and the
typed results returned when the database cannot be used.
"""

import sqlite3
from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from bloodline.database import Database
from bloodline.errors import ConcurrentModification, StorageUnavailable
from bloodline.models.donation import Donation
from bloodline.models.request import BloodRequest
from bloodline.schemas.base_schema import BloodGroup, RequestStatus
from bloodline.services.donation import DonationService
from bloodline.services.inventory import InventoryQueryService, QueryFailed
from bloodline.services.request import BloodRequestService
from bloodline.services.transactions import (
    TransactionRunner,
    is_insert_race,
    is_transient,
)
from tests.conftest import TestDataFactory, assert_response_error, make_settings


class PostgresError(Exception):
    """Stand-in for a driver error carrying a SQLSTATE code."""

    def __init__(self, message: str, sqlstate: str):
        super().__init__(message)
        self.sqlstate = sqlstate


def operational(message: str) -> OperationalError:
    return OperationalError("UPDATE blood_inventory", {}, sqlite3.OperationalError(message))


def integrity(message: str) -> IntegrityError:
    return IntegrityError("INSERT INTO blood_inventory", {}, sqlite3.IntegrityError(message))


@pytest.fixture
async def unreachable_database(tmp_path):
    """A database whose file lives in a directory that does not exist."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'ledger.sqlite3'}")
    yield db
    await db.close()


class TestErrorClassification:
    @pytest.mark.parametrize(
        "error",
        [
            operational("database is locked"),
            operational("database table is locked"),
            DBAPIError("UPDATE", {}, PostgresError("could not serialize access", "40001")),
            DBAPIError("UPDATE", {}, PostgresError("deadlock detected", "40P01")),
        ],
    )
    def test_transient_errors(self, error):
        assert is_transient(error)

    @pytest.mark.parametrize(
        "error",
        [
            operational("unable to open database file"),
            operational("disk I/O error"),
            DBAPIError("UPDATE", {}, PostgresError("relation does not exist", "42P01")),
        ],
    )
    def test_permanent_errors(self, error):
        assert not is_transient(error)

    @pytest.mark.parametrize(
        "error",
        [
            integrity(
                "UNIQUE constraint failed: blood_inventory.blood_bank_id, "
                "blood_inventory.blood_group"
            ),
            integrity("UNIQUE constraint failed: donations.unit_serial_number"),
            IntegrityError(
                "INSERT",
                {},
                PostgresError(
                    'duplicate key value violates unique constraint '
                    '"uq_inventory_bank_blood_group"',
                    "23505",
                ),
            ),
        ],
    )
    def test_insert_races(self, error):
        assert is_insert_race(error)

    @pytest.mark.parametrize(
        "error",
        [
            integrity("FOREIGN KEY constraint failed"),
            integrity("CHECK constraint failed: ck_inventory_quantity_non_negative"),
            integrity("UNIQUE constraint failed: users.email"),
        ],
    )
    def test_other_integrity_errors_are_not_races(self, error):
        assert not is_insert_race(error)


class TestRunnerStorageErrors:
    async def test_permanent_error_is_not_retried(self, database):
        runner = TransactionRunner(database, max_retries=3)
        calls = []

        async def work(session):
            calls.append(1)
            raise operational("disk I/O error")

        result = await runner.run("restock", work, entity_type="BloodInventory")

        assert result.error == StorageUnavailable(reason="disk I/O error")
        assert len(calls) == 1

    async def test_lock_error_is_retried(self, database):
        runner = TransactionRunner(database, max_retries=3)
        calls = []

        async def work(session):
            calls.append(1)
            if len(calls) == 1:
                raise operational("database is locked")
            return "done"

        result = await runner.run("restock", work, entity_type="BloodInventory")

        assert result.value == "done"
        assert len(calls) == 2

    async def test_repeated_insert_races_exhaust_retries(self, database):
        runner = TransactionRunner(database, max_retries=3)
        calls = []

        async def work(session):
            calls.append(1)
            raise integrity("UNIQUE constraint failed: donations.unit_serial_number")

        result = await runner.run("complete_donation", work, entity_type="Donation")

        assert isinstance(result.error, ConcurrentModification)
        assert len(calls) == 3

    async def test_foreign_key_violation_fails_at_once(self, database):
        runner = TransactionRunner(database, max_retries=3)
        bank = await TestDataFactory.create_blood_bank(database)
        calls = []

        async def work(session):
            calls.append(1)
            session.add(
                Donation(
                    donor_id=uuid4(),
                    blood_bank_id=bank.id,
                    blood_group=BloodGroup.O_POSITIVE,
                    quantity=1,
                    scheduled_date=datetime.now(timezone.utc),
                )
            )
            await session.flush()

        result = await runner.run("schedule_donation", work, entity_type="Donation")

        assert isinstance(result.error, StorageUnavailable)
        assert "FOREIGN KEY" in result.error.reason
        assert len(calls) == 1

    async def test_fulfilment_storage_error_leaves_stock(self, database, engine, monkeypatch):
        bank = await TestDataFactory.create_blood_bank(database)
        requester = await TestDataFactory.create_user(database)
        await TestDataFactory.create_stock_line(database, bank, BloodGroup.O_POSITIVE, 10)
        request = await TestDataFactory.create_request(database, requester, quantity_needed=4)

        async def failing_status_update(*args, **kwargs):
            raise operational("disk I/O error")

        monkeypatch.setattr(engine, "_mark_request_fulfilled", failing_status_update)

        result = await engine.approve_and_fulfill_request(request.id, bank.id)

        assert isinstance(result.error, StorageUnavailable)
        assert await TestDataFactory.stock_quantity(database, bank, BloodGroup.O_POSITIVE) == 10
        stored = await TestDataFactory.get(database, BloodRequest, request.id)
        assert stored.status == RequestStatus.PENDING


class TestUnreachableDatabase:
    async def test_aggregate_stats(self, unreachable_database):
        result = await InventoryQueryService(unreachable_database).get_aggregate_stats()
        assert isinstance(result.error, StorageUnavailable)
        assert "unable to open database file" in result.error.reason

    async def test_dashboards(self, unreachable_database):
        service = InventoryQueryService(unreachable_database)

        dashboard = await service.get_blood_bank_dashboard(uuid4())
        donor_stats = await service.get_donor_stats(uuid4())

        assert isinstance(dashboard.error, StorageUnavailable)
        assert isinstance(donor_stats.error, StorageUnavailable)

    async def test_searches(self, unreachable_database):
        service = InventoryQueryService(unreachable_database)

        fetched = await service.search_availability().value.all()
        assert isinstance(fetched.error, StorageUnavailable)

        with pytest.raises(QueryFailed) as excinfo:
            async for _ in service.search_eligible_donors().value:
                pass
        assert excinfo.value.error.code == "STORAGE_UNAVAILABLE"

    async def test_record_reads(self, unreachable_database, settings):
        requests = BloodRequestService(unreachable_database, settings)
        donations = DonationService(unreachable_database, settings)

        assert isinstance((await requests.get_request(uuid4())).error, StorageUnavailable)
        assert isinstance((await requests.list_requests()).error, StorageUnavailable)
        assert isinstance((await donations.get_donation(uuid4())).error, StorageUnavailable)

    async def test_record_writes(self, unreachable_database, settings):
        service = DonationService(unreachable_database, settings)

        result = await service.schedule_donation(
            {
                "donor_id": str(uuid4()),
                "blood_bank_id": str(uuid4()),
                "scheduled_date": datetime.now(timezone.utc).isoformat(),
            }
        )

        assert isinstance(result.error, StorageUnavailable)


class TestStorageErrorResponses:
    def test_read_failures_become_503(self, client, monkeypatch):
        async def failing_execute(self, *args, **kwargs):
            raise operational("disk I/O error")

        monkeypatch.setattr(AsyncSession, "execute", failing_execute)

        for path in ["/api/stats", "/api/blood-availability", "/api/blood-requests"]:
            error = assert_response_error(client.get(path), 503, "STORAGE_UNAVAILABLE")
            assert error["details"] == {"reason": "disk I/O error"}

    def test_debug_follows_settings(self, database_url):
        from bloodline.main import create_application

        assert create_application(make_settings(database_url, DEBUG=False)).debug is False
        assert create_application(make_settings(database_url, DEBUG=True)).debug is True
