"""
Inventory transaction engine tests: request fulfilment, donation completion,
atomicity under injected faults, conflict retries and concurrency.
"""

import asyncio
from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select, update

from bloodline.errors import (
    ConcurrentModification,
    DuplicateUnitSerial,
    InsufficientInventory,
    InvalidStateTransition,
    NotFound,
    Timeout,
)
from bloodline.models.donation import Donation
from bloodline.models.inventory import BloodInventory
from bloodline.models.request import BloodRequest
from bloodline.models.user import User
from bloodline.schemas.base_schema import BloodGroup, DonationStatus, RequestStatus
from bloodline.schemas.donation import DEFAULT_REJECTION_REASON, HealthCheckInput
from bloodline.services.inventory_engine import InventoryTransactionEngine
from tests.conftest import TestDataFactory, make_settings

FIXED_NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


def eligible_check(**overrides) -> HealthCheckInput:
    values = {
        "is_eligible": True,
        "hemoglobin_level": 14.5,
        "blood_pressure": "120/80",
        "weight": 72.0,
        "temperature": 36.8,
        "collected_by": "Staff-001",
    }
    values.update(overrides)
    return HealthCheckInput(**values)


@pytest.fixture
def fixed_engine(database, settings) -> InventoryTransactionEngine:
    return InventoryTransactionEngine(database, settings, clock=lambda: FIXED_NOW)


class TestApproveAndFulfillRequest:
    async def test_pending_request_is_fulfilled_from_stock(self, database, fixed_engine):
        bank = await TestDataFactory.create_blood_bank(database)
        requester = await TestDataFactory.create_user(database)
        await TestDataFactory.create_stock_line(database, bank, BloodGroup.O_POSITIVE, 10)
        request = await TestDataFactory.create_request(database, requester, quantity_needed=4)

        result = await fixed_engine.approve_and_fulfill_request(
            request.id, bank.id, approved_by="Dr. Mehta"
        )

        assert result.ok
        fulfilled = result.value
        assert fulfilled.status == RequestStatus.FULFILLED
        assert fulfilled.fulfilled_at == FIXED_NOW
        assert fulfilled.approved_at == FIXED_NOW
        assert fulfilled.approved_by == "Dr. Mehta"
        assert fulfilled.blood_bank_id == bank.id
        assert await TestDataFactory.stock_quantity(database, bank, BloodGroup.O_POSITIVE) == 6

    async def test_approved_request_keeps_its_approval(self, database, fixed_engine):
        bank = await TestDataFactory.create_blood_bank(database)
        requester = await TestDataFactory.create_user(database)
        await TestDataFactory.create_stock_line(database, bank, BloodGroup.O_POSITIVE, 10)
        approved_at = FIXED_NOW - timedelta(hours=2)
        request = await TestDataFactory.create_request(
            database,
            requester,
            status=RequestStatus.APPROVED,
            approved_at=approved_at,
            approved_by="Dr. Shah",
        )

        result = await fixed_engine.approve_and_fulfill_request(request.id, bank.id)

        assert result.ok
        assert result.value.status == RequestStatus.FULFILLED
        assert result.value.approved_at == approved_at
        assert result.value.approved_by == "Dr. Shah"

    async def test_insufficient_inventory_leaves_stock_untouched(self, database, engine):
        bank = await TestDataFactory.create_blood_bank(database)
        requester = await TestDataFactory.create_user(database)
        await TestDataFactory.create_stock_line(database, bank, BloodGroup.O_POSITIVE, 2)
        request = await TestDataFactory.create_request(database, requester, quantity_needed=4)

        result = await engine.approve_and_fulfill_request(request.id, bank.id)

        assert not result.ok
        assert result.error == InsufficientInventory(available=2, requested=4)
        assert await TestDataFactory.stock_quantity(database, bank, BloodGroup.O_POSITIVE) == 2
        stored = await TestDataFactory.get(database, BloodRequest, request.id)
        assert stored.status == RequestStatus.PENDING

    async def test_missing_stock_line_counts_as_zero(self, database, engine):
        bank = await TestDataFactory.create_blood_bank(database)
        requester = await TestDataFactory.create_user(database)
        request = await TestDataFactory.create_request(
            database, requester, blood_group=BloodGroup.AB_NEGATIVE, quantity_needed=1
        )

        result = await engine.approve_and_fulfill_request(request.id, bank.id)

        assert result.error == InsufficientInventory(available=0, requested=1)

    async def test_exact_quantity_drains_line_to_zero(self, database, engine):
        bank = await TestDataFactory.create_blood_bank(database)
        requester = await TestDataFactory.create_user(database)
        await TestDataFactory.create_stock_line(database, bank, BloodGroup.O_POSITIVE, 4)
        request = await TestDataFactory.create_request(database, requester, quantity_needed=4)

        result = await engine.approve_and_fulfill_request(request.id, bank.id)

        assert result.ok
        assert await TestDataFactory.stock_quantity(database, bank, BloodGroup.O_POSITIVE) == 0

    @pytest.mark.parametrize(
        "status",
        [RequestStatus.FULFILLED, RequestStatus.REJECTED, RequestStatus.CANCELLED],
    )
    async def test_terminal_requests_cannot_be_fulfilled(self, database, engine, status):
        bank = await TestDataFactory.create_blood_bank(database)
        requester = await TestDataFactory.create_user(database)
        await TestDataFactory.create_stock_line(database, bank, BloodGroup.O_POSITIVE, 10)
        request = await TestDataFactory.create_request(database, requester, status=status)

        result = await engine.approve_and_fulfill_request(request.id, bank.id)

        assert isinstance(result.error, InvalidStateTransition)
        assert result.error.current_state == status.value
        assert result.error.attempted_state == RequestStatus.FULFILLED.value
        assert await TestDataFactory.stock_quantity(database, bank, BloodGroup.O_POSITIVE) == 10

    async def test_unknown_request(self, database, engine):
        bank = await TestDataFactory.create_blood_bank(database)
        missing = uuid4()

        result = await engine.approve_and_fulfill_request(missing, bank.id)

        assert isinstance(result.error, NotFound)
        assert result.error.entity_type == "BloodRequest"

    async def test_unknown_blood_bank(self, database, engine):
        requester = await TestDataFactory.create_user(database)
        request = await TestDataFactory.create_request(database, requester)
        missing = uuid4()

        result = await engine.approve_and_fulfill_request(request.id, missing)

        assert result.error == NotFound(entity_type="BloodBank", id=missing)


class TestFulfilmentAtomicity:
    async def test_failure_after_decrement_rolls_back(self, database, engine, monkeypatch):
        bank = await TestDataFactory.create_blood_bank(database)
        requester = await TestDataFactory.create_user(database)
        await TestDataFactory.create_stock_line(database, bank, BloodGroup.O_POSITIVE, 10)
        request = await TestDataFactory.create_request(database, requester, quantity_needed=4)

        async def broken_status_update(*args, **kwargs):
            raise RuntimeError("status update failed")

        monkeypatch.setattr(engine, "_mark_request_fulfilled", broken_status_update)

        with pytest.raises(RuntimeError):
            await engine.approve_and_fulfill_request(request.id, bank.id)

        assert await TestDataFactory.stock_quantity(database, bank, BloodGroup.O_POSITIVE) == 10
        stored = await TestDataFactory.get(database, BloodRequest, request.id)
        assert stored.status == RequestStatus.PENDING
        assert stored.fulfilled_at is None

    async def test_timeout_returns_error_without_writes(self, database, settings, monkeypatch):
        engine = InventoryTransactionEngine(
            database,
            make_settings(settings.DATABASE_URL, TRANSACTION_TIMEOUT_SECONDS=0.2),
        )
        bank = await TestDataFactory.create_blood_bank(database)
        requester = await TestDataFactory.create_user(database)
        await TestDataFactory.create_stock_line(database, bank, BloodGroup.O_POSITIVE, 10)
        request = await TestDataFactory.create_request(database, requester, quantity_needed=4)

        async def stalled_decrement(*args, **kwargs):
            await asyncio.sleep(5)

        monkeypatch.setattr(engine, "_decrement_stock", stalled_decrement)

        result = await engine.approve_and_fulfill_request(request.id, bank.id)

        assert result.error == Timeout(operation="approve_and_fulfill_request", seconds=0.2)
        assert await TestDataFactory.stock_quantity(database, bank, BloodGroup.O_POSITIVE) == 10
        stored = await TestDataFactory.get(database, BloodRequest, request.id)
        assert stored.status == RequestStatus.PENDING


class TestConflictRetries:
    async def _take_one_unit(self, database, stock_id):
        async with database.session() as other:
            async with other.begin():
                await other.execute(
                    update(BloodInventory)
                    .where(BloodInventory.id == stock_id)
                    .values(quantity=BloodInventory.quantity - 1)
                )

    async def test_concurrent_writer_forces_a_fresh_attempt(
        self, database, engine, monkeypatch
    ):
        bank = await TestDataFactory.create_blood_bank(database)
        requester = await TestDataFactory.create_user(database)
        await TestDataFactory.create_stock_line(database, bank, BloodGroup.O_POSITIVE, 10)
        request = await TestDataFactory.create_request(database, requester, quantity_needed=4)

        original = engine._decrement_stock
        calls = []

        async def racing_decrement(session, stock, amount, now):
            calls.append(stock.quantity)
            if len(calls) == 1:
                await self._take_one_unit(database, stock.id)
            await original(session, stock, amount, now)

        monkeypatch.setattr(engine, "_decrement_stock", racing_decrement)

        result = await engine.approve_and_fulfill_request(request.id, bank.id)

        assert result.ok
        # second attempt re-read the line after the other writer committed
        assert calls == [10, 9]
        assert await TestDataFactory.stock_quantity(database, bank, BloodGroup.O_POSITIVE) == 5

    async def test_exhausted_retries_report_concurrent_modification(
        self, database, settings, monkeypatch
    ):
        engine = InventoryTransactionEngine(
            database, make_settings(settings.DATABASE_URL, TRANSACTION_MAX_RETRIES=3)
        )
        bank = await TestDataFactory.create_blood_bank(database)
        requester = await TestDataFactory.create_user(database)
        await TestDataFactory.create_stock_line(database, bank, BloodGroup.O_POSITIVE, 20)
        request = await TestDataFactory.create_request(database, requester, quantity_needed=4)

        original = engine._decrement_stock

        async def always_racing(session, stock, amount, now):
            await self._take_one_unit(database, stock.id)
            await original(session, stock, amount, now)

        monkeypatch.setattr(engine, "_decrement_stock", always_racing)

        result = await engine.approve_and_fulfill_request(request.id, bank.id)

        assert result.error == ConcurrentModification(
            entity_type="BloodRequest", entity_id=request.id, attempts=3
        )
        # only the competing writer's units are gone
        assert await TestDataFactory.stock_quantity(database, bank, BloodGroup.O_POSITIVE) == 17
        stored = await TestDataFactory.get(database, BloodRequest, request.id)
        assert stored.status == RequestStatus.PENDING

    async def test_two_fulfilments_racing_for_one_line(self, database, engine):
        bank = await TestDataFactory.create_blood_bank(database)
        requester = await TestDataFactory.create_user(database)
        await TestDataFactory.create_stock_line(database, bank, BloodGroup.O_POSITIVE, 5)
        first = await TestDataFactory.create_request(database, requester, quantity_needed=4)
        second = await TestDataFactory.create_request(database, requester, quantity_needed=4)

        results = await asyncio.gather(
            engine.approve_and_fulfill_request(first.id, bank.id),
            engine.approve_and_fulfill_request(second.id, bank.id),
        )

        successes = [r for r in results if r.ok]
        failures = [r for r in results if not r.ok]
        assert len(successes) == 1
        assert len(failures) == 1
        assert failures[0].error == InsufficientInventory(available=1, requested=4)
        assert await TestDataFactory.stock_quantity(database, bank, BloodGroup.O_POSITIVE) == 1

    async def test_many_fulfilments_never_drive_stock_negative(self, database, engine):
        bank = await TestDataFactory.create_blood_bank(database)
        requester = await TestDataFactory.create_user(database)
        await TestDataFactory.create_stock_line(database, bank, BloodGroup.O_POSITIVE, 10)
        requests = [
            await TestDataFactory.create_request(database, requester, quantity_needed=3)
            for _ in range(5)
        ]

        results = await asyncio.gather(
            *(engine.approve_and_fulfill_request(r.id, bank.id) for r in requests)
        )

        fulfilled = sum(3 for r in results if r.ok)
        remaining = await TestDataFactory.stock_quantity(database, bank, BloodGroup.O_POSITIVE)
        assert fulfilled <= 10
        assert remaining >= 0
        assert remaining == 10 - fulfilled
        for r in results:
            if not r.ok:
                assert r.error.code in ("INSUFFICIENT_INVENTORY", "CONCURRENT_MODIFICATION")


class TestCompleteDonation:
    async def test_eligible_donation_creates_stock_line(self, database, fixed_engine):
        bank = await TestDataFactory.create_blood_bank(database)
        donor = await TestDataFactory.create_user(database, blood_group=BloodGroup.A_POSITIVE)
        donation = await TestDataFactory.create_donation(database, donor, bank)

        result = await fixed_engine.complete_donation(donation.id, eligible_check())

        assert result.ok
        completed = result.value
        assert completed.status == DonationStatus.COMPLETED
        assert completed.donation_date == FIXED_NOW
        assert completed.is_eligible is True
        assert completed.hemoglobin_level == 14.5
        assert completed.unit_serial_number
        assert completed.expiry_date == date(2026, 4, 5)
        assert await TestDataFactory.stock_quantity(database, bank, BloodGroup.A_POSITIVE) == 1

        stored_donor = await TestDataFactory.get(database, User, donor.id)
        assert stored_donor.last_donation == FIXED_NOW

    async def test_eligible_donation_increments_existing_line(self, database, engine):
        bank = await TestDataFactory.create_blood_bank(database)
        donor = await TestDataFactory.create_user(database)
        await TestDataFactory.create_stock_line(database, bank, BloodGroup.O_POSITIVE, 7)
        donation = await TestDataFactory.create_donation(database, donor, bank, quantity=2)

        result = await engine.complete_donation(donation.id, eligible_check())

        assert result.ok
        assert await TestDataFactory.stock_quantity(database, bank, BloodGroup.O_POSITIVE) == 9
        async with database.session() as session:
            lines = (
                await session.scalars(
                    select(BloodInventory).where(BloodInventory.blood_bank_id == bank.id)
                )
            ).all()
        assert len(lines) == 1

    async def test_ineligible_donation_records_screening_only(self, database, engine):
        bank = await TestDataFactory.create_blood_bank(database)
        last = datetime(2025, 6, 1, tzinfo=timezone.utc)
        donor = await TestDataFactory.create_user(database, last_donation=last)
        donation = await TestDataFactory.create_donation(database, donor, bank)

        result = await engine.complete_donation(
            donation.id, HealthCheckInput(is_eligible=False, hemoglobin_level=10.2)
        )

        assert result.ok
        completed = result.value
        assert completed.status == DonationStatus.COMPLETED
        assert completed.is_eligible is False
        assert completed.rejection_reason == DEFAULT_REJECTION_REASON
        assert completed.unit_serial_number is None
        assert await TestDataFactory.stock_quantity(database, bank, BloodGroup.O_POSITIVE) is None
        stored_donor = await TestDataFactory.get(database, User, donor.id)
        assert stored_donor.last_donation == last

    async def test_ineligible_donation_keeps_given_reason(self, database, engine):
        bank = await TestDataFactory.create_blood_bank(database)
        donor = await TestDataFactory.create_user(database)
        donation = await TestDataFactory.create_donation(database, donor, bank)

        result = await engine.complete_donation(
            donation.id,
            HealthCheckInput(is_eligible=False, rejection_reason="Low hemoglobin"),
        )

        assert result.value.rejection_reason == "Low hemoglobin"

    async def test_last_donation_never_moves_backward(self, database, engine):
        bank = await TestDataFactory.create_blood_bank(database)
        recent = datetime.now(timezone.utc) - timedelta(days=10)
        donor = await TestDataFactory.create_user(database, last_donation=recent)
        donation = await TestDataFactory.create_donation(database, donor, bank)
        earlier = recent - timedelta(days=20)

        result = await engine.complete_donation(
            donation.id, eligible_check(donation_date=earlier)
        )

        assert result.ok
        assert result.value.donation_date == earlier
        stored_donor = await TestDataFactory.get(database, User, donor.id)
        assert stored_donor.last_donation == recent
        # stock still moves
        assert await TestDataFactory.stock_quantity(database, bank, BloodGroup.O_POSITIVE) == 1

    async def test_completed_donation_cannot_complete_again(self, database, engine):
        bank = await TestDataFactory.create_blood_bank(database)
        donor = await TestDataFactory.create_user(database)
        donation = await TestDataFactory.create_donation(database, donor, bank)

        assert (await engine.complete_donation(donation.id, eligible_check())).ok
        second = await engine.complete_donation(donation.id, eligible_check())

        assert isinstance(second.error, InvalidStateTransition)
        assert await TestDataFactory.stock_quantity(database, bank, BloodGroup.O_POSITIVE) == 1

    async def test_unknown_donation(self, database, engine):
        missing = uuid4()
        result = await engine.complete_donation(missing, eligible_check())
        assert result.error == NotFound(entity_type="Donation", id=missing)


class TestUnitSerials:
    async def _existing_serial(self, database, serial: str):
        bank = await TestDataFactory.create_blood_bank(database)
        donor = await TestDataFactory.create_user(database)
        await TestDataFactory.create_donation(
            database,
            donor,
            bank,
            status=DonationStatus.COMPLETED,
            unit_serial_number=serial,
        )

    async def test_caller_supplied_duplicate_is_rejected(self, database, engine):
        await self._existing_serial(database, "UNIT-20260301-TAKEN1")
        bank = await TestDataFactory.create_blood_bank(database)
        donor = await TestDataFactory.create_user(database)
        donation = await TestDataFactory.create_donation(database, donor, bank)

        result = await engine.complete_donation(
            donation.id, eligible_check(unit_serial_number="UNIT-20260301-TAKEN1")
        )

        assert result.error == DuplicateUnitSerial(unit_serial_number="UNIT-20260301-TAKEN1")
        stored = await TestDataFactory.get(database, Donation, donation.id)
        assert stored.status == DonationStatus.SCHEDULED
        assert await TestDataFactory.stock_quantity(database, bank, BloodGroup.O_POSITIVE) is None

    async def test_generated_collision_is_retried(self, database, settings):
        await self._existing_serial(database, "UNIT-DUPLICATE")
        serials = iter(["UNIT-DUPLICATE", "UNIT-FRESH"])
        engine = InventoryTransactionEngine(
            database, settings, serial_factory=lambda: next(serials)
        )
        bank = await TestDataFactory.create_blood_bank(database)
        donor = await TestDataFactory.create_user(database)
        donation = await TestDataFactory.create_donation(database, donor, bank)

        result = await engine.complete_donation(donation.id, eligible_check())

        assert result.ok
        assert result.value.unit_serial_number == "UNIT-FRESH"

    async def test_exhausted_serial_attempts_roll_everything_back(self, database, settings):
        await self._existing_serial(database, "UNIT-DUPLICATE")
        engine = InventoryTransactionEngine(
            database,
            make_settings(settings.DATABASE_URL, UNIT_SERIAL_MAX_ATTEMPTS=3),
            serial_factory=lambda: "UNIT-DUPLICATE",
        )
        bank = await TestDataFactory.create_blood_bank(database)
        donor = await TestDataFactory.create_user(database)
        donation = await TestDataFactory.create_donation(database, donor, bank)

        result = await engine.complete_donation(donation.id, eligible_check())

        assert result.error == DuplicateUnitSerial(
            unit_serial_number="UNIT-DUPLICATE", attempts=3
        )
        stored = await TestDataFactory.get(database, Donation, donation.id)
        assert stored.status == DonationStatus.SCHEDULED
        stored_donor = await TestDataFactory.get(database, User, donor.id)
        assert stored_donor.last_donation is None
        assert await TestDataFactory.stock_quantity(database, bank, BloodGroup.O_POSITIVE) is None
