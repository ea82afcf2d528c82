"""
Inventory transaction engine.

The two compound operations that touch stock run here: fulfilling an
approved (or pending) blood request and completing a scheduled donation.
Each call is one database transaction per attempt; stock and status changes
use compare-and-swap updates so a concurrent writer makes the attempt retry
instead of overwriting its work.
"""

from datetime import datetime
from typing import Callable, Optional, Tuple
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bloodline.config import Settings, get_settings
from bloodline.database import Database
from bloodline.db.base import utcnow
from bloodline.errors import (
    DuplicateUnitSerial,
    InsufficientInventory,
    LedgerError,
    NotFound,
)
from bloodline.models.donation import Donation
from bloodline.models.facility import BloodBank
from bloodline.models.inventory import BloodInventory
from bloodline.models.request import BloodRequest
from bloodline.models.user import User
from bloodline.schemas.base_schema import BloodGroup, DonationStatus, RequestStatus
from bloodline.schemas.donation import DEFAULT_REJECTION_REASON, HealthCheckInput
from bloodline.services.lifecycle import validate_transition
from bloodline.services.transactions import (
    TransactionAborted,
    TransactionRunner,
    WriteConflict,
    abort_on_err,
)
from bloodline.utils.generators import calculate_expiry_date, generate_unit_serial
from bloodline.utils.logging_config import get_logger, log_audit_event
from bloodline.utils.performance_monitor import performance_monitor
from bloodline.utils.result import Ok, Result

logger = get_logger(__name__)


class InventoryTransactionEngine:
    def __init__(
        self,
        database: Database,
        settings: Optional[Settings] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        serial_factory: Callable[[], str] = generate_unit_serial,
    ):
        settings = settings or get_settings()
        self.database = database
        self.runner = TransactionRunner.from_settings(database, settings)
        self.serial_max_attempts = settings.UNIT_SERIAL_MAX_ATTEMPTS
        self.clock = clock
        self.serial_factory = serial_factory

    # ------------------------------------------------------------------
    # Request fulfilment
    # ------------------------------------------------------------------

    @performance_monitor
    async def approve_and_fulfill_request(
        self,
        request_id: UUID,
        facility_id: UUID,
        approved_by: Optional[str] = None,
    ) -> Result[BloodRequest, LedgerError]:
        """
        Fulfil a request from one blood bank's stock.

        A PENDING request is approved and fulfilled in the same transaction;
        an APPROVED request is fulfilled. The stock decrement and the status
        change commit together or not at all.
        """

        async def work(session: AsyncSession) -> Tuple[BloodRequest, RequestStatus]:
            request = await session.get(BloodRequest, request_id)
            if request is None:
                raise TransactionAborted(NotFound(entity_type="BloodRequest", id=request_id))
            if await session.get(BloodBank, facility_id) is None:
                raise TransactionAborted(NotFound(entity_type="BloodBank", id=facility_id))

            previous_status = request.status
            if previous_status == RequestStatus.PENDING:
                abort_on_err(
                    validate_transition(request, RequestStatus.PENDING, RequestStatus.APPROVED)
                )
                abort_on_err(
                    validate_transition(request, RequestStatus.APPROVED, RequestStatus.FULFILLED)
                )
            else:
                abort_on_err(
                    validate_transition(request, previous_status, RequestStatus.FULFILLED)
                )

            stock = await self._load_stock_line(session, facility_id, request.blood_group)
            available = stock.quantity if stock is not None else 0
            if available < request.quantity_needed:
                raise TransactionAborted(
                    InsufficientInventory(
                        available=available, requested=request.quantity_needed
                    )
                )

            now = self.clock()
            await self._decrement_stock(session, stock, request.quantity_needed, now)
            await self._mark_request_fulfilled(
                session, request, previous_status, facility_id, approved_by, now
            )
            await session.refresh(request)
            return request, previous_status

        result = await self.runner.run(
            "approve_and_fulfill_request",
            work,
            entity_type="BloodRequest",
            entity_id=request_id,
        )
        if not result.ok:
            return result

        request, previous_status = result.value
        log_audit_event(
            action="blood_request.fulfilled",
            resource_type="BloodRequest",
            resource_id=str(request.id),
            old_values={"status": previous_status.value},
            new_values={
                "status": request.status.value,
                "blood_bank_id": str(facility_id),
                "quantity": request.quantity_needed,
            },
            user_id=approved_by,
        )
        return Ok(request)

    async def _decrement_stock(
        self,
        session: AsyncSession,
        stock: BloodInventory,
        amount: int,
        now: datetime,
    ) -> None:
        result = await session.execute(
            update(BloodInventory)
            .where(
                BloodInventory.id == stock.id,
                BloodInventory.quantity == stock.quantity,
                BloodInventory.quantity >= amount,
            )
            .values(quantity=BloodInventory.quantity - amount, last_updated=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise WriteConflict("BloodInventory", stock.id)

    async def _mark_request_fulfilled(
        self,
        session: AsyncSession,
        request: BloodRequest,
        previous_status: RequestStatus,
        facility_id: UUID,
        approved_by: Optional[str],
        now: datetime,
    ) -> None:
        values = {
            "status": RequestStatus.FULFILLED,
            "fulfilled_at": now,
            "blood_bank_id": facility_id,
        }
        if previous_status == RequestStatus.PENDING:
            values.update(approved_at=now, approved_by=approved_by)

        result = await session.execute(
            update(BloodRequest)
            .where(BloodRequest.id == request.id, BloodRequest.status == previous_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise WriteConflict("BloodRequest", request.id)

    # ------------------------------------------------------------------
    # Donation completion
    # ------------------------------------------------------------------

    @performance_monitor
    async def complete_donation(
        self, donation_id: UUID, health_check: HealthCheckInput
    ) -> Result[Donation, LedgerError]:
        """
        Record the health check of a scheduled donation.

        An eligible donor's unit gets a serial and expiry date, is added to
        the blood bank's stock line and advances the donor's last donation
        date. An ineligible donor only has the screening recorded.
        """

        async def work(session: AsyncSession) -> Donation:
            donation = await session.get(Donation, donation_id)
            if donation is None:
                raise TransactionAborted(NotFound(entity_type="Donation", id=donation_id))
            abort_on_err(
                validate_transition(donation, donation.status, DonationStatus.COMPLETED)
            )

            now = self.clock()
            donation_date = health_check.donation_date or now
            values = {
                "status": DonationStatus.COMPLETED,
                "donation_date": donation_date,
                "is_eligible": health_check.is_eligible,
                "hemoglobin_level": health_check.hemoglobin_level,
                "blood_pressure": health_check.blood_pressure,
                "weight": health_check.weight,
                "temperature": health_check.temperature,
                "collected_by": health_check.collected_by,
                "post_test_notes": health_check.post_test_notes,
                "adverse_reaction": health_check.adverse_reaction,
            }
            if health_check.is_eligible:
                values.update(
                    unit_serial_number=await self._assign_unit_serial(
                        session, health_check.unit_serial_number
                    ),
                    expiry_date=calculate_expiry_date(donation_date),
                    rejection_reason=None,
                )
            else:
                values["rejection_reason"] = (
                    health_check.rejection_reason or DEFAULT_REJECTION_REASON
                )

            result = await session.execute(
                update(Donation)
                .where(
                    Donation.id == donation.id,
                    Donation.status == DonationStatus.SCHEDULED,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise WriteConflict("Donation", donation.id)

            if health_check.is_eligible:
                await self._restock(
                    session,
                    donation.blood_bank_id,
                    donation.blood_group,
                    donation.quantity,
                    now,
                    values["expiry_date"],
                )
                await self._advance_last_donation(session, donation.donor_id, donation_date)

            await session.refresh(donation)
            return donation

        result = await self.runner.run(
            "complete_donation",
            work,
            entity_type="Donation",
            entity_id=donation_id,
        )
        if not result.ok:
            return result

        donation = result.value
        log_audit_event(
            action="donation.completed",
            resource_type="Donation",
            resource_id=str(donation.id),
            old_values={"status": DonationStatus.SCHEDULED.value},
            new_values={
                "status": donation.status.value,
                "is_eligible": donation.is_eligible,
                "unit_serial_number": donation.unit_serial_number,
                "quantity": donation.quantity if donation.is_eligible else 0,
            },
            user_id=str(donation.donor_id),
        )
        return Ok(donation)

    async def _assign_unit_serial(
        self, session: AsyncSession, supplied: Optional[str]
    ) -> str:
        if supplied is not None:
            if await self._serial_exists(session, supplied):
                raise TransactionAborted(DuplicateUnitSerial(unit_serial_number=supplied))
            return supplied

        candidate = None
        for _ in range(self.serial_max_attempts):
            candidate = self.serial_factory()
            if not await self._serial_exists(session, candidate):
                return candidate
            logger.warning(f"Generated unit serial {candidate} already taken, retrying")

        raise TransactionAborted(
            DuplicateUnitSerial(
                unit_serial_number=candidate, attempts=self.serial_max_attempts
            )
        )

    async def _serial_exists(self, session: AsyncSession, serial: str) -> bool:
        result = await session.execute(
            select(Donation.id).where(Donation.unit_serial_number == serial)
        )
        return result.first() is not None

    async def _restock(
        self,
        session: AsyncSession,
        blood_bank_id: UUID,
        blood_group: BloodGroup,
        amount: int,
        now: datetime,
        expiry_date,
    ) -> None:
        stock = await self._load_stock_line(session, blood_bank_id, blood_group)
        if stock is None:
            # A concurrent first donation for this line fails the flush with
            # IntegrityError and the runner retries into the update branch
            session.add(
                BloodInventory(
                    blood_bank_id=blood_bank_id,
                    blood_group=blood_group,
                    quantity=amount,
                    expiry_date=expiry_date,
                    last_updated=now,
                )
            )
            await session.flush()
            return

        result = await session.execute(
            update(BloodInventory)
            .where(
                BloodInventory.id == stock.id,
                BloodInventory.quantity == stock.quantity,
            )
            .values(
                quantity=BloodInventory.quantity + amount,
                expiry_date=expiry_date,
                last_updated=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise WriteConflict("BloodInventory", stock.id)

    async def _advance_last_donation(
        self, session: AsyncSession, donor_id: UUID, donation_date: datetime
    ) -> None:
        # Matches nothing when a later donation is already on record
        await session.execute(
            update(User)
            .where(
                and_(
                    User.id == donor_id,
                    or_(User.last_donation.is_(None), User.last_donation < donation_date),
                )
            )
            .values(last_donation=donation_date)
            .execution_options(synchronize_session=False)
        )

    async def _load_stock_line(
        self, session: AsyncSession, blood_bank_id: UUID, blood_group: BloodGroup
    ) -> Optional[BloodInventory]:
        result = await session.execute(
            select(BloodInventory).where(
                BloodInventory.blood_bank_id == blood_bank_id,
                BloodInventory.blood_group == blood_group,
            )
        )
        return result.scalar_one_or_none()
