from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Union
from uuid import UUID

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from bloodline.config import Settings, get_settings
from bloodline.database import Database
from bloodline.db.base import utcnow
from bloodline.errors import DonorNotEligible, LedgerError, NotFound
from bloodline.models.donation import Donation
from bloodline.models.facility import BloodBank
from bloodline.models.user import User
from bloodline.schemas.base_schema import DonationStatus, UserRole
from bloodline.schemas.donation import DonationSchedule
from bloodline.services.lifecycle import apply_transition
from bloodline.services.transactions import (
    TransactionAborted,
    TransactionRunner,
    storage_unavailable,
)
from bloodline.utils.logging_config import get_logger, log_audit_event
from bloodline.utils.performance_monitor import performance_monitor
from bloodline.utils.result import Err, Ok, Result
from bloodline.utils.validation import parse_input

logger = get_logger(__name__)


class DonationService:
    """Scheduling and the non-stock status changes of donations.

    Completion restocks inventory and lives in ``InventoryTransactionEngine``.
    """

    def __init__(
        self,
        database: Database,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.database = database
        self.runner = TransactionRunner.from_settings(database, settings or get_settings())
        self.clock = clock

    @performance_monitor
    async def schedule_donation(
        self, schedule_data: Union[DonationSchedule, Mapping[str, Any]]
    ) -> Result[Donation, LedgerError]:
        parsed = parse_input(DonationSchedule, schedule_data)
        if not parsed.ok:
            return parsed
        data = parsed.value

        async def work(session: AsyncSession) -> Donation:
            donor = await session.get(User, data.donor_id)
            if donor is None:
                raise TransactionAborted(NotFound(entity_type="User", id=data.donor_id))
            if donor.role != UserRole.DONOR:
                raise TransactionAborted(
                    DonorNotEligible(
                        donor_id=donor.id,
                        days_remaining=0,
                        reason="Only users with the DONOR role can schedule donations",
                    )
                )
            if donor.blood_group is None:
                raise TransactionAborted(
                    DonorNotEligible(
                        donor_id=donor.id,
                        days_remaining=0,
                        reason="Donor has no blood group on record",
                    )
                )
            days_remaining = donor.days_until_eligible(self.clock())
            if days_remaining > 0:
                raise TransactionAborted(
                    DonorNotEligible(donor_id=donor.id, days_remaining=days_remaining)
                )
            if await session.get(BloodBank, data.blood_bank_id) is None:
                raise TransactionAborted(
                    NotFound(entity_type="BloodBank", id=data.blood_bank_id)
                )

            donation = Donation(
                donor_id=donor.id,
                blood_bank_id=data.blood_bank_id,
                blood_group=donor.blood_group,
                quantity=data.quantity,
                scheduled_date=data.scheduled_date,
                pre_test_notes=data.notes,
                status=DonationStatus.SCHEDULED,
            )
            session.add(donation)
            await session.flush()
            await session.refresh(donation)
            return donation

        result = await self.runner.run(
            "schedule_donation", work, entity_type="Donation"
        )
        if result.ok:
            log_audit_event(
                action="donation.scheduled",
                resource_type="Donation",
                resource_id=str(result.value.id),
                new_values={
                    "status": DonationStatus.SCHEDULED.value,
                    "blood_bank_id": str(data.blood_bank_id),
                    "scheduled_date": data.scheduled_date.isoformat(),
                },
                user_id=str(data.donor_id),
            )
            logger.info(
                f"Scheduled donation {result.value.id} for donor {data.donor_id}"
            )
        return result

    async def cancel_donation(
        self, donation_id: UUID, reason: Optional[str] = None
    ) -> Result[Donation, LedgerError]:
        return await self._transition(
            "cancel_donation", donation_id, DonationStatus.CANCELLED, reason
        )

    async def mark_no_show(self, donation_id: UUID) -> Result[Donation, LedgerError]:
        return await self._transition("mark_no_show", donation_id, DonationStatus.NO_SHOW)

    async def get_donation(self, donation_id: UUID) -> Result[Donation, LedgerError]:
        try:
            async with self.database.session() as session:
                donation = await session.get(Donation, donation_id)
        except DBAPIError as e:
            return Err(storage_unavailable("get_donation", e))
        if donation is None:
            return Err(NotFound(entity_type="Donation", id=donation_id))
        return Ok(donation)

    async def _transition(
        self,
        operation: str,
        donation_id: UUID,
        to_status: DonationStatus,
        reason: Optional[str] = None,
    ) -> Result[Donation, LedgerError]:
        async def work(session: AsyncSession) -> Donation:
            donation = await session.get(Donation, donation_id)
            if donation is None:
                raise TransactionAborted(NotFound(entity_type="Donation", id=donation_id))
            values = {"post_test_notes": reason} if reason else {}
            await apply_transition(session, donation, to_status, **values)
            return donation

        result = await self.runner.run(
            operation, work, entity_type="Donation", entity_id=donation_id
        )
        if result.ok:
            log_audit_event(
                action=f"donation.{to_status.value.lower()}",
                resource_type="Donation",
                resource_id=str(donation_id),
                old_values={"status": DonationStatus.SCHEDULED.value},
                new_values={"status": to_status.value, "reason": reason},
            )
        return result
