"""
Read-only queries over stock, donors and records.

Nothing here writes. Searches return a ``QueryResult`` that runs its query
only when iterated and runs it again on every new iteration, so a caller
always sees committed data as of the moment it starts reading.
"""

from datetime import datetime, time, timedelta
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Generic,
    List,
    Mapping,
    Optional,
    TypeVar,
    Union,
)
from uuid import UUID

from sqlalchemy import Select, func, or_, select
from sqlalchemy.exc import DBAPIError

from bloodline.database import Database
from bloodline.db.base import utcnow
from bloodline.errors import InvalidInput, LedgerError, NotFound, StorageUnavailable
from bloodline.models.donation import ELIGIBILITY_WINDOW_DAYS, Donation
from bloodline.models.facility import BloodBank
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
from bloodline.schemas.inventory import (
    AggregateStats,
    AvailabilityFilter,
    BloodBankDashboard,
    DonorSearchFilter,
    DonorStats,
    DonorView,
    StockLineView,
)
from bloodline.services.transactions import storage_unavailable
from bloodline.utils.result import Err, Ok, Result
from bloodline.utils.validation import parse_input

# Estimate used on donor statistics pages: one unit helps up to three patients
LIVES_PER_DONATION = 3

T = TypeVar("T")


class QueryFailed(Exception):
    """Raised while iterating a ``QueryResult`` when storage cannot be read."""

    def __init__(self, error: StorageUnavailable):
        super().__init__(error.reason)
        self.error = error


class QueryResult(Generic[T]):
    """Lazy, restartable sequence of read models.

    Iteration raises ``QueryFailed`` on a storage error; ``all()`` returns the
    same failure as ``Err(StorageUnavailable)``.
    """

    def __init__(
        self,
        database: Database,
        build_statement: Callable[[], Select],
        to_view: Callable[[Any], T],
    ):
        self._database = database
        self._build_statement = build_statement
        self._to_view = to_view

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        try:
            async with self._database.session() as session:
                rows = (await session.execute(self._build_statement())).all()
        except DBAPIError as e:
            raise QueryFailed(storage_unavailable("search", e)) from e
        for row in rows:
            yield self._to_view(row)

    async def all(self) -> Result[List[T], StorageUnavailable]:
        try:
            return Ok([item async for item in self])
        except QueryFailed as e:
            return Err(e.error)


def _stock_line_view(row) -> StockLineView:
    stock, bank = row
    return StockLineView(
        id=stock.id,
        blood_group=stock.blood_group,
        quantity=stock.quantity,
        minimum_quantity=stock.minimum_quantity,
        is_low_stock=stock.is_low_stock,
        last_updated=stock.last_updated,
        blood_bank_id=bank.id,
        blood_bank_name=bank.name,
        address=bank.address,
        city=bank.city,
        state=bank.state,
        phone=bank.phone,
        operating_hours=bank.operating_hours,
        latitude=bank.latitude,
        longitude=bank.longitude,
    )


def _donor_view(row) -> DonorView:
    return DonorView.model_validate(row[0])


class InventoryQueryService:
    def __init__(self, database: Database, clock: Callable[[], datetime] = utcnow):
        self.database = database
        self.clock = clock

    def search_availability(
        self, filters: Union[AvailabilityFilter, Mapping[str, Any], None] = None
    ) -> Result[QueryResult[StockLineView], InvalidInput]:
        """Stock lines holding units at active, verified blood banks, largest first."""
        parsed = parse_input(AvailabilityFilter, filters)
        if not parsed.ok:
            return parsed
        criteria = parsed.value

        def build_statement() -> Select:
            query = (
                select(BloodInventory, BloodBank)
                .join(BloodBank, BloodInventory.blood_bank_id == BloodBank.id)
                .where(
                    BloodBank.is_active.is_(True),
                    BloodBank.is_verified.is_(True),
                    BloodInventory.quantity >= criteria.min_quantity,
                )
            )
            if criteria.blood_group is not None:
                query = query.where(BloodInventory.blood_group == criteria.blood_group)
            if criteria.city is not None:
                query = query.where(func.lower(BloodBank.city) == criteria.city.lower())
            if criteria.state is not None:
                query = query.where(func.lower(BloodBank.state) == criteria.state.lower())
            return query.order_by(
                BloodInventory.quantity.desc(),
                BloodInventory.created_at.asc(),
                BloodInventory.id.asc(),
            )

        return Ok(QueryResult(self.database, build_statement, _stock_line_view))

    def search_eligible_donors(
        self, filters: Union[DonorSearchFilter, Mapping[str, Any], None] = None
    ) -> Result[QueryResult[DonorView], InvalidInput]:
        """
        Active, verified donors outside the eligibility window.

        Donors who never donated come first, then the longest-rested; equal
        dates keep registration order.
        """
        parsed = parse_input(DonorSearchFilter, filters)
        if not parsed.ok:
            return parsed
        criteria = parsed.value

        def build_statement() -> Select:
            cutoff = self.clock() - timedelta(days=ELIGIBILITY_WINDOW_DAYS)
            query = select(User).where(
                User.role == UserRole.DONOR,
                User.is_active.is_(True),
                User.is_verified.is_(True),
                or_(User.last_donation.is_(None), User.last_donation <= cutoff),
            )
            if criteria.blood_group is not None:
                query = query.where(User.blood_group == criteria.blood_group)
            if criteria.city is not None:
                query = query.where(func.lower(User.city) == criteria.city.lower())
            if criteria.state is not None:
                query = query.where(func.lower(User.state) == criteria.state.lower())
            return query.order_by(
                User.last_donation.asc().nulls_first(),
                User.created_at.asc(),
                User.id.asc(),
            )

        return Ok(QueryResult(self.database, build_statement, _donor_view))

    async def get_aggregate_stats(self) -> Result[AggregateStats, StorageUnavailable]:
        """Stock totals and averages per blood group plus record counts by status."""
        try:
            async with self.database.session() as session:
                stock_rows = (
                    await session.execute(
                        select(
                            BloodInventory.blood_group,
                            func.sum(BloodInventory.quantity),
                            func.avg(BloodInventory.quantity),
                        ).group_by(BloodInventory.blood_group)
                    )
                ).all()
                request_rows = (
                    await session.execute(
                        select(BloodRequest.status, func.count(BloodRequest.id)).group_by(
                            BloodRequest.status
                        )
                    )
                ).all()
                donation_rows = (
                    await session.execute(
                        select(Donation.status, func.count(Donation.id)).group_by(
                            Donation.status
                        )
                    )
                ).all()
        except DBAPIError as e:
            return Err(storage_unavailable("get_aggregate_stats", e))

        totals = {group: 0 for group in BloodGroup}
        averages = {group: 0.0 for group in BloodGroup}
        for group, total, average in stock_rows:
            totals[group] = int(total or 0)
            averages[group] = round(float(average or 0), 2)

        request_counts = {status: 0 for status in RequestStatus}
        request_counts.update({status: count for status, count in request_rows})
        donation_counts = {status: 0 for status in DonationStatus}
        donation_counts.update({status: count for status, count in donation_rows})

        return Ok(
            AggregateStats(
                per_group_totals=totals,
                per_group_averages=averages,
                request_counts_by_status=request_counts,
                donation_counts_by_status=donation_counts,
            )
        )

    async def get_blood_bank_dashboard(
        self, blood_bank_id: UUID
    ) -> Result[BloodBankDashboard, LedgerError]:
        try:
            return await self._blood_bank_dashboard(blood_bank_id)
        except DBAPIError as e:
            return Err(storage_unavailable("get_blood_bank_dashboard", e))

    async def get_donor_stats(self, donor_id: UUID) -> Result[DonorStats, LedgerError]:
        try:
            return await self._donor_stats(donor_id)
        except DBAPIError as e:
            return Err(storage_unavailable("get_donor_stats", e))

    async def _blood_bank_dashboard(
        self, blood_bank_id: UUID
    ) -> Result[BloodBankDashboard, LedgerError]:
        now = self.clock()
        start_of_day = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)

        async with self.database.session() as session:
            if await session.get(BloodBank, blood_bank_id) is None:
                return Err(NotFound(entity_type="BloodBank", id=blood_bank_id))

            stock_lines = (
                await session.scalars(
                    select(BloodInventory).where(
                        BloodInventory.blood_bank_id == blood_bank_id
                    )
                )
            ).all()

            todays_donations = await session.scalar(
                select(func.count(Donation.id)).where(
                    Donation.blood_bank_id == blood_bank_id,
                    Donation.status == DonationStatus.COMPLETED,
                    Donation.donation_date >= start_of_day,
                )
            )
            pending_donations = await session.scalar(
                select(func.count(Donation.id)).where(
                    Donation.blood_bank_id == blood_bank_id,
                    Donation.status == DonationStatus.SCHEDULED,
                )
            )
            pending_requests = await session.scalar(
                select(func.count(BloodRequest.id)).where(
                    BloodRequest.blood_bank_id == blood_bank_id,
                    BloodRequest.status == RequestStatus.PENDING,
                )
            )
            critical_requests = await session.scalar(
                select(func.count(BloodRequest.id)).where(
                    BloodRequest.blood_bank_id == blood_bank_id,
                    BloodRequest.status == RequestStatus.PENDING,
                    BloodRequest.urgency == Urgency.CRITICAL,
                )
            )

        distribution = {group: 0 for group in BloodGroup}
        for line in stock_lines:
            distribution[line.blood_group] = line.quantity

        return Ok(
            BloodBankDashboard(
                blood_bank_id=blood_bank_id,
                total_units=sum(line.quantity for line in stock_lines),
                blood_group_distribution=distribution,
                low_stock_groups=sorted(
                    (line.blood_group for line in stock_lines if line.is_low_stock),
                    key=lambda group: group.value,
                ),
                todays_donations=todays_donations or 0,
                pending_donations=pending_donations or 0,
                pending_requests=pending_requests or 0,
                critical_requests=critical_requests or 0,
            )
        )

    async def _donor_stats(self, donor_id: UUID) -> Result[DonorStats, LedgerError]:
        async with self.database.session() as session:
            donor = await session.get(User, donor_id)
            if donor is None:
                return Err(NotFound(entity_type="User", id=donor_id))

            completed = (
                await session.execute(
                    select(
                        func.count(Donation.id), func.coalesce(func.sum(Donation.quantity), 0)
                    ).where(
                        Donation.donor_id == donor_id,
                        Donation.status == DonationStatus.COMPLETED,
                        Donation.is_eligible.is_(True),
                    )
                )
            ).one()
            pending = await session.scalar(
                select(func.count(Donation.id)).where(
                    Donation.donor_id == donor_id,
                    Donation.status == DonationStatus.SCHEDULED,
                )
            )

        total_donations, total_units = completed
        next_eligible: Optional[datetime] = None
        if donor.last_donation is not None:
            next_eligible = donor.last_donation + timedelta(days=ELIGIBILITY_WINDOW_DAYS)

        return Ok(
            DonorStats(
                donor_id=donor.id,
                total_donations=total_donations,
                last_donation_date=donor.last_donation,
                next_eligible_date=next_eligible,
                total_units_contributed=int(total_units),
                lives_impacted=total_donations * LIVES_PER_DONATION,
                pending_donations=pending or 0,
            )
        )
