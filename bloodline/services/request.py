from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Union
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from bloodline.config import Settings, get_settings
from bloodline.database import Database
from bloodline.db.base import utcnow
from bloodline.errors import InsufficientInventory, LedgerError, NotFound
from bloodline.models.facility import BloodBank, Hospital
from bloodline.models.inventory import BloodInventory
from bloodline.models.request import BloodRequest
from bloodline.models.user import User
from bloodline.schemas.base_schema import PaginatedResponse, RequestStatus
from bloodline.schemas.request import (
    BloodRequestCreate,
    BloodRequestResponse,
    RequestListFilter,
)
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


async def _get_request_or_abort(session: AsyncSession, request_id: UUID) -> BloodRequest:
    request = await session.get(BloodRequest, request_id)
    if request is None:
        raise TransactionAborted(NotFound(entity_type="BloodRequest", id=request_id))
    return request


class BloodRequestService:
    """Creation and the simple status changes of blood requests.

    Fulfilment touches stock and lives in ``InventoryTransactionEngine``.
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
    async def create_request(
        self, request_data: Union[BloodRequestCreate, Mapping[str, Any]]
    ) -> Result[BloodRequest, LedgerError]:
        parsed = parse_input(BloodRequestCreate, request_data)
        if not parsed.ok:
            return parsed
        data = parsed.value

        async def work(session: AsyncSession) -> BloodRequest:
            if await session.get(User, data.requester_id) is None:
                raise TransactionAborted(NotFound(entity_type="User", id=data.requester_id))
            if data.hospital_id and await session.get(Hospital, data.hospital_id) is None:
                raise TransactionAborted(NotFound(entity_type="Hospital", id=data.hospital_id))
            if data.blood_bank_id and await session.get(BloodBank, data.blood_bank_id) is None:
                raise TransactionAborted(
                    NotFound(entity_type="BloodBank", id=data.blood_bank_id)
                )

            new_request = BloodRequest(**data.model_dump(), status=RequestStatus.PENDING)
            session.add(new_request)
            await session.flush()
            await session.refresh(new_request)
            return new_request

        result = await self.runner.run("create_request", work, entity_type="BloodRequest")
        if result.ok:
            created = result.value
            log_audit_event(
                action="blood_request.created",
                resource_type="BloodRequest",
                resource_id=str(created.id),
                new_values={
                    "status": created.status.value,
                    "blood_group": created.blood_group.value,
                    "quantity_needed": created.quantity_needed,
                    "urgency": created.urgency.value,
                },
                user_id=str(created.requester_id),
            )
            logger.info(
                f"Created blood request {created.id} for {created.quantity_needed} "
                f"{created.blood_group.value} units"
            )
        return result

    async def approve_request(
        self,
        request_id: UUID,
        facility_id: UUID,
        approved_by: Optional[str] = None,
    ) -> Result[BloodRequest, LedgerError]:
        """Approve a pending request once the blood bank holds enough units.

        No stock is reserved; units leave the stock line on fulfilment.
        """

        async def work(session: AsyncSession) -> BloodRequest:
            request = await _get_request_or_abort(session, request_id)
            if await session.get(BloodBank, facility_id) is None:
                raise TransactionAborted(NotFound(entity_type="BloodBank", id=facility_id))

            available = await session.scalar(
                select(BloodInventory.quantity).where(
                    BloodInventory.blood_bank_id == facility_id,
                    BloodInventory.blood_group == request.blood_group,
                )
            )
            available = available or 0
            if request.status == RequestStatus.PENDING and available < request.quantity_needed:
                raise TransactionAborted(
                    InsufficientInventory(
                        available=available, requested=request.quantity_needed
                    )
                )

            await apply_transition(
                session,
                request,
                RequestStatus.APPROVED,
                approved_at=self.clock(),
                approved_by=approved_by,
                blood_bank_id=facility_id,
            )
            return request

        return await self._run_transition(
            "approve_request", work, request_id, RequestStatus.APPROVED, approved_by
        )

    async def reject_request(
        self, request_id: UUID, reason: str
    ) -> Result[BloodRequest, LedgerError]:
        async def work(session: AsyncSession) -> BloodRequest:
            request = await _get_request_or_abort(session, request_id)
            await apply_transition(
                session, request, RequestStatus.REJECTED, rejection_reason=reason
            )
            return request

        return await self._run_transition(
            "reject_request", work, request_id, RequestStatus.REJECTED
        )

    async def cancel_request(
        self, request_id: UUID, reason: Optional[str] = None
    ) -> Result[BloodRequest, LedgerError]:
        async def work(session: AsyncSession) -> BloodRequest:
            request = await _get_request_or_abort(session, request_id)
            await apply_transition(
                session, request, RequestStatus.CANCELLED, cancelled_at=self.clock()
            )
            return request

        return await self._run_transition(
            "cancel_request",
            work,
            request_id,
            RequestStatus.CANCELLED,
            extra={"reason": reason},
        )

    async def get_request(self, request_id: UUID) -> Result[BloodRequest, LedgerError]:
        try:
            async with self.database.session() as session:
                request = await session.get(BloodRequest, request_id)
        except DBAPIError as e:
            return Err(storage_unavailable("get_request", e))
        if request is None:
            return Err(NotFound(entity_type="BloodRequest", id=request_id))
        return Ok(request)

    @performance_monitor
    async def list_requests(
        self, filters: Union[RequestListFilter, Mapping[str, Any], None] = None
    ) -> Result[PaginatedResponse[BloodRequestResponse], LedgerError]:
        """One page of requests matching the filters, newest first."""
        parsed = parse_input(RequestListFilter, filters)
        if not parsed.ok:
            return parsed
        criteria = parsed.value

        conditions = []
        if criteria.status is not None:
            conditions.append(BloodRequest.status == criteria.status)
        if criteria.urgency is not None:
            conditions.append(BloodRequest.urgency == criteria.urgency)
        if criteria.blood_group is not None:
            conditions.append(BloodRequest.blood_group == criteria.blood_group)
        if criteria.blood_bank_id is not None:
            conditions.append(BloodRequest.blood_bank_id == criteria.blood_bank_id)

        try:
            async with self.database.session() as session:
                total = (
                    await session.execute(
                        select(func.count(BloodRequest.id)).where(*conditions)
                    )
                ).scalar_one()
                rows = (
                    await session.execute(
                        select(BloodRequest)
                        .where(*conditions)
                        .order_by(BloodRequest.created_at.desc(), BloodRequest.id.desc())
                        .offset((criteria.page - 1) * criteria.page_size)
                        .limit(criteria.page_size)
                    )
                ).scalars().all()
        except DBAPIError as e:
            return Err(storage_unavailable("list_requests", e))

        total_pages = (total + criteria.page_size - 1) // criteria.page_size
        return Ok(
            PaginatedResponse[BloodRequestResponse](
                items=[BloodRequestResponse.model_validate(row) for row in rows],
                total_items=total,
                total_pages=total_pages,
                current_page=criteria.page,
                page_size=criteria.page_size,
                has_next=criteria.page < total_pages,
                has_prev=criteria.page > 1,
            )
        )

    async def _run_transition(
        self,
        operation: str,
        work,
        request_id: UUID,
        to_status: RequestStatus,
        user_id: Optional[str] = None,
        extra: Optional[dict] = None,
    ) -> Result[BloodRequest, LedgerError]:
        result = await self.runner.run(
            operation, work, entity_type="BloodRequest", entity_id=request_id
        )
        if result.ok:
            new_values = {"status": to_status.value}
            new_values.update(extra or {})
            log_audit_event(
                action=f"blood_request.{to_status.value.lower()}",
                resource_type="BloodRequest",
                resource_id=str(request_id),
                new_values=new_values,
                user_id=user_id,
            )
        return result
