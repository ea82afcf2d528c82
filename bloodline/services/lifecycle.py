"""
Lifecycle state machines for blood requests and donations.

Every status change in the package goes through ``validate_transition``; no
transition outside these tables is allowed.
"""

from typing import Any, Dict, FrozenSet, Union

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from bloodline.errors import InvalidStateTransition
from bloodline.models.donation import Donation
from bloodline.models.request import BloodRequest
from bloodline.schemas.base_schema import DonationStatus, RequestStatus
from bloodline.services.transactions import WriteConflict, abort_on_err
from bloodline.utils.result import Err, Ok, Result

REQUEST_TRANSITIONS: Dict[RequestStatus, FrozenSet[RequestStatus]] = {
    RequestStatus.PENDING: frozenset(
        {RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.CANCELLED}
    ),
    RequestStatus.APPROVED: frozenset(
        {RequestStatus.FULFILLED, RequestStatus.CANCELLED}
    ),
    RequestStatus.FULFILLED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}

DONATION_TRANSITIONS: Dict[DonationStatus, FrozenSet[DonationStatus]] = {
    DonationStatus.SCHEDULED: frozenset(
        {DonationStatus.COMPLETED, DonationStatus.CANCELLED, DonationStatus.NO_SHOW}
    ),
    DonationStatus.COMPLETED: frozenset(),
    DonationStatus.CANCELLED: frozenset(),
    DonationStatus.NO_SHOW: frozenset(),
}

Record = Union[BloodRequest, Donation]
Status = Union[RequestStatus, DonationStatus]


def _table_for(record: Record) -> Dict:
    if isinstance(record, BloodRequest):
        return REQUEST_TRANSITIONS
    if isinstance(record, Donation):
        return DONATION_TRANSITIONS
    raise TypeError(f"No lifecycle defined for {type(record).__name__}")


def is_terminal(record: Record) -> bool:
    return not _table_for(record)[record.status]


def validate_transition(
    record: Record, from_status: Status, to_status: Status
) -> Result[None, InvalidStateTransition]:
    """Check one step of a record's lifecycle."""
    allowed = _table_for(record).get(from_status, frozenset())
    if to_status in allowed:
        return Ok(None)
    return Err(
        InvalidStateTransition(
            entity_type=type(record).__name__,
            entity_id=record.id,
            current_state=from_status.value,
            attempted_state=to_status.value,
        )
    )


async def apply_transition(
    session: AsyncSession, record: Record, to_status: Status, **values: Any
) -> Status:
    """
    Move ``record`` to ``to_status`` inside the caller's transaction.

    The update only matches while the row still has the status that was
    read, so a concurrent change raises ``WriteConflict``. Returns the
    status the record left.
    """
    from_status = record.status
    abort_on_err(validate_transition(record, from_status, to_status))

    model = type(record)
    result = await session.execute(
        update(model)
        .where(model.id == record.id, model.status == from_status)
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise WriteConflict(model.__name__, record.id)

    await session.refresh(record)
    return from_status
