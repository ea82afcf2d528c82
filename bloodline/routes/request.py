from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from bloodline.dependencies import get_inventory_engine, get_request_service
from bloodline.schemas.request import (
    ApproveRequestInput,
    BloodRequestCreate,
    BloodRequestResponse,
    CancelRequestInput,
    RejectRequestInput,
)
from bloodline.services.inventory_engine import InventoryTransactionEngine
from bloodline.services.request import BloodRequestService
from bloodline.routes.responses import result_response
from bloodline.utils.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/blood-requests", tags=["blood requests"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_blood_request(
    request_data: BloodRequestCreate,
    service: BloodRequestService = Depends(get_request_service),
):
    logger.info(
        "Blood request creation started",
        extra={
            "extra_fields": {
                "blood_group": request_data.blood_group.value,
                "quantity": request_data.quantity_needed,
                "urgency": request_data.urgency.value,
            }
        },
    )
    result = await service.create_request(request_data)
    return result_response(result, BloodRequestResponse, status.HTTP_201_CREATED)


@router.get("")
async def list_blood_requests(
    page: Optional[str] = Query(None, description="Page number (1-based)"),
    page_size: Optional[str] = Query(None, description="Items per page (max 100)"),
    request_status: Optional[str] = Query(None, alias="status"),
    urgency: Optional[str] = Query(None),
    blood_group: Optional[str] = Query(None, description="e.g. O_POSITIVE or O+"),
    blood_bank_id: Optional[str] = Query(None),
    service: BloodRequestService = Depends(get_request_service),
):
    """Paginated blood requests, newest first."""
    filters = {
        "page": page,
        "page_size": page_size,
        "status": request_status,
        "urgency": urgency,
        "blood_group": blood_group,
        "blood_bank_id": blood_bank_id,
    }
    result = await service.list_requests(
        {key: value for key, value in filters.items() if value is not None}
    )
    return result_response(result)


@router.get("/{request_id}")
async def get_blood_request(
    request_id: UUID,
    service: BloodRequestService = Depends(get_request_service),
):
    return result_response(await service.get_request(request_id), BloodRequestResponse)


@router.post("/{request_id}/approve")
async def approve_blood_request(
    request_id: UUID,
    payload: ApproveRequestInput,
    service: BloodRequestService = Depends(get_request_service),
):
    result = await service.approve_request(
        request_id, payload.blood_bank_id, approved_by=payload.approved_by
    )
    return result_response(result, BloodRequestResponse)


@router.post("/{request_id}/fulfill")
async def fulfill_blood_request(
    request_id: UUID,
    payload: ApproveRequestInput,
    engine: InventoryTransactionEngine = Depends(get_inventory_engine),
):
    """Approve (when still pending) and fulfil a request from one blood bank's stock."""
    result = await engine.approve_and_fulfill_request(
        request_id, payload.blood_bank_id, approved_by=payload.approved_by
    )
    return result_response(result, BloodRequestResponse)


@router.post("/{request_id}/reject")
async def reject_blood_request(
    request_id: UUID,
    payload: RejectRequestInput,
    service: BloodRequestService = Depends(get_request_service),
):
    result = await service.reject_request(request_id, payload.reason)
    return result_response(result, BloodRequestResponse)


@router.post("/{request_id}/cancel")
async def cancel_blood_request(
    request_id: UUID,
    payload: Optional[CancelRequestInput] = None,
    service: BloodRequestService = Depends(get_request_service),
):
    reason = payload.reason if payload else None
    result = await service.cancel_request(request_id, reason)
    return result_response(result, BloodRequestResponse)
