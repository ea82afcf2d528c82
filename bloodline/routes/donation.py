from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status

from bloodline.dependencies import get_donation_service, get_inventory_engine
from bloodline.schemas.donation import (
    DonationResponse,
    DonationSchedule,
    DonationUpdateInput,
    HealthCheckInput,
)
from bloodline.services.donation import DonationService
from bloodline.services.inventory_engine import InventoryTransactionEngine
from bloodline.routes.responses import result_response

router = APIRouter(prefix="/donations", tags=["donations"])


@router.post("/schedule", status_code=status.HTTP_201_CREATED)
async def schedule_donation(
    schedule_data: DonationSchedule,
    service: DonationService = Depends(get_donation_service),
):
    result = await service.schedule_donation(schedule_data)
    return result_response(result, DonationResponse, status.HTTP_201_CREATED)


@router.get("/{donation_id}")
async def get_donation(
    donation_id: UUID,
    service: DonationService = Depends(get_donation_service),
):
    return result_response(await service.get_donation(donation_id), DonationResponse)


@router.post("/{donation_id}/complete")
async def complete_donation(
    donation_id: UUID,
    health_check: HealthCheckInput,
    engine: InventoryTransactionEngine = Depends(get_inventory_engine),
):
    """Record the health check and, for an eligible donor, restock inventory."""
    result = await engine.complete_donation(donation_id, health_check)
    return result_response(result, DonationResponse)


@router.post("/{donation_id}/cancel")
async def cancel_donation(
    donation_id: UUID,
    payload: Optional[DonationUpdateInput] = None,
    service: DonationService = Depends(get_donation_service),
):
    reason = payload.reason if payload else None
    return result_response(
        await service.cancel_donation(donation_id, reason), DonationResponse
    )


@router.post("/{donation_id}/no-show")
async def mark_no_show(
    donation_id: UUID,
    service: DonationService = Depends(get_donation_service),
):
    return result_response(await service.mark_no_show(donation_id), DonationResponse)
