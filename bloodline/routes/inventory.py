from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from bloodline.dependencies import get_query_service
from bloodline.routes.responses import error_response, result_response
from bloodline.services.inventory import InventoryQueryService

router = APIRouter(tags=["inventory"])


def _present(**params: Any) -> Dict[str, Any]:
    return {key: value for key, value in params.items() if value is not None}


@router.get("/blood-availability")
async def get_blood_availability(
    blood_group: Optional[str] = Query(None, description="e.g. O_POSITIVE or O+"),
    city: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    min_quantity: Optional[str] = Query(None),
    service: InventoryQueryService = Depends(get_query_service),
):
    """Stock lines with units available, largest quantity first."""
    result = service.search_availability(
        _present(blood_group=blood_group, city=city, state=state, min_quantity=min_quantity)
    )
    if not result.ok:
        return error_response(result.error)
    return result_response(await result.value.all())


@router.get("/donors/eligible")
async def get_eligible_donors(
    blood_group: Optional[str] = Query(None),
    city: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    service: InventoryQueryService = Depends(get_query_service),
):
    result = service.search_eligible_donors(
        _present(blood_group=blood_group, city=city, state=state)
    )
    if not result.ok:
        return error_response(result.error)
    return result_response(await result.value.all())


@router.get("/donors/{donor_id}/stats")
async def get_donor_stats(
    donor_id: UUID,
    service: InventoryQueryService = Depends(get_query_service),
):
    return result_response(await service.get_donor_stats(donor_id))


@router.get("/stats")
async def get_aggregate_stats(
    service: InventoryQueryService = Depends(get_query_service),
):
    return result_response(await service.get_aggregate_stats())


@router.get("/blood-banks/{blood_bank_id}/dashboard")
async def get_blood_bank_dashboard(
    blood_bank_id: UUID,
    service: InventoryQueryService = Depends(get_query_service),
):
    return result_response(await service.get_blood_bank_dashboard(blood_bank_id))
