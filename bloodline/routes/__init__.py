from fastapi import APIRouter
from .request import router as request_router
from .donation import router as donation_router
from .inventory import router as inventory_router


router = APIRouter()

router.include_router(request_router)
router.include_router(donation_router)
router.include_router(inventory_router)
