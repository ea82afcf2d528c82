from fastapi import Request

from bloodline.config import Settings
from bloodline.database import Database
from bloodline.services.donation import DonationService
from bloodline.services.inventory import InventoryQueryService
from bloodline.services.inventory_engine import InventoryTransactionEngine
from bloodline.services.request import BloodRequestService


def get_database(request: Request) -> Database:
    """The storage handle built by the application lifespan."""
    return request.app.state.database


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_inventory_engine(request: Request) -> InventoryTransactionEngine:
    return InventoryTransactionEngine(get_database(request), get_app_settings(request))


def get_query_service(request: Request) -> InventoryQueryService:
    return InventoryQueryService(get_database(request))


def get_request_service(request: Request) -> BloodRequestService:
    return BloodRequestService(get_database(request), get_app_settings(request))


def get_donation_service(request: Request) -> DonationService:
    return DonationService(get_database(request), get_app_settings(request))
