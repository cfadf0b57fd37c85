import httpx
from fastapi import Depends

from shared.config.settings import INVENTORY_URL, PRODUCT_URL, SERVICE_TIMEOUT_SECONDS
from shared.security.api_key import API_HEADERS
from services.event_publisher.dispatcher import OutboxDispatcher
from .clients import CatalogClient, InventoryClient
from .reservation_coordinator import ReservationCoordinator

_dispatcher: OutboxDispatcher | None = None


def catalog_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=PRODUCT_URL, headers=API_HEADERS, timeout=SERVICE_TIMEOUT_SECONDS)


def inventory_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=INVENTORY_URL, headers=API_HEADERS, timeout=SERVICE_TIMEOUT_SECONDS)


async def get_catalog_client():
    async with catalog_http_client() as client:
        yield CatalogClient(client)


async def get_inventory_client():
    async with inventory_http_client() as client:
        yield InventoryClient(client)


def get_dispatcher() -> OutboxDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = OutboxDispatcher()
    return _dispatcher


async def get_coordinator(
    catalog: CatalogClient = Depends(get_catalog_client),
    inventory: InventoryClient = Depends(get_inventory_client),
) -> ReservationCoordinator:
    return ReservationCoordinator(catalog, inventory)
