import asyncio

import structlog

from shared.config.database import AsyncSessionLocal
from shared.config.settings import RECONCILE_INTERVAL_SECONDS, RESERVATION_TTL_SECONDS
from shared.errors import ServiceError
from shared.observability import orphaned_reservations_released_total
from services.order_service.repository import OrderRepository
from .clients import InventoryClient
from .dependencies import inventory_http_client
from .reservation_coordinator import SYNC_FAILED, SYNC_SETTLED, ReservationCoordinator

log = structlog.get_logger(__name__)


async def reconcile_pending_inventory(coordinator: ReservationCoordinator, session_factory=AsyncSessionLocal, limit: int = 100) -> dict:
    """
    Retries the owed confirm/release for every order flagged
    inventory_sync_pending. Orders that still cannot be settled keep the flag
    for the next pass; orders the ledger refuses are counted as failed.
    """
    async with session_factory() as db:
        order_ids = await OrderRepository.list_inventory_sync_pending(db, limit)
        outcomes = [await coordinator.resync(db, order_id) for order_id in order_ids]

    settled = outcomes.count(SYNC_SETTLED)
    failed = outcomes.count(SYNC_FAILED)
    result = {
        "checked": len(order_ids),
        "settled": settled,
        "failed": failed,
        "still_pending": len(order_ids) - settled - failed,
    }
    if order_ids:
        log.info("inventory_reconciled", **result)
    return result


async def sweep_orphaned_reservations(
    inventory: InventoryClient,
    session_factory=AsyncSessionLocal,
    ttl_seconds: float = RESERVATION_TTL_SECONDS,
    limit: int = 100,
) -> int:
    """
    Releases pending reservation lines older than ``ttl_seconds`` that no
    order owns. They are left by placements whose compensating release never
    reached the ledger. Returns the number of lines released.
    """
    lines = await inventory.list_stale_reservations(ttl_seconds, limit)
    if not lines:
        return 0

    async with session_factory() as db:
        owned = await OrderRepository.existing_reservation_ids(db, {line["reservationId"] for line in lines})

    released = 0
    for line in lines:
        if line["reservationId"] in owned:
            continue
        try:
            await inventory.release(line["productId"], line["quantity"], line["reservationId"])
        except ServiceError as e:
            log.warning(
                "orphaned_reservation_release_failed",
                reservation_id=line["reservationId"],
                product_id=line["productId"],
                error=e.message,
            )
            continue
        released += 1
        orphaned_reservations_released_total.inc()
        log.warning(
            "orphaned_reservation_released",
            reservation_id=line["reservationId"],
            product_id=line["productId"],
            quantity=line["quantity"],
        )
    return released


async def run_reconciliation(coordinator: ReservationCoordinator, session_factory=AsyncSessionLocal, ttl_seconds: float = RESERVATION_TTL_SECONDS) -> dict:
    """One full pass: settle sync-pending orders, then sweep orphaned holds."""
    result = await reconcile_pending_inventory(coordinator, session_factory)
    result["orphans_released"] = await sweep_orphaned_reservations(
        coordinator.inventory, session_factory, ttl_seconds
    )
    return result


class InventoryReconciler:

    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory

    async def run_once(self) -> dict:
        async with inventory_http_client() as client:
            coordinator = ReservationCoordinator(catalog=None, inventory=InventoryClient(client))
            return await run_reconciliation(coordinator, self.session_factory)

    async def run_forever(self, interval: float = RECONCILE_INTERVAL_SECONDS):
        log.info("inventory_reconciler_started", interval=interval)
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error("inventory_reconcile_error", error=str(e))
            await asyncio.sleep(interval)
