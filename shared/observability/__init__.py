from .setup import setup_observability, configure_logging
from .metrics import (
    inventory_ledger_operations_total,
    order_placement_total,
    order_placement_duration_seconds,
    saga_compensation_total,
    inventory_sync_pending_total,
    inventory_sync_failed_total,
    orphaned_reservations_released_total,
    outbox_delivery_total,
)
