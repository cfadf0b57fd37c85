from prometheus_client import Counter, Histogram

# Inventory Ledger
inventory_ledger_operations_total = Counter(
    "inventory_ledger_operations_total",
    "Inventory ledger mutations",
    ["operation", "outcome"]  # operation: reserve/release/confirm/restock/adjust, outcome: ok/rejected/noop
)

# Order placement saga
order_placement_total = Counter(
    "order_placement_total",
    "Total order placements processed",
    ["outcome"]  # Labels: 'created', 'replayed', 'failed'
)

order_placement_duration_seconds = Histogram(
    "order_placement_duration_seconds",
    "Order placement saga duration in seconds"
)

saga_compensation_total = Counter(
    "saga_compensation_total",
    "Total saga compensations triggered",
    ["step_name"]  # Labels: 'reserve_inventory', 'persist_order', etc.
)

inventory_sync_pending_total = Counter(
    "inventory_sync_pending_total",
    "Status transitions whose inventory confirm/release was deferred to reconciliation",
    ["action"]  # Labels: 'confirm', 'release'
)

inventory_sync_failed_total = Counter(
    "inventory_sync_failed_total",
    "Inventory confirm/release calls the ledger refused; the order needs manual inspection",
    ["action"]  # Labels: 'confirm', 'release'
)

orphaned_reservations_released_total = Counter(
    "orphaned_reservations_released_total",
    "Stale pending reservation lines released because no order owns them"
)

# Outbox
outbox_delivery_total = Counter(
    "outbox_delivery_total",
    "Outbox event delivery attempts",
    ["outcome"]  # Labels: 'delivered', 'retry', 'failed'
)
