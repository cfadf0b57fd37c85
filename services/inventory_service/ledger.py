"""
Pure ledger rules for an InventoryRecord.

Derived values are computed here from the stored counters instead of being
left to hooks: ``total`` is written alongside every mutation and ``status``
is computed on read.
"""

OUT_OF_STOCK = "out_of_stock"
LOW_STOCK = "low_stock"
REORDER_NEEDED = "reorder_needed"
IN_STOCK = "in_stock"

PENDING = "pending"
CONFIRMED = "confirmed"
RELEASED = "released"


def stock_status(stock: int, low_stock_threshold: int, reorder_point: int) -> str:
    # Checked in this order, so with the default thresholds (10/5) low_stock wins
    if stock == 0:
        return OUT_OF_STOCK
    if stock <= low_stock_threshold:
        return LOW_STOCK
    if stock <= reorder_point:
        return REORDER_NEEDED
    return IN_STOCK


def total_units(stock: int, reserved: int) -> int:
    return stock + reserved
