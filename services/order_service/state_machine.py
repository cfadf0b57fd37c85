"""
Order and payment status rules.

    pending -> confirmed | processing
    confirmed -> processing
    processing -> shipped
    shipped -> delivered
    any non-terminal -> cancelled | refunded
    delivered, cancelled, refunded are terminal

Payment status moves independently of the order status.
"""
from shared.errors import InvalidTransition

PENDING = "pending"
CONFIRMED = "confirmed"
PROCESSING = "processing"
SHIPPED = "shipped"
DELIVERED = "delivered"
CANCELLED = "cancelled"
REFUNDED = "refunded"

ORDER_STATUSES = (PENDING, CONFIRMED, PROCESSING, SHIPPED, DELIVERED, CANCELLED, REFUNDED)
TERMINAL_STATUSES = frozenset({DELIVERED, CANCELLED, REFUNDED})

_FORWARD = {
    PENDING: {CONFIRMED, PROCESSING},
    CONFIRMED: {PROCESSING},
    PROCESSING: {SHIPPED},
    SHIPPED: {DELIVERED},
}

ORDER_TRANSITIONS = {
    status: (_FORWARD.get(status, set()) | {CANCELLED, REFUNDED}) if status not in TERMINAL_STATUSES else set()
    for status in ORDER_STATUSES
}

# Inventory side effect owed when an order enters a status
CONFIRM_INVENTORY_ON = frozenset({DELIVERED})
RELEASE_INVENTORY_ON = frozenset({CANCELLED, REFUNDED})

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"
PAYMENT_PARTIALLY_REFUNDED = "partially_refunded"

PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_FAILED, PAYMENT_REFUNDED, PAYMENT_PARTIALLY_REFUNDED)

PAYMENT_TRANSITIONS = {
    PAYMENT_PENDING: {PAYMENT_PAID, PAYMENT_FAILED},
    PAYMENT_FAILED: {PAYMENT_PENDING, PAYMENT_PAID},
    PAYMENT_PAID: {PAYMENT_REFUNDED, PAYMENT_PARTIALLY_REFUNDED},
    PAYMENT_PARTIALLY_REFUNDED: {PAYMENT_REFUNDED},
    PAYMENT_REFUNDED: set(),
}

PAYMENT_METHODS = ("pending", "UPI", "Debit Card", "Credit Card", "Cash on Delivery", "Net Banking")
CASH_ON_DELIVERY = "Cash on Delivery"


def can_transition(current: str, new: str) -> bool:
    return new in ORDER_TRANSITIONS.get(current, set())


def assert_transition(current: str, new: str):
    if new not in ORDER_STATUSES:
        raise InvalidTransition(f"Unknown order status '{new}'")
    if not can_transition(current, new):
        raise InvalidTransition(f"Cannot move order from {current} to {new}")


def assert_payment_transition(current: str, new: str):
    if new not in PAYMENT_STATUSES:
        raise InvalidTransition(f"Unknown payment status '{new}'")
    if new not in PAYMENT_TRANSITIONS.get(current, set()):
        raise InvalidTransition(f"Cannot move payment from {current} to {new}")


def is_legal_history(statuses: list[str]) -> bool:
    """True if a replayed status sequence only uses legal transitions."""
    if not statuses or statuses[0] != PENDING:
        return False
    return all(can_transition(a, b) for a, b in zip(statuses, statuses[1:]))
