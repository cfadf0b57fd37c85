import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from .models import OutboxEvent
from .repository import OutboxRepository

log = structlog.get_logger(__name__)

ORDER_CREATED = "OrderCreated"
ORDER_STATUS_UPDATED = "OrderStatusUpdated"
ORDER_PAYMENT_UPDATED = "OrderPaymentUpdated"

EVENT_SOURCE = "order-service"


class EventPublisher:

    @staticmethod
    def publish(db: AsyncSession, event_type: str, payload: dict, order_id: int) -> OutboxEvent:
        """
        Appends an event to the outbox inside the caller's transaction.
        Delivery happens later through the dispatcher, at least once.
        """
        event_id = str(uuid.uuid4())
        occurred_at = datetime.now(timezone.utc)
        envelope = {
            "eventId": event_id,
            "type": event_type,
            "orderId": order_id,
            "occurredAt": occurred_at.isoformat(),
            "source": EVENT_SOURCE,
            "data": payload,
        }
        event = OutboxEvent(
            id=event_id,
            order_id=order_id,
            event_type=event_type,
            payload=envelope,
            status="pending",
            attempts=0,
            next_attempt_at=occurred_at,
            created_at=occurred_at,
        )
        OutboxRepository.append(db, event)
        log.info("event_enqueued", event_id=event_id, event_type=event_type, order_id=order_id)
        return event


def order_event_data(order, *, previous_status: str | None = None) -> dict:
    """The payload consumers (notifications, analytics) receive for an order."""
    return {
        "orderId": order.id,
        "orderNumber": order.order_number,
        "userId": order.user_id,
        "status": order.status,
        "previousStatus": previous_status,
        "paymentStatus": order.payment_status,
        "totalAmount": float(order.total_amount),
        "itemCount": len(order.items),
        "occurredAt": datetime.now(timezone.utc).isoformat(),
    }
