import asyncio
from datetime import datetime, timedelta, timezone

import structlog

from shared.config.database import AsyncSessionLocal
from shared.config.settings import (
    OUTBOX_BATCH_SIZE,
    OUTBOX_MAX_ATTEMPTS,
    OUTBOX_POLL_INTERVAL_SECONDS,
    RETRY_BACKOFF_SECONDS,
    SERVICE_TIMEOUT_SECONDS,
)
from shared.observability import outbox_delivery_total
from shared.retry import backoff_delay
from .brokers import build_event_broker
from .repository import OutboxRepository

log = structlog.get_logger(__name__)


class OutboxDispatcher:
    """
    Delivers pending outbox events in creation order.

    Success marks the event delivered. A failure counts an attempt and
    schedules the next one with exponential backoff; after ``max_attempts``
    the event is marked failed and logged for manual inspection. Events are
    never deleted, so nothing is dropped silently.
    """

    def __init__(
        self,
        broker=None,
        session_factory=AsyncSessionLocal,
        max_attempts: int = OUTBOX_MAX_ATTEMPTS,
        backoff_seconds: float = RETRY_BACKOFF_SECONDS,
    ):
        self.broker = broker or build_event_broker()
        self.session_factory = session_factory
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds

    async def dispatch_pending(self, limit: int = OUTBOX_BATCH_SIZE) -> dict:
        stats = {"delivered": 0, "retry": 0, "failed": 0}
        async with self.session_factory() as db:
            now = datetime.now(timezone.utc)
            events = await OutboxRepository.fetch_due(db, now, limit)
            for event in events:
                hold_until = now + timedelta(seconds=SERVICE_TIMEOUT_SECONDS * 2)
                if not await OutboxRepository.claim(db, event.id, event.attempts, hold_until):
                    continue
                await db.commit()

                outcome = await self._deliver(event)
                stats[outcome] += 1
                outbox_delivery_total.labels(outcome=outcome).inc()
                await db.commit()
        return stats

    async def _deliver(self, event) -> str:
        try:
            await self.broker.send(event.payload, key=str(event.order_id))
        except Exception as e:
            event.attempts += 1
            event.last_error = str(e)
            if event.attempts >= self.max_attempts:
                event.status = "failed"
                log.error(
                    "outbox_delivery_failed",
                    event_id=event.id,
                    event_type=event.event_type,
                    order_id=event.order_id,
                    attempts=event.attempts,
                    error=str(e),
                )
                return "failed"
            delay = backoff_delay(event.attempts, self.backoff_seconds)
            event.next_attempt_at = datetime.now(timezone.utc) + timedelta(seconds=delay)
            log.warning(
                "outbox_delivery_retry",
                event_id=event.id,
                event_type=event.event_type,
                attempts=event.attempts,
                retry_in=delay,
                error=str(e),
            )
            return "retry"

        event.attempts += 1
        event.status = "delivered"
        event.delivered_at = datetime.now(timezone.utc)
        event.last_error = None
        log.info("outbox_delivered", event_id=event.id, event_type=event.event_type, order_id=event.order_id)
        return "delivered"

    async def run_forever(self, interval: float = OUTBOX_POLL_INTERVAL_SECONDS):
        log.info("outbox_dispatcher_started", interval=interval)
        while True:
            try:
                await self.dispatch_pending()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error("outbox_dispatch_error", error=str(e))
            await asyncio.sleep(interval)
