from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import OutboxEvent


class OutboxRepository:

    @staticmethod
    def append(db: AsyncSession, event: OutboxEvent) -> OutboxEvent:
        # No commit: the caller's transaction decides whether the event exists
        db.add(event)
        return event

    @staticmethod
    async def fetch_due(db: AsyncSession, now: datetime, limit: int):
        result = await db.execute(
            select(OutboxEvent)
            .where(OutboxEvent.status == "pending")
            .where(OutboxEvent.next_attempt_at <= now)
            .order_by(OutboxEvent.created_at, OutboxEvent.id)
            .limit(limit)
        )
        return result.scalars().all()

    @staticmethod
    async def list_for_order(db: AsyncSession, order_id: int):
        result = await db.execute(
            select(OutboxEvent)
            .where(OutboxEvent.order_id == order_id)
            .order_by(OutboxEvent.created_at, OutboxEvent.id)
        )
        return result.scalars().all()

    @staticmethod
    async def list_failed(db: AsyncSession):
        result = await db.execute(
            select(OutboxEvent).where(OutboxEvent.status == "failed").order_by(OutboxEvent.created_at)
        )
        return result.scalars().all()

    @staticmethod
    async def claim(db: AsyncSession, event_id: str, attempts: int, hold_until: datetime) -> bool:
        """
        Pushes next_attempt_at forward for an event still at ``attempts`` so a
        second dispatcher does not pick it up while delivery is in flight.
        """
        result = await db.execute(
            update(OutboxEvent)
            .where(OutboxEvent.id == event_id)
            .where(OutboxEvent.status == "pending")
            .where(OutboxEvent.attempts == attempts)
            .values(next_attempt_at=hold_until)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
