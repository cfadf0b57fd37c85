from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from .models import Order


class OrderRepository:

    @staticmethod
    async def add_order(db: AsyncSession, order: Order):
        # Flushed, not committed: items, history and outbox rows commit together
        db.add(order)
        await db.flush()
        return order

    @staticmethod
    async def get_order(db: AsyncSession, order_id: int):
        result = await db.execute(
            select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def get_order_for_update(db: AsyncSession, order_id: int):
        result = await db.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def get_by_idempotency_key(db: AsyncSession, user_id: int, idempotency_key: str):
        result = await db.execute(
            select(Order)
            .where(Order.user_id == user_id)
            .where(Order.idempotency_key == idempotency_key)
        )
        return result.scalars().first()

    @staticmethod
    async def list_orders(db: AsyncSession, user_id: int | None = None, status: str | None = None):
        stmt = select(Order)
        if user_id is not None:
            stmt = stmt.where(Order.user_id == user_id)
        if status:
            stmt = stmt.where(Order.status == status)
        result = await db.execute(stmt.order_by(Order.created_at.desc(), Order.id.desc()))
        return result.scalars().all()

    @staticmethod
    async def list_inventory_sync_pending(db: AsyncSession, limit: int):
        result = await db.execute(
            select(Order.id)
            .where(Order.inventory_sync_pending.is_(True))
            .order_by(Order.updated_at, Order.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    async def existing_reservation_ids(db: AsyncSession, reservation_ids) -> set[str]:
        if not reservation_ids:
            return set()
        result = await db.execute(
            select(Order.reservation_id).where(Order.reservation_id.in_(list(reservation_ids)))
        )
        return set(result.scalars().all())

    @staticmethod
    async def order_number_exists(db: AsyncSession, order_number: str) -> bool:
        result = await db.execute(select(Order.id).where(Order.order_number == order_number))
        return result.first() is not None
