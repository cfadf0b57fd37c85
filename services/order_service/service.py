from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from shared.errors import OrderNotFound
from shared.security.dependencies import Identity
from .repository import OrderRepository


class OrderService:

    @staticmethod
    async def get_order(db: AsyncSession, order_id: int, identity: Identity):
        order = await OrderRepository.get_order(db, order_id)
        if not order:
            raise OrderNotFound(f"Order {order_id} not found")
        # Buyers can only see their own orders
        if identity.role == "buyer" and order.user_id != identity.user_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You can only access your own orders",
            )
        return order

    @staticmethod
    async def list_orders(db: AsyncSession, identity: Identity, user_id: int | None = None, order_status: str | None = None):
        if identity.role == "buyer":
            user_id = identity.user_id
        return await OrderRepository.list_orders(db, user_id=user_id, status=order_status)
