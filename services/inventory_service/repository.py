from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from . import ledger
from .models import InventoryRecord, ReservationLine, utcnow


class InventoryRepository:

    @staticmethod
    async def get_by_product_id(db: AsyncSession, product_id: str):
        result = await db.execute(
            select(InventoryRecord)
            .where(InventoryRecord.product_id == product_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def list_all(db: AsyncSession):
        result = await db.execute(select(InventoryRecord).order_by(InventoryRecord.product_id))
        return result.scalars().all()

    @staticmethod
    async def list_low_stock(db: AsyncSession):
        result = await db.execute(
            select(InventoryRecord)
            .where(InventoryRecord.stock <= InventoryRecord.low_stock_threshold)
            .order_by(InventoryRecord.stock)
        )
        return result.scalars().all()

    @staticmethod
    async def list_reorder_needed(db: AsyncSession):
        result = await db.execute(
            select(InventoryRecord)
            .where(InventoryRecord.stock <= InventoryRecord.reorder_point)
            .order_by(InventoryRecord.stock)
        )
        return result.scalars().all()

    @staticmethod
    async def add(db: AsyncSession, record: InventoryRecord):
        db.add(record)
        await db.flush()
        return record

    @staticmethod
    async def apply_delta(
        db: AsyncSession,
        product_id: str,
        *,
        stock_delta: int = 0,
        reserved_delta: int = 0,
        require_stock: int = 0,
        require_reserved: int = 0,
        restocked: bool = False,
        notes: str | None = None,
    ) -> bool:
        """
        Applies a guarded change to one row in a single UPDATE statement.

        The WHERE clause carries the precondition (``stock >= require_stock``,
        ``reserved >= require_reserved``), so two concurrent callers can never
        both pass the check against the same units. ``total`` and
        ``last_updated`` are part of the same write. Returns False when the row
        is missing or the precondition does not hold.
        """
        stmt = update(InventoryRecord).where(InventoryRecord.product_id == product_id)
        if require_stock:
            stmt = stmt.where(InventoryRecord.stock >= require_stock)
        if require_reserved:
            stmt = stmt.where(InventoryRecord.reserved >= require_reserved)

        now = utcnow()
        values = {
            "stock": InventoryRecord.stock + stock_delta,
            "reserved": InventoryRecord.reserved + reserved_delta,
            # SET expressions read the pre-update row
            "total": InventoryRecord.stock + InventoryRecord.reserved + stock_delta + reserved_delta,
            "last_updated": now,
        }
        if restocked:
            values["last_restocked"] = now
        if notes:
            values["notes"] = notes

        result = await db.execute(stmt.values(**values).execution_options(synchronize_session=False))
        return result.rowcount == 1

    @staticmethod
    async def set_stock(db: AsyncSession, product_id: str, stock: int) -> bool:
        result = await db.execute(
            update(InventoryRecord)
            .where(InventoryRecord.product_id == product_id)
            .values(
                stock=stock,
                total=InventoryRecord.reserved + stock,
                last_updated=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class ReservationRepository:

    @staticmethod
    async def get_line(db: AsyncSession, reservation_id: str, product_id: str):
        result = await db.execute(
            select(ReservationLine)
            .where(ReservationLine.reservation_id == reservation_id)
            .where(ReservationLine.product_id == product_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def list_lines(db: AsyncSession, reservation_id: str):
        result = await db.execute(
            select(ReservationLine)
            .where(ReservationLine.reservation_id == reservation_id)
            .order_by(ReservationLine.id)
        )
        return result.scalars().all()

    @staticmethod
    async def add_line(db: AsyncSession, line: ReservationLine):
        db.add(line)
        await db.flush()
        return line

    @staticmethod
    async def transition_line(db: AsyncSession, line_id: int, from_status: str, to_status: str, order_id: int | None = None) -> bool:
        """Compare-and-swap on the line status; False if another caller got there first."""
        values = {"status": to_status, "updated_at": utcnow()}
        if order_id is not None:
            values["order_id"] = order_id
        result = await db.execute(
            update(ReservationLine)
            .where(ReservationLine.id == line_id)
            .where(ReservationLine.status == from_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def list_stale_pending(db: AsyncSession, created_before, limit: int):
        result = await db.execute(
            select(ReservationLine)
            .where(ReservationLine.status == ledger.PENDING)
            .where(ReservationLine.created_at <= created_before)
            .order_by(ReservationLine.created_at, ReservationLine.id)
            .limit(limit)
        )
        return result.scalars().all()
