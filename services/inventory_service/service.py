from dataclasses import dataclass
from datetime import timedelta

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import status

from shared.errors import (
    InvalidInput,
    InventoryNotFound,
    InsufficientStock,
    InsufficientReserved,
    InvalidReservationState,
    ReservationNotFound,
)
from shared.observability import inventory_ledger_operations_total
from . import ledger
from .models import InventoryRecord, ReservationLine, utcnow
from .repository import InventoryRepository, ReservationRepository
from .schemas import InventoryUpsert

log = structlog.get_logger(__name__)

APPLIED = "applied"
NOOP = "noop"


@dataclass
class LedgerResult:
    record: InventoryRecord
    outcome: str
    reservation_id: str | None = None
    reservation_status: str | None = None


def _require_positive(quantity: int):
    if quantity is None or quantity <= 0:
        raise InvalidInput("Quantity must be a positive integer")


class InventoryService:

    @staticmethod
    async def get_inventory(db: AsyncSession, product_id: str) -> InventoryRecord:
        record = await InventoryRepository.get_by_product_id(db, product_id)
        if not record:
            raise InventoryNotFound(f"Inventory not found for product {product_id}")
        return record

    @staticmethod
    async def list_inventory(db: AsyncSession):
        return await InventoryRepository.list_all(db)

    @staticmethod
    async def get_low_stock(db: AsyncSession):
        return await InventoryRepository.list_low_stock(db)

    @staticmethod
    async def get_reorder_needed(db: AsyncSession):
        return await InventoryRepository.list_reorder_needed(db)

    @staticmethod
    async def get_reservation(db: AsyncSession, reservation_id: str):
        lines = await ReservationRepository.list_lines(db, reservation_id)
        if not lines:
            raise ReservationNotFound(f"Reservation {reservation_id} not found")
        return lines

    @staticmethod
    async def list_stale_reservations(db: AsyncSession, older_than_seconds: float, limit: int = 100):
        """Pending lines created at least ``older_than_seconds`` ago, oldest first."""
        if older_than_seconds < 0:
            raise InvalidInput("olderThanSeconds must not be negative")
        cutoff = utcnow() - timedelta(seconds=older_than_seconds)
        return await ReservationRepository.list_stale_pending(db, cutoff, limit)

    # --- LEDGER MUTATIONS ---

    @staticmethod
    async def reserve(
        db: AsyncSession,
        product_id: str,
        quantity: int,
        reservation_id: str | None = None,
        order_id: int | None = None,
    ) -> LedgerResult:
        """Moves ``quantity`` units from stock to reserved, or fails with no change."""
        _require_positive(quantity)

        if reservation_id:
            existing = await ReservationRepository.get_line(db, reservation_id, product_id)
            if existing:
                return await InventoryService._replay_reserve(db, existing, quantity)

        applied = await InventoryRepository.apply_delta(
            db, product_id, stock_delta=-quantity, reserved_delta=quantity, require_stock=quantity
        )
        if not applied:
            await db.rollback()
            record = await InventoryRepository.get_by_product_id(db, product_id)
            inventory_ledger_operations_total.labels(operation="reserve", outcome="rejected").inc()
            if not record:
                raise InventoryNotFound(f"Inventory not found for product {product_id}")
            log.info("reserve_rejected", product_id=product_id, requested=quantity, stock=record.stock)
            raise InsufficientStock(
                f"Insufficient stock for product {product_id} (need {quantity}, have {record.stock} available)",
                status_code=status.HTTP_400_BAD_REQUEST,
            )

        if reservation_id:
            try:
                await ReservationRepository.add_line(db, ReservationLine(
                    reservation_id=reservation_id,
                    order_id=order_id,
                    product_id=product_id,
                    quantity=quantity,
                    status=ledger.PENDING,
                ))
            except IntegrityError:
                # A concurrent retry recorded the same line first; our ledger change is undone with it
                await db.rollback()
                existing = await ReservationRepository.get_line(db, reservation_id, product_id)
                return await InventoryService._replay_reserve(db, existing, quantity)

        await db.commit()
        record = await InventoryRepository.get_by_product_id(db, product_id)
        inventory_ledger_operations_total.labels(operation="reserve", outcome="ok").inc()
        log.info(
            "inventory_reserved",
            product_id=product_id,
            quantity=quantity,
            reservation_id=reservation_id,
            stock=record.stock,
            reserved=record.reserved,
        )
        return LedgerResult(record, APPLIED, reservation_id, ledger.PENDING if reservation_id else None)

    @staticmethod
    async def _replay_reserve(db: AsyncSession, line: ReservationLine, quantity: int) -> LedgerResult:
        if line.status != ledger.PENDING:
            raise InvalidReservationState(
                f"Reservation {line.reservation_id} for product {line.product_id} is already {line.status}"
            )
        if line.quantity != quantity:
            raise InvalidReservationState(
                f"Reservation {line.reservation_id} already holds {line.quantity} of product {line.product_id}"
            )
        record = await InventoryService.get_inventory(db, line.product_id)
        inventory_ledger_operations_total.labels(operation="reserve", outcome="noop").inc()
        return LedgerResult(record, NOOP, line.reservation_id, line.status)

    @staticmethod
    async def release(
        db: AsyncSession,
        product_id: str,
        quantity: int,
        reservation_id: str | None = None,
    ) -> LedgerResult:
        """Returns reserved units to stock."""
        return await InventoryService._settle(
            db, "release", product_id, quantity, reservation_id,
            stock_delta=quantity, target=ledger.RELEASED,
        )

    @staticmethod
    async def confirm(
        db: AsyncSession,
        product_id: str,
        quantity: int,
        reservation_id: str | None = None,
        order_id: int | None = None,
    ) -> LedgerResult:
        """Permanently deducts reserved units; stock is unchanged."""
        return await InventoryService._settle(
            db, "confirm", product_id, quantity, reservation_id,
            stock_delta=0, target=ledger.CONFIRMED, order_id=order_id,
        )

    @staticmethod
    async def _settle(
        db: AsyncSession,
        operation: str,
        product_id: str,
        quantity: int,
        reservation_id: str | None,
        *,
        stock_delta: int,
        target: str,
        order_id: int | None = None,
    ) -> LedgerResult:
        _require_positive(quantity)

        line = None
        if reservation_id:
            line = await ReservationRepository.get_line(db, reservation_id, product_id)
            if line is None and target == ledger.RELEASED:
                line = await InventoryService._release_unknown(db, product_id, quantity, reservation_id, order_id)
                if line is None:
                    record = await InventoryService.get_inventory(db, product_id)
                    inventory_ledger_operations_total.labels(operation=operation, outcome="noop").inc()
                    return LedgerResult(record, NOOP, reservation_id, ledger.RELEASED)
            if line is None:
                raise ReservationNotFound(
                    f"No reservation {reservation_id} for product {product_id}"
                )
            if line.quantity != quantity:
                raise InvalidInput(
                    f"Reservation {reservation_id} holds {line.quantity} of product {product_id}, not {quantity}"
                )
            if line.status != ledger.PENDING:
                return await InventoryService._replay_settle(db, operation, line, target)

            # Claim the line before touching the ledger; both changes commit together
            claimed = await ReservationRepository.transition_line(db, line.id, ledger.PENDING, target, order_id)
            if not claimed:
                await db.rollback()
                line = await ReservationRepository.get_line(db, reservation_id, product_id)
                return await InventoryService._replay_settle(db, operation, line, target)

        applied = await InventoryRepository.apply_delta(
            db, product_id, stock_delta=stock_delta, reserved_delta=-quantity, require_reserved=quantity
        )
        if not applied:
            await db.rollback()
            record = await InventoryRepository.get_by_product_id(db, product_id)
            inventory_ledger_operations_total.labels(operation=operation, outcome="rejected").inc()
            if not record:
                raise InventoryNotFound(f"Inventory not found for product {product_id}")
            raise InsufficientReserved(
                f"Cannot {operation} {quantity} of product {product_id}: only {record.reserved} reserved"
            )

        await db.commit()
        record = await InventoryRepository.get_by_product_id(db, product_id)
        inventory_ledger_operations_total.labels(operation=operation, outcome="ok").inc()
        log.info(
            f"inventory_{target}",
            product_id=product_id,
            quantity=quantity,
            reservation_id=reservation_id,
            stock=record.stock,
            reserved=record.reserved,
        )
        return LedgerResult(record, APPLIED, reservation_id, target if reservation_id else None)

    @staticmethod
    async def _release_unknown(
        db: AsyncSession,
        product_id: str,
        quantity: int,
        reservation_id: str,
        order_id: int | None,
    ) -> ReservationLine | None:
        """
        Records a ``released`` line for a reservation that holds nothing yet.

        A reserve for the same (reservation, product) that arrives later finds
        the released line and is refused, so a hold can never appear after its
        release. Returns None once the marker is written, or the existing line
        if a concurrent reserve recorded it first.
        """
        await InventoryService.get_inventory(db, product_id)
        try:
            await ReservationRepository.add_line(db, ReservationLine(
                reservation_id=reservation_id,
                order_id=order_id,
                product_id=product_id,
                quantity=quantity,
                status=ledger.RELEASED,
            ))
        except IntegrityError:
            await db.rollback()
            return await ReservationRepository.get_line(db, reservation_id, product_id)
        await db.commit()
        log.info("reservation_release_recorded", product_id=product_id, reservation_id=reservation_id)
        return None

    @staticmethod
    async def _replay_settle(db: AsyncSession, operation: str, line: ReservationLine, target: str) -> LedgerResult:
        if line.status != target:
            raise InvalidReservationState(
                f"Cannot {operation} reservation {line.reservation_id} for product {line.product_id}: "
                f"already {line.status}"
            )
        record = await InventoryService.get_inventory(db, line.product_id)
        inventory_ledger_operations_total.labels(operation=operation, outcome="noop").inc()
        return LedgerResult(record, NOOP, line.reservation_id, line.status)

    @staticmethod
    async def restock(db: AsyncSession, product_id: str, quantity: int, notes: str | None = None) -> LedgerResult:
        """Adds stock, creating the record on first restock of a product."""
        _require_positive(quantity)

        applied = await InventoryRepository.apply_delta(
            db, product_id, stock_delta=quantity, restocked=True, notes=notes
        )
        if not applied:
            now = utcnow()
            try:
                await InventoryRepository.add(db, InventoryRecord(
                    product_id=product_id,
                    stock=quantity,
                    reserved=0,
                    total=ledger.total_units(quantity, 0),
                    notes=notes,
                    last_updated=now,
                    last_restocked=now,
                ))
            except IntegrityError:
                # Created concurrently; fall back to the guarded update
                await db.rollback()
                await InventoryRepository.apply_delta(
                    db, product_id, stock_delta=quantity, restocked=True, notes=notes
                )

        await db.commit()
        record = await InventoryRepository.get_by_product_id(db, product_id)
        inventory_ledger_operations_total.labels(operation="restock", outcome="ok").inc()
        log.info("inventory_restocked", product_id=product_id, added=quantity, stock=record.stock)
        return LedgerResult(record, APPLIED)

    @staticmethod
    async def upsert(db: AsyncSession, data: InventoryUpsert) -> InventoryRecord:
        """Create-or-update thresholds and, administratively, the stock level."""
        record = await InventoryRepository.get_by_product_id(db, data.product_id)
        if record is None:
            stock = data.stock or 0
            record = InventoryRecord(
                product_id=data.product_id,
                stock=stock,
                reserved=0,
                total=ledger.total_units(stock, 0),
                notes=data.notes,
                last_updated=utcnow(),
            )
            if data.low_stock_threshold is not None:
                record.low_stock_threshold = data.low_stock_threshold
            if data.reorder_point is not None:
                record.reorder_point = data.reorder_point
            await InventoryRepository.add(db, record)
            log.info("inventory_created", product_id=data.product_id, stock=stock)
        else:
            if data.stock is not None and data.stock != record.stock:
                # Administrative overwrite that bypasses the ledger operations
                previous_stock = record.stock
                await InventoryRepository.set_stock(db, data.product_id, data.stock)
                inventory_ledger_operations_total.labels(operation="adjust", outcome="ok").inc()
                log.warning(
                    "inventory_stock_adjusted",
                    product_id=data.product_id,
                    previous_stock=previous_stock,
                    new_stock=data.stock,
                    delta=data.stock - previous_stock,
                    reserved=record.reserved,
                )
            if data.low_stock_threshold is not None:
                record.low_stock_threshold = data.low_stock_threshold
            if data.reorder_point is not None:
                record.reorder_point = data.reorder_point
            if data.notes is not None:
                record.notes = data.notes
            log.info("inventory_updated", product_id=data.product_id, stock=data.stock)

        await db.commit()
        return await InventoryRepository.get_by_product_id(db, data.product_id)
