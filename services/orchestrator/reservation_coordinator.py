"""
Order placement and order lifecycle, coordinated with the Inventory Ledger.

PlaceOrder runs as a compensating saga:

    resolve_products -> reserve_inventory -> persist_order

Nothing is persisted on the order side until every line is reserved; a
failure at any step releases whatever was reserved under this attempt's
reservation id. The OrderCreated event is written to the outbox in the same
transaction as the order.

Status transitions commit first (status, history row, outbox event, and an
``inventory_sync_pending`` marker when a confirm/release is owed), then the
inventory side effect is attempted with retries. If retries run out the
marker stays set and the reconciler settles it later. A confirm/release the
ledger refuses marks the order ``sync_failed`` instead of being retried.

Holds left behind when compensation cannot reach the ledger are released
by the reconciler once they outlive RESERVATION_TTL_SECONDS.
"""
import functools
import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.settings import (
    INVENTORY_SYNC_RETRIES,
    ORDER_CURRENCY,
    ORDER_NUMBER_ATTEMPTS,
    RETRY_BACKOFF_SECONDS,
)
from shared.errors import (
    DependencyUnavailable,
    InsufficientStock,
    InvalidTransition,
    InventoryNotFound,
    OrderNotFound,
    ServiceError,
)
from shared.observability import (
    inventory_sync_failed_total,
    inventory_sync_pending_total,
    order_placement_duration_seconds,
    order_placement_total,
)
from shared.retry import retry_async
from shared.security.dependencies import Identity
from services.event_publisher.publisher import (
    ORDER_CREATED,
    ORDER_PAYMENT_UPDATED,
    ORDER_STATUS_UPDATED,
    EventPublisher,
    order_event_data,
)
from services.order_service import state_machine
from services.order_service.models import Order, OrderItem, OrderStatusHistory
from services.order_service.repository import OrderRepository
from services.order_service.schemas import OrderCreate
from .clients import CatalogClient, InventoryClient
from .locks import KeyedLock
from .saga import SagaOrchestrator

log = structlog.get_logger(__name__)

CENTS = Decimal("0.01")

RESERVATION_PENDING = "pending"
RESERVATION_CONFIRMED = "confirmed"
RESERVATION_RELEASED = "released"
# The ledger refused the owed confirm/release; needs an operator
RESERVATION_SYNC_FAILED = "sync_failed"

SYNC_SETTLED = "settled"
SYNC_PENDING = "pending"
SYNC_FAILED = "failed"

# One in-flight transition per order within this process; the row lock covers other instances
order_locks = KeyedLock()


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS)


def _order_number() -> str:
    return f"ORD-{datetime.now(timezone.utc):%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def merge_items(items) -> list[tuple[str, int]]:
    """Collapses repeated products into one line, keeping first-seen order."""
    merged: dict[str, int] = {}
    for item in items:
        merged[item.product_id] = merged.get(item.product_id, 0) + item.quantity
    return list(merged.items())


class DuplicateOrder(Exception):
    """Another attempt with the same idempotency key committed first."""


class ReservationCoordinator:

    def __init__(
        self,
        catalog: CatalogClient | None,
        inventory: InventoryClient,
        sync_retries: int = INVENTORY_SYNC_RETRIES,
        backoff_seconds: float = RETRY_BACKOFF_SECONDS,
    ):
        self.catalog = catalog
        self.inventory = inventory
        self.sync_retries = sync_retries
        self.backoff_seconds = backoff_seconds

    # ------------------------------------------------------------------
    # PlaceOrder
    # ------------------------------------------------------------------

    async def place_order(
        self, db: AsyncSession, identity: Identity, data: OrderCreate, idempotency_key: str
    ) -> tuple[Order, bool]:
        """Returns (order, created). A replayed idempotency key returns the stored order."""
        existing = await OrderRepository.get_by_idempotency_key(db, identity.user_id, idempotency_key)
        if existing:
            order_placement_total.labels(outcome="replayed").inc()
            log.info("order_replayed", order_id=existing.id, user_id=identity.user_id)
            return existing, False

        ctx = {
            "db": db,
            "identity": identity,
            "data": data,
            "idempotency_key": idempotency_key,
            "lines": merge_items(data.items),
            # Fresh per attempt: a losing duplicate only ever compensates its own holds
            "reservation_id": str(uuid.uuid4()),
            "products": {},
            "held": [],
        }
        saga = (
            SagaOrchestrator("place_order")
            .add_step("resolve_products", self._resolve_products)
            .add_step("reserve_inventory", self._reserve_inventory, self._release_held)
            .add_step("persist_order", self._persist_order)
        )

        started = time.perf_counter()
        try:
            await saga.execute(ctx)
        except DuplicateOrder:
            order_placement_total.labels(outcome="replayed").inc()
            existing = await OrderRepository.get_by_idempotency_key(db, identity.user_id, idempotency_key)
            return existing, False
        except Exception:
            order_placement_total.labels(outcome="failed").inc()
            raise
        finally:
            order_placement_duration_seconds.observe(time.perf_counter() - started)

        order_placement_total.labels(outcome="created").inc()
        order = await OrderRepository.get_order(db, ctx["order_id"])
        return order, True

    async def _resolve_products(self, ctx: dict):
        # Any unresolvable product fails the whole order before anything is reserved
        for product_id, _ in ctx["lines"]:
            ctx["products"][product_id] = await self.catalog.get_product(product_id)

    async def _reserve_inventory(self, ctx: dict):
        reservation_id = ctx["reservation_id"]
        for product_id, quantity in ctx["lines"]:
            # Tracked before the call: a timeout may still have reserved on the other side
            ctx["held"].append((product_id, quantity))
            try:
                await self.inventory.reserve(product_id, quantity, reservation_id)
            except InventoryNotFound:
                ctx["held"].pop()
                raise InsufficientStock(f"Product {product_id} is not stocked")
            except InsufficientStock:
                ctx["held"].pop()
                raise
        log.info("order_inventory_reserved", reservation_id=reservation_id, lines=len(ctx["lines"]))

    async def _release_held(self, ctx: dict):
        reservation_id = ctx["reservation_id"]
        failures = []
        for product_id, quantity in reversed(ctx["held"]):
            try:
                await self.inventory.release(product_id, quantity, reservation_id)
            except ServiceError as e:
                failures.append(product_id)
                log.critical(
                    "reservation_release_failed",
                    reservation_id=reservation_id,
                    product_id=product_id,
                    quantity=quantity,
                    error=e.message,
                )
        ctx["held"] = []
        if failures:
            raise DependencyUnavailable(f"Could not release reservation {reservation_id} for {failures}")

    async def _persist_order(self, ctx: dict):
        """
        Commits the order, its items, first history row and OrderCreated event
        together. Order numbers are short and random, so a collision with an
        existing number is retried with a fresh one.
        """
        db: AsyncSession = ctx["db"]
        identity: Identity = ctx["identity"]

        for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
            order = self._build_order(ctx)
            order_number = order.order_number
            try:
                await OrderRepository.add_order(db, order)
                EventPublisher.publish(db, ORDER_CREATED, order_event_data(order), order.id)
                await db.commit()
                break
            except IntegrityError as e:
                await db.rollback()
                if await OrderRepository.get_by_idempotency_key(db, identity.user_id, ctx["idempotency_key"]):
                    raise DuplicateOrder() from e
                if not await OrderRepository.order_number_exists(db, order_number):
                    raise
                log.warning("order_number_collision", order_number=order_number, attempt=attempt)
            except Exception:
                await db.rollback()
                raise
        else:
            raise ServiceError(f"Could not allocate a unique order number after {ORDER_NUMBER_ATTEMPTS} attempts")

        ctx["order_id"] = order.id
        log.info(
            "order_created",
            order_id=order.id,
            order_number=order.order_number,
            user_id=identity.user_id,
            total_amount=str(order.total_amount),
            reservation_id=ctx["reservation_id"],
        )

    @staticmethod
    def _build_order(ctx: dict) -> Order:
        identity: Identity = ctx["identity"]
        data: OrderCreate = ctx["data"]

        items = []
        for product_id, quantity in ctx["lines"]:
            product = ctx["products"][product_id]
            unit_price = _money(product.price)
            items.append(OrderItem(
                product_id=product_id,
                product_name=product.name,
                product_image=product.image,
                quantity=quantity,
                unit_price=unit_price,
                total_price=_money(unit_price * quantity),
            ))
        total = _money(sum((item.total_price for item in items), Decimal("0")))

        return Order(
            order_number=_order_number(),
            user_id=identity.user_id,
            idempotency_key=ctx["idempotency_key"],
            status=state_machine.PENDING,
            payment_status=state_machine.PAYMENT_PENDING,
            payment_method=data.payment_method,
            total_amount=total,
            subtotal=total,
            currency=ORDER_CURRENCY,
            shipping_address=data.shipping_address.model_dump(by_alias=True),
            source=data.source,
            notes=data.notes,
            reservation_id=ctx["reservation_id"],
            reservation_status=RESERVATION_PENDING,
            inventory_sync_pending=False,
            items=items,
            status_history=[
                OrderStatusHistory(
                    status=state_machine.PENDING,
                    previous_status=None,
                    changed_by=identity.user_id,
                    changed_by_role="system",
                    notes="Order created",
                )
            ],
        )

    # ------------------------------------------------------------------
    # UpdateStatus
    # ------------------------------------------------------------------

    async def update_status(
        self,
        db: AsyncSession,
        order_id: int,
        actor: Identity | None,
        new_status: str | None = None,
        payment_status: str | None = None,
        notes: str | None = None,
    ) -> Order:
        async with order_locks.hold(order_id):
            order = await OrderRepository.get_order_for_update(db, order_id)
            if not order:
                raise OrderNotFound(f"Order {order_id} not found")

            previous_status = order.status
            previous_payment = order.payment_status
            status_changed = new_status is not None and new_status != previous_status
            payment_changed = payment_status is not None and payment_status != previous_payment

            # Validate everything before mutating anything
            if status_changed:
                state_machine.assert_transition(previous_status, new_status)
            if payment_changed:
                state_machine.assert_payment_transition(previous_payment, payment_status)

            if status_changed:
                order.status = new_status
                order.status_history.append(OrderStatusHistory(
                    status=new_status,
                    previous_status=previous_status,
                    changed_by=actor.user_id if actor else None,
                    changed_by_role=actor.role if actor else "system",
                    notes=notes or f"Status changed from {previous_status} to {new_status}",
                ))
                if self._inventory_action(new_status):
                    order.inventory_sync_pending = True
                EventPublisher.publish(
                    db, ORDER_STATUS_UPDATED, order_event_data(order, previous_status=previous_status), order.id
                )

            if payment_changed:
                order.payment_status = payment_status
                EventPublisher.publish(
                    db, ORDER_PAYMENT_UPDATED, order_event_data(order, previous_status=previous_status), order.id
                )

            # Commit also ends the row lock when nothing changed
            await db.commit()
            if status_changed or payment_changed:
                log.info(
                    "order_status_updated",
                    order_id=order.id,
                    status=order.status,
                    previous_status=previous_status,
                    payment_status=order.payment_status,
                    actor_role=actor.role if actor else "system",
                )

            if order.inventory_sync_pending:
                await self._sync_inventory(db, order)

        return await OrderRepository.get_order(db, order_id)

    async def cod(self, db: AsyncSession, order_id: int) -> Order:
        """Buyer opts for cash on delivery; payment stays pending until collected."""
        async with order_locks.hold(order_id):
            order = await OrderRepository.get_order_for_update(db, order_id)
            if not order:
                raise OrderNotFound(f"Order {order_id} not found")
            if order.status in state_machine.TERMINAL_STATUSES:
                raise InvalidTransition(f"Order is already {order.status}")
            order.payment_method = state_machine.CASH_ON_DELIVERY
            order.payment_status = state_machine.PAYMENT_PENDING
            await db.commit()
        return await OrderRepository.get_order(db, order_id)

    # ------------------------------------------------------------------
    # Inventory confirm / release
    # ------------------------------------------------------------------

    @staticmethod
    def _inventory_action(status: str) -> str | None:
        if status in state_machine.CONFIRM_INVENTORY_ON:
            return "confirm"
        if status in state_machine.RELEASE_INVENTORY_ON:
            return "release"
        return None

    async def _sync_inventory(self, db: AsyncSession, order: Order) -> str:
        """
        Settles the order's reservation to match its status. Every line call is
        idempotent, so a retry after partial progress is safe.

        Returns SYNC_SETTLED, SYNC_PENDING when the ledger could not be reached
        (inventory_sync_pending stays set for the reconciler), or SYNC_FAILED
        when the ledger refused the call. A refusal will not change on retry,
        so the order is marked ``sync_failed`` and left for an operator.
        """
        action = self._inventory_action(order.status)
        if action is None:
            order.inventory_sync_pending = False
            await db.commit()
            return SYNC_SETTLED

        target = RESERVATION_CONFIRMED if action == "confirm" else RESERVATION_RELEASED
        call = self.inventory.confirm if action == "confirm" else self.inventory.release

        try:
            for item in order.items:
                await retry_async(
                    functools.partial(call, item.product_id, item.quantity, order.reservation_id, order.id),
                    attempts=self.sync_retries,
                    retry_on=(DependencyUnavailable,),
                    name=f"inventory_{action}",
                    base_delay=self.backoff_seconds,
                )
        except DependencyUnavailable as e:
            inventory_sync_pending_total.labels(action=action).inc()
            log.error(
                "inventory_sync_pending",
                order_id=order.id,
                action=action,
                reservation_id=order.reservation_id,
                error=e.message,
            )
            return SYNC_PENDING
        except ServiceError as e:
            inventory_sync_failed_total.labels(action=action).inc()
            log.critical(
                "inventory_sync_failed",
                order_id=order.id,
                action=action,
                reservation_id=order.reservation_id,
                error=e.message,
                code=e.code,
                detail="Manual intervention required",
            )
            order.reservation_status = RESERVATION_SYNC_FAILED
            order.inventory_sync_pending = False
            await db.commit()
            return SYNC_FAILED

        order.reservation_status = target
        order.inventory_sync_pending = False
        await db.commit()
        log.info("inventory_synced", order_id=order.id, action=action, reservation_id=order.reservation_id)
        return SYNC_SETTLED

    async def resync(self, db: AsyncSession, order_id: int) -> str:
        """Reconciliation entry point: settle an order still flagged inventory_sync_pending."""
        async with order_locks.hold(order_id):
            order = await OrderRepository.get_order_for_update(db, order_id)
            if not order or not order.inventory_sync_pending:
                await db.rollback()
                return SYNC_SETTLED
            return await self._sync_inventory(db, order)
