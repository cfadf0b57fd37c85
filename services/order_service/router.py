from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.config.settings import ORDER_RATE_LIMIT, RESERVATION_TTL_SECONDS
from shared.errors import InvalidInput
from shared.security import Identity, get_current_identity, limiter, require_roles, verify_internal_api_key
from services.event_publisher.dispatcher import OutboxDispatcher
from services.orchestrator.dependencies import get_coordinator, get_dispatcher
from services.orchestrator.reconciler import run_reconciliation
from services.orchestrator.reservation_coordinator import ReservationCoordinator
from . import state_machine
from .schemas import CancelRequest, OrderCreate, OrderResponse, ReconcileResponse, StatusUpdate
from .service import OrderService

router = APIRouter()
public_router = APIRouter()  # For any public endpoints (e.g. health check)


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "order", "status": "running"}


@router.post("/", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(ORDER_RATE_LIMIT)
async def create_order(
    request: Request,  # REQUIRED: slowapi needs this to check the caller
    response: Response,
    payload: OrderCreate,
    background_tasks: BackgroundTasks,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    identity: Identity = Depends(require_roles("buyer")),
    db: AsyncSession = Depends(get_db),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
    dispatcher: OutboxDispatcher = Depends(get_dispatcher),
):
    if not idempotency_key or not idempotency_key.strip():
        raise InvalidInput("Idempotency-Key header is required")

    order, created = await coordinator.place_order(db, identity, payload, idempotency_key.strip())
    if created:
        background_tasks.add_task(dispatcher.dispatch_pending)
    else:
        response.status_code = status.HTTP_200_OK
    return order


@router.get("/", response_model=list[OrderResponse])
async def list_orders(
    user_id: Optional[int] = Query(default=None, alias="userId"),
    order_status: Optional[str] = Query(default=None, alias="status"),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    return await OrderService.list_orders(db, identity, user_id, order_status)


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile(
    older_than_seconds: float = Query(default=RESERVATION_TTL_SECONDS, ge=0, alias="olderThanSeconds"),
    identity: Identity = Depends(require_roles("admin")),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    return await run_reconciliation(coordinator, ttl_seconds=older_than_seconds)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
):
    return await OrderService.get_order(db, order_id, identity)


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: int,
    payload: StatusUpdate,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(require_roles("seller", "admin")),
    db: AsyncSession = Depends(get_db),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
    dispatcher: OutboxDispatcher = Depends(get_dispatcher),
):
    order = await coordinator.update_status(
        db, order_id, identity,
        new_status=payload.status,
        payment_status=payload.payment_status,
        notes=payload.notes,
    )
    background_tasks.add_task(dispatcher.dispatch_pending)
    return order


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: int,
    background_tasks: BackgroundTasks,
    payload: Optional[CancelRequest] = None,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
    dispatcher: OutboxDispatcher = Depends(get_dispatcher),
):
    # Cancellation is an ordinary transition; this only adds the ownership check for buyers
    await OrderService.get_order(db, order_id, identity)
    order = await coordinator.update_status(
        db, order_id, identity,
        new_status=state_machine.CANCELLED,
        notes=(payload.notes if payload else None) or "Cancelled by customer",
    )
    background_tasks.add_task(dispatcher.dispatch_pending)
    return order


@router.post("/{order_id}/cod", response_model=OrderResponse)
async def set_cash_on_delivery(
    order_id: int,
    identity: Identity = Depends(require_roles("buyer")),
    db: AsyncSession = Depends(get_db),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
):
    await OrderService.get_order(db, order_id, identity)
    return await coordinator.cod(db, order_id)


@router.post(
    "/{order_id}/payment-success",
    response_model=OrderResponse,
    dependencies=[Depends(verify_internal_api_key)],
)
async def payment_success(
    order_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    coordinator: ReservationCoordinator = Depends(get_coordinator),
    dispatcher: OutboxDispatcher = Depends(get_dispatcher),
):
    order = await coordinator.update_status(
        db, order_id, None, payment_status=state_machine.PAYMENT_PAID
    )
    background_tasks.add_task(dispatcher.dispatch_pending)
    return order
