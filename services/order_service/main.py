import asyncio

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from shared.config.database import create_schema
from shared.config.settings import BACKGROUND_WORKERS_ENABLED
from shared.errors import register_error_handlers
from shared.observability import setup_observability
from shared.security import limiter
from services.event_publisher.models import OutboxEvent  # noqa: F401  Import to register with Base
from services.orchestrator.dependencies import get_dispatcher
from services.orchestrator.reconciler import InventoryReconciler
from .models import Order, OrderItem, OrderStatusHistory  # noqa: F401  Import to register with Base
from .router import router, public_router

order_app = FastAPI(title="Order Service", version="2.0.0")

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(order_app, "order_service")
register_error_handlers(order_app)

# --- SECURITY SETUP ---
order_app.state.limiter = limiter
order_app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

order_app.include_router(public_router)
order_app.include_router(router)

_background_tasks: list[asyncio.Task] = []


@order_app.on_event("startup")
async def startup_event():
    await create_schema("order_schema")
    if BACKGROUND_WORKERS_ENABLED:
        # Outbox delivery and inventory reconciliation run for the life of the process
        _background_tasks.append(asyncio.create_task(get_dispatcher().run_forever()))
        _background_tasks.append(asyncio.create_task(InventoryReconciler().run_forever()))


@order_app.on_event("shutdown")
async def shutdown_event():
    for task in _background_tasks:
        task.cancel()
    await asyncio.gather(*_background_tasks, return_exceptions=True)
    _background_tasks.clear()
