from fastapi import FastAPI

from shared.config.database import create_schema
from shared.errors import register_error_handlers
from shared.observability import setup_observability
from .models import InventoryRecord, ReservationLine  # noqa: F401  Import to register with Base
from .router import router, public_router

inventory_app = FastAPI(title="Inventory Service", version="1.0.0")

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(inventory_app, "inventory_service")
register_error_handlers(inventory_app)

inventory_app.include_router(public_router)
inventory_app.include_router(router)


@inventory_app.on_event("startup")
async def startup_event():
    await create_schema("inventory_schema")
