from fastapi import FastAPI

from shared.config.database import create_schema, SERVICE_SCHEMAS

# IMPORTANT: import models so they register with Base
from services.inventory_service import models as inventory_models  # noqa: F401
from services.order_service import models as order_models  # noqa: F401
from services.event_publisher import models as outbox_models  # noqa: F401

from services.inventory_service.main import inventory_app
from services.order_service.main import order_app

app = FastAPI(title="Marketplace Order Cluster")


@app.on_event("startup")
async def startup_event():
    # Mounted sub-applications do not receive startup events of their own
    await create_schema(*SERVICE_SCHEMAS)
    await order_app.router.startup()


@app.on_event("shutdown")
async def shutdown_event():
    await order_app.router.shutdown()


app.mount("/inventory", inventory_app)
app.mount("/orders", order_app)
