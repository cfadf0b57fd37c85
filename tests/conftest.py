"""Fixtures: a throwaway SQLite database, the two services in-process, and fake collaborators."""
import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="order-inventory-tests-")

# Must be set before any project module reads its settings
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["INTERNAL_API_KEY"] = "test-internal-key"
os.environ["TRACING_ENABLED"] = "false"
os.environ["BACKGROUND_WORKERS_ENABLED"] = "false"
os.environ["EVENT_BROKER"] = "log"
os.environ["ORDER_RATE_LIMIT"] = "1000/minute"
os.environ["RETRY_BACKOFF_SECONDS"] = "0"
os.environ["INVENTORY_SYNC_RETRIES"] = "2"
os.environ["CATALOG_LOOKUP_RETRIES"] = "0"

import httpx  # noqa: E402
import pytest  # noqa: E402

from shared.config.database import AsyncSessionLocal, Base, engine  # noqa: E402
from shared.security import API_HEADERS  # noqa: E402
from services.event_publisher.dispatcher import OutboxDispatcher  # noqa: E402
from services.inventory_service.main import inventory_app  # noqa: E402
from services.orchestrator.clients import CatalogClient, InventoryClient  # noqa: E402
from services.orchestrator.dependencies import get_coordinator, get_dispatcher  # noqa: E402
from services.orchestrator.reservation_coordinator import ReservationCoordinator  # noqa: E402
from services.order_service.main import order_app  # noqa: E402
from tests.fakes import FakeCatalog, FlakyInventory, RecordingBroker  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def database(anyio_backend):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def session(database):
    async with AsyncSessionLocal() as db:
        yield db


@pytest.fixture
async def inventory_api(database):
    """The inventory service over ASGI, authenticated as an internal caller."""
    transport = httpx.ASGITransport(app=inventory_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://inventory", headers=API_HEADERS) as client:
        yield client


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
async def catalog_client(catalog):
    transport = httpx.MockTransport(catalog.handler)
    async with httpx.AsyncClient(transport=transport, base_url="http://catalog") as client:
        yield CatalogClient(client, retries=0)


@pytest.fixture
def inventory(inventory_api):
    return FlakyInventory(InventoryClient(inventory_api))


@pytest.fixture
def coordinator(catalog_client, inventory):
    return ReservationCoordinator(catalog_client, inventory, sync_retries=2, backoff_seconds=0)


@pytest.fixture
def broker():
    return RecordingBroker()


@pytest.fixture
def dispatcher(broker):
    return OutboxDispatcher(broker=broker, max_attempts=3, backoff_seconds=0)


@pytest.fixture
async def order_api(coordinator, dispatcher):
    order_app.dependency_overrides[get_coordinator] = lambda: coordinator
    order_app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    transport = httpx.ASGITransport(app=order_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://orders") as client:
        yield client
    order_app.dependency_overrides.clear()
