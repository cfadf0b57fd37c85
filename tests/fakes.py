"""In-process stand-ins for the collaborators the order service talks to."""
import httpx

from shared.errors import DependencyUnavailable, InvalidReservationState
from shared.security import create_access_token

PRODUCTS = {
    "p1": {"name": "Desk Lamp", "price": 10.0, "images": ["lamp.png"]},
    "p2": {"name": "Notebook", "price": "5.50"},
    "p3": {"name": "Fountain Pen", "price": 24.99, "image": "pen.png"},
}


def auth_headers(user_id: int = 1, role: str = "buyer") -> dict:
    token = create_access_token(user_id, role)
    return {"Authorization": f"Bearer {token}"}


def order_body(*lines, payment_method: str = "UPI") -> dict:
    return {
        "items": [{"productId": product_id, "quantity": quantity} for product_id, quantity in lines],
        "shippingAddress": {
            "street": "12 MG Road",
            "city": "Bengaluru",
            "state": "KA",
            "zipCode": "560001",
            "country": "IN",
        },
        "paymentMethod": payment_method,
    }


class FakeCatalog:
    """Serves GET /{productId} from PRODUCTS; ``down`` makes every lookup a 503."""

    def __init__(self):
        self.products = dict(PRODUCTS)
        self.down = False
        self.calls = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.down:
            return httpx.Response(503, json={"detail": "catalog unavailable"})
        product_id = request.url.path.lstrip("/")
        product = self.products.get(product_id)
        if product is None:
            return httpx.Response(404, json={"detail": "Product not found"})
        return httpx.Response(200, json={"id": product_id, **product})


class FlakyInventory:
    """
    Wraps an InventoryClient. While ``down`` is set, confirm and release fail
    as unreachable; while ``reject`` is set the ledger refuses them. A product
    in ``lost_reserve_replies`` is reserved on the ledger but the caller sees
    a timeout.
    """

    def __init__(self, inner):
        self.inner = inner
        self.down = False
        self.reject = False
        self.lost_reserve_replies = set()
        self.calls = []

    async def reserve(self, product_id, quantity, reservation_id, order_id=None):
        self.calls.append(("reserve", product_id, quantity))
        result = await self.inner.reserve(product_id, quantity, reservation_id, order_id)
        if product_id in self.lost_reserve_replies:
            raise DependencyUnavailable("Inventory service timed out")
        return result

    async def release(self, product_id, quantity, reservation_id, order_id=None):
        self.calls.append(("release", product_id, quantity))
        self._maybe_fail()
        return await self.inner.release(product_id, quantity, reservation_id, order_id)

    async def confirm(self, product_id, quantity, reservation_id, order_id=None):
        self.calls.append(("confirm", product_id, quantity))
        self._maybe_fail()
        return await self.inner.confirm(product_id, quantity, reservation_id, order_id)

    async def list_stale_reservations(self, older_than_seconds, limit=100):
        return await self.inner.list_stale_reservations(older_than_seconds, limit)

    def _maybe_fail(self):
        if self.down:
            raise DependencyUnavailable("Inventory service unreachable")
        if self.reject:
            raise InvalidReservationState("Reservation is already released")


class RecordingBroker:
    """Keeps every delivered event; fails the first ``fail_times`` sends."""

    def __init__(self, fail_times: int = 0):
        self.fail_times = fail_times
        self.events = []
        self.attempts = 0

    async def send(self, event: dict, key: str):
        self.attempts += 1
        if self.attempts <= self.fail_times:
            raise ConnectionError("broker offline")
        self.events.append((key, event))

    def types(self) -> list:
        return [event["type"] for _, event in self.events]
