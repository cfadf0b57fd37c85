"""
HTTP clients for the collaborators the coordinator calls. Every call runs
under the httpx client's bounded timeout; a timeout or transport error is a
failure (DependencyUnavailable), never an assumed success.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

import httpx
import structlog

from shared.config.settings import CATALOG_LOOKUP_RETRIES
from shared.errors import ERRORS_BY_CODE, DependencyUnavailable, ProductNotFound, ServiceError
from shared.retry import retry_async

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProductSnapshot:
    product_id: str
    name: str
    price: Decimal
    image: str | None = None


class CatalogClient:
    """Product Catalog: GET /{productId} -> {name, price, image}."""

    def __init__(self, client: httpx.AsyncClient, retries: int = CATALOG_LOOKUP_RETRIES):
        self.client = client
        self.retries = retries

    async def get_product(self, product_id: str) -> ProductSnapshot:
        async def fetch():
            try:
                resp = await self.client.get(f"/{product_id}")
            except httpx.HTTPError as e:
                raise DependencyUnavailable(f"Product catalog unreachable: {e}") from e
            if resp.status_code >= 500:
                raise DependencyUnavailable(f"Product catalog returned {resp.status_code}")
            if resp.is_error:
                raise ProductNotFound(f"Product with ID {product_id} not found")
            return resp.json()

        # Lookups are reads, so they are safe to retry
        data = await retry_async(
            fetch,
            attempts=1 + self.retries,
            retry_on=(DependencyUnavailable,),
            name="catalog_get_product",
        )
        return self._snapshot(product_id, data)

    @staticmethod
    def _snapshot(product_id: str, data: dict) -> ProductSnapshot:
        try:
            price = Decimal(str(data["price"]))
        except (KeyError, TypeError, InvalidOperation):
            raise ProductNotFound(f"Product with ID {product_id} has no usable price")
        images = data.get("images") or []
        return ProductSnapshot(
            product_id=str(product_id),
            name=data.get("name") or "Unknown Product",
            price=price,
            image=data.get("image") or (images[0] if images else None),
        )


class InventoryClient:
    """Inventory Ledger over HTTP. Error responses come back as the same exception classes."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def reserve(self, product_id: str, quantity: int, reservation_id: str, order_id: int | None = None) -> dict:
        return await self._post("/reserve", product_id, quantity, reservation_id, order_id)

    async def release(self, product_id: str, quantity: int, reservation_id: str, order_id: int | None = None) -> dict:
        return await self._post("/release", product_id, quantity, reservation_id, order_id)

    async def confirm(self, product_id: str, quantity: int, reservation_id: str, order_id: int | None = None) -> dict:
        return await self._post("/confirm", product_id, quantity, reservation_id, order_id)

    async def _post(self, path: str, product_id: str, quantity: int, reservation_id: str, order_id: int | None) -> dict:
        body = {
            "productId": product_id,
            "quantity": quantity,
            "reservationId": reservation_id,
            "orderId": order_id,
        }
        try:
            resp = await self.client.post(path, json=body)
        except httpx.HTTPError as e:
            raise DependencyUnavailable(f"Inventory service unreachable: {e}") from e
        return self._json(resp)

    async def list_stale_reservations(self, older_than_seconds: float, limit: int = 100) -> list[dict]:
        """Pending reservation lines at least ``older_than_seconds`` old."""
        params = {"olderThanSeconds": older_than_seconds, "limit": limit}
        try:
            resp = await self.client.get("/reservations/stale", params=params)
        except httpx.HTTPError as e:
            raise DependencyUnavailable(f"Inventory service unreachable: {e}") from e
        return self._json(resp)

    def _json(self, resp: httpx.Response):
        if resp.status_code >= 500 or resp.status_code in (401, 403):
            raise DependencyUnavailable(f"Inventory service returned {resp.status_code}")
        if resp.is_error:
            raise self._error_from(resp)
        return resp.json()

    @staticmethod
    def _error_from(resp: httpx.Response) -> ServiceError:
        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        detail = payload.get("detail") if isinstance(payload, dict) else None
        message = detail if isinstance(detail, str) else f"Inventory service returned {resp.status_code}"
        error_cls = ERRORS_BY_CODE.get(payload.get("code") if isinstance(payload, dict) else None, ServiceError)
        error = error_cls(message)
        if error_cls is ServiceError:
            error.status_code = resp.status_code
        return error
