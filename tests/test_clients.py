import json
from decimal import Decimal

import httpx
import pytest

from shared.errors import DependencyUnavailable, InsufficientStock, ProductNotFound
from shared.retry import backoff_delay, retry_async
from services.orchestrator.clients import CatalogClient, InventoryClient

pytestmark = pytest.mark.anyio


def _client(handler, base_url="http://svc"):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=base_url)


class TestCatalogClient:

    async def test_snapshot(self):
        def handler(request):
            return httpx.Response(200, json={"name": "Lamp", "price": "12.50", "images": ["a.png", "b.png"]})

        async with _client(handler) as client:
            product = await CatalogClient(client, retries=0).get_product("p1")

        assert product.name == "Lamp"
        assert product.price == Decimal("12.50")
        assert product.image == "a.png"

    async def test_retries_server_errors(self):
        responses = iter([httpx.Response(502), httpx.Response(200, json={"name": "Lamp", "price": 3})])

        async with _client(lambda request: next(responses)) as client:
            product = await CatalogClient(client, retries=1).get_product("p1")

        assert product.price == Decimal("3")

    async def test_gives_up_after_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        async with _client(handler) as client:
            with pytest.raises(DependencyUnavailable):
                await CatalogClient(client, retries=2).get_product("p1")

        assert len(calls) == 3

    async def test_not_found_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404)

        async with _client(handler) as client:
            with pytest.raises(ProductNotFound):
                await CatalogClient(client, retries=2).get_product("p1")

        assert len(calls) == 1

    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        async with _client(handler) as client:
            with pytest.raises(DependencyUnavailable):
                await CatalogClient(client, retries=0).get_product("p1")


class TestInventoryClient:

    async def test_maps_error_codes_back_to_exceptions(self):
        def handler(request):
            return httpx.Response(400, json={"detail": "not enough", "code": "insufficient_stock"})

        async with _client(handler) as client:
            with pytest.raises(InsufficientStock, match="not enough"):
                await InventoryClient(client).reserve("p1", 5, "r-1")

    async def test_auth_failure_is_a_dependency_failure(self):
        async with _client(lambda request: httpx.Response(403, json={"detail": "bad key"})) as client:
            with pytest.raises(DependencyUnavailable):
                await InventoryClient(client).confirm("p1", 1, "r-1")

    async def test_sends_reservation_fields(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"outcome": "applied"})

        async with _client(handler) as client:
            await InventoryClient(client).release("p1", 2, "r-1", order_id=9)

        assert seen[0].url.path == "/release"
        assert json.loads(seen[0].content) == {"productId": "p1", "quantity": 2, "reservationId": "r-1", "orderId": 9}

    async def test_lists_stale_reservations(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[{"reservationId": "r-1", "productId": "p1", "quantity": 2}])

        async with _client(handler) as client:
            lines = await InventoryClient(client).list_stale_reservations(900, limit=10)

        assert seen[0].url.path == "/reservations/stale"
        assert dict(seen[0].url.params) == {"olderThanSeconds": "900", "limit": "10"}
        assert lines[0]["reservationId"] == "r-1"

    async def test_stale_listing_outage(self):
        async with _client(lambda request: httpx.Response(502)) as client:
            with pytest.raises(DependencyUnavailable):
                await InventoryClient(client).list_stale_reservations(900)


class TestRetry:

    def test_backoff_doubles(self):
        assert [backoff_delay(n, 0.5) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]

    async def test_only_listed_errors_are_retried(self):
        calls = []

        async def operation():
            calls.append(1)
            raise ValueError("nope")

        with pytest.raises(ValueError):
            await retry_async(operation, attempts=3, retry_on=(DependencyUnavailable,), name="op", base_delay=0)

        assert len(calls) == 1
