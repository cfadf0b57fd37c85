"""Inventory Ledger behaviour against a real database."""
import asyncio
from datetime import timedelta

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import update

from shared.config.database import AsyncSessionLocal
from shared.errors import (
    InsufficientReserved,
    InsufficientStock,
    InvalidInput,
    InvalidReservationState,
    InventoryNotFound,
    ReservationNotFound,
)
from services.inventory_service import ledger
from services.inventory_service.models import ReservationLine, utcnow
from services.inventory_service.schemas import InventoryUpsert
from services.inventory_service.service import APPLIED, NOOP, InventoryService

pytestmark = pytest.mark.anyio


async def _seed(db, product_id="p1", stock=10):
    await InventoryService.restock(db, product_id, stock)
    return await InventoryService.get_inventory(db, product_id)


def _counters(record):
    return record.stock, record.reserved, record.total


def _adjustments():
    value = REGISTRY.get_sample_value(
        "inventory_ledger_operations_total", {"operation": "adjust", "outcome": "ok"}
    )
    return value or 0.0


class TestReserve:

    async def test_moves_units_from_stock_to_reserved(self, session):
        await _seed(session, stock=10)

        result = await InventoryService.reserve(session, "p1", 3)

        assert result.outcome == APPLIED
        assert _counters(result.record) == (7, 3, 10)

    async def test_insufficient_stock_changes_nothing(self, session):
        await _seed(session, stock=2)

        with pytest.raises(InsufficientStock):
            await InventoryService.reserve(session, "p1", 5)

        record = await InventoryService.get_inventory(session, "p1")
        assert _counters(record) == (2, 0, 2)

    async def test_second_reservation_beyond_remaining_stock(self, session):
        await _seed(session, stock=10)
        await InventoryService.reserve(session, "p1", 5)

        with pytest.raises(InsufficientStock):
            await InventoryService.reserve(session, "p1", 6)

        record = await InventoryService.get_inventory(session, "p1")
        assert (record.stock, record.reserved) == (5, 5)

    async def test_release_round_trips_a_reservation(self, session):
        before = _counters(await _seed(session, stock=7))

        await InventoryService.reserve(session, "p1", 3, reservation_id="r-1")
        result = await InventoryService.release(session, "p1", 3, reservation_id="r-1")

        assert _counters(result.record) == before

    async def test_exact_stock_can_be_reserved(self, session):
        await _seed(session, stock=4)

        result = await InventoryService.reserve(session, "p1", 4)

        assert _counters(result.record) == (0, 4, 4)
        assert ledger.stock_status(0, 10, 5) == ledger.OUT_OF_STOCK

    async def test_unknown_product(self, session):
        with pytest.raises(InventoryNotFound):
            await InventoryService.reserve(session, "missing", 1)

    @pytest.mark.parametrize("quantity", [0, -3])
    async def test_quantity_must_be_positive(self, session, quantity):
        await _seed(session)

        with pytest.raises(InvalidInput):
            await InventoryService.reserve(session, "p1", quantity)

    async def test_replaying_a_reservation_line_does_not_deduct_twice(self, session):
        await _seed(session, stock=10)

        first = await InventoryService.reserve(session, "p1", 3, reservation_id="r-1")
        second = await InventoryService.reserve(session, "p1", 3, reservation_id="r-1")

        assert first.outcome == APPLIED
        assert second.outcome == NOOP
        assert _counters(second.record) == (7, 3, 10)

    async def test_replay_with_different_quantity_is_rejected(self, session):
        await _seed(session, stock=10)
        await InventoryService.reserve(session, "p1", 3, reservation_id="r-1")

        with pytest.raises(InvalidReservationState):
            await InventoryService.reserve(session, "p1", 4, reservation_id="r-1")

    async def test_concurrent_reservations_never_oversell(self, database):
        async with AsyncSessionLocal() as db:
            await _seed(db, stock=5)

        async def attempt(n):
            async with AsyncSessionLocal() as db:
                try:
                    await InventoryService.reserve(db, "p1", 1, reservation_id=f"r-{n}")
                    return True
                except InsufficientStock:
                    return False

        results = await asyncio.gather(*(attempt(n) for n in range(12)))

        assert results.count(True) == 5
        async with AsyncSessionLocal() as db:
            record = await InventoryService.get_inventory(db, "p1")
            assert _counters(record) == (0, 5, 5)


class TestReleaseAndConfirm:

    async def test_release_returns_units_to_stock(self, session):
        await _seed(session, stock=10)
        await InventoryService.reserve(session, "p1", 4, reservation_id="r-1")

        result = await InventoryService.release(session, "p1", 4, reservation_id="r-1")

        assert result.reservation_status == ledger.RELEASED
        assert _counters(result.record) == (10, 0, 10)

    async def test_confirm_deducts_reserved_only(self, session):
        await _seed(session, stock=10)
        await InventoryService.reserve(session, "p1", 4, reservation_id="r-1")

        result = await InventoryService.confirm(session, "p1", 4, reservation_id="r-1", order_id=7)

        assert result.reservation_status == ledger.CONFIRMED
        assert _counters(result.record) == (6, 0, 6)

    async def test_confirm_is_idempotent_per_reservation(self, session):
        await _seed(session, stock=10)
        await InventoryService.reserve(session, "p1", 4, reservation_id="r-1")
        await InventoryService.confirm(session, "p1", 4, reservation_id="r-1")

        again = await InventoryService.confirm(session, "p1", 4, reservation_id="r-1")

        assert again.outcome == NOOP
        assert _counters(again.record) == (6, 0, 6)

    async def test_release_is_idempotent_per_reservation(self, session):
        await _seed(session, stock=10)
        await InventoryService.reserve(session, "p1", 4, reservation_id="r-1")
        await InventoryService.release(session, "p1", 4, reservation_id="r-1")

        again = await InventoryService.release(session, "p1", 4, reservation_id="r-1")

        assert again.outcome == NOOP
        assert _counters(again.record) == (10, 0, 10)

    async def test_confirm_after_release_is_rejected(self, session):
        await _seed(session, stock=10)
        await InventoryService.reserve(session, "p1", 4, reservation_id="r-1")
        await InventoryService.release(session, "p1", 4, reservation_id="r-1")

        with pytest.raises(InvalidReservationState):
            await InventoryService.confirm(session, "p1", 4, reservation_id="r-1")

        record = await InventoryService.get_inventory(session, "p1")
        assert _counters(record) == (10, 0, 10)

    async def test_release_of_unknown_reservation_is_a_noop(self, session):
        await _seed(session, stock=10)

        result = await InventoryService.release(session, "p1", 2, reservation_id="never-reserved")

        assert result.outcome == NOOP
        assert _counters(result.record) == (10, 0, 10)
        lines = await InventoryService.get_reservation(session, "never-reserved")
        assert [(line.product_id, line.status) for line in lines] == [("p1", ledger.RELEASED)]

    async def test_reserve_arriving_after_its_release_is_refused(self, session):
        await _seed(session, stock=10)
        await InventoryService.release(session, "p1", 4, reservation_id="attempt-1")

        with pytest.raises(InvalidReservationState):
            await InventoryService.reserve(session, "p1", 4, reservation_id="attempt-1")

        record = await InventoryService.get_inventory(session, "p1")
        assert _counters(record) == (10, 0, 10)

    async def test_repeated_release_of_unknown_reservation_stays_a_noop(self, session):
        await _seed(session, stock=10)
        await InventoryService.release(session, "p1", 2, reservation_id="never-reserved")

        again = await InventoryService.release(session, "p1", 2, reservation_id="never-reserved")

        assert again.outcome == NOOP
        assert _counters(again.record) == (10, 0, 10)

    async def test_release_racing_a_reserve_leaves_nothing_held(self, database):
        async with AsyncSessionLocal() as db:
            await _seed(db, stock=10)

        async def reserve():
            async with AsyncSessionLocal() as db:
                try:
                    await InventoryService.reserve(db, "p1", 3, reservation_id="r-race")
                except InvalidReservationState:
                    pass

        async def release():
            async with AsyncSessionLocal() as db:
                await InventoryService.release(db, "p1", 3, reservation_id="r-race")

        await asyncio.gather(reserve(), release())

        async with AsyncSessionLocal() as db:
            record = await InventoryService.get_inventory(db, "p1")
            assert _counters(record) == (10, 0, 10)
            lines = await InventoryService.get_reservation(db, "r-race")
            assert [line.status for line in lines] == [ledger.RELEASED]

    async def test_release_of_unknown_product(self, session):
        with pytest.raises(InventoryNotFound):
            await InventoryService.release(session, "missing", 1, reservation_id="r-1")

    async def test_confirm_of_unknown_reservation(self, session):
        await _seed(session, stock=10)

        with pytest.raises(ReservationNotFound):
            await InventoryService.confirm(session, "p1", 2, reservation_id="never-reserved")

    async def test_quantity_must_match_the_reservation(self, session):
        await _seed(session, stock=10)
        await InventoryService.reserve(session, "p1", 4, reservation_id="r-1")

        with pytest.raises(InvalidInput):
            await InventoryService.release(session, "p1", 3, reservation_id="r-1")

    async def test_untracked_release_beyond_reserved_is_rejected(self, session):
        await _seed(session, stock=10)
        await InventoryService.reserve(session, "p1", 2)

        with pytest.raises(InsufficientReserved):
            await InventoryService.release(session, "p1", 3)

        record = await InventoryService.get_inventory(session, "p1")
        assert _counters(record) == (8, 2, 10)

    async def test_reservation_lines_are_queryable(self, session):
        await _seed(session, "p1", 10)
        await _seed(session, "p2", 10)
        await InventoryService.reserve(session, "p1", 1, reservation_id="r-1")
        await InventoryService.reserve(session, "p2", 2, reservation_id="r-1")
        await InventoryService.confirm(session, "p1", 1, reservation_id="r-1")

        lines = await InventoryService.get_reservation(session, "r-1")

        assert {(line.product_id, line.status) for line in lines} == {
            ("p1", ledger.CONFIRMED),
            ("p2", ledger.PENDING),
        }


async def _backdate(db, reservation_id, **delta):
    await db.execute(
        update(ReservationLine)
        .where(ReservationLine.reservation_id == reservation_id)
        .values(created_at=utcnow() - timedelta(**delta))
    )
    await db.commit()


class TestStaleReservations:

    async def test_lists_only_old_pending_lines(self, session):
        await _seed(session, "p1", 10)
        await _seed(session, "p2", 10)
        await InventoryService.reserve(session, "p1", 1, reservation_id="old")
        await InventoryService.reserve(session, "p2", 1, reservation_id="old-confirmed")
        await InventoryService.confirm(session, "p2", 1, reservation_id="old-confirmed")
        await InventoryService.reserve(session, "p1", 2, reservation_id="fresh")
        await _backdate(session, "old", hours=1)
        await _backdate(session, "old-confirmed", hours=1)

        stale = await InventoryService.list_stale_reservations(session, 600)

        assert [(line.reservation_id, line.product_id) for line in stale] == [("old", "p1")]

    async def test_zero_age_lists_every_pending_line(self, session):
        await _seed(session, stock=10)
        await InventoryService.reserve(session, "p1", 1, reservation_id="r-1")

        stale = await InventoryService.list_stale_reservations(session, 0)

        assert [line.reservation_id for line in stale] == ["r-1"]

    async def test_negative_age_is_invalid(self, session):
        with pytest.raises(InvalidInput):
            await InventoryService.list_stale_reservations(session, -1)


class TestRestockAndUpsert:

    async def test_restock_creates_missing_record(self, session):
        result = await InventoryService.restock(session, "new", 6, notes="first delivery")

        assert _counters(result.record) == (6, 0, 6)
        assert result.record.last_restocked is not None
        assert result.record.notes == "first delivery"

    async def test_restock_adds_to_existing_stock(self, session):
        await _seed(session, stock=3)
        await InventoryService.reserve(session, "p1", 2)

        result = await InventoryService.restock(session, "p1", 5)

        assert _counters(result.record) == (6, 2, 8)

    async def test_upsert_sets_thresholds(self, session):
        await InventoryService.upsert(session, InventoryUpsert(product_id="p9", stock=8, low_stock_threshold=3))

        record = await InventoryService.upsert(session, InventoryUpsert(product_id="p9", reorder_point=9))

        assert (record.stock, record.low_stock_threshold, record.reorder_point) == (8, 3, 9)
        assert ledger.stock_status(record.stock, record.low_stock_threshold, record.reorder_point) == ledger.REORDER_NEEDED

    async def test_stock_overwrite_is_counted_as_an_adjustment(self, session):
        await _seed(session, stock=10)
        await InventoryService.reserve(session, "p1", 2)
        before = _adjustments()

        record = await InventoryService.upsert(session, InventoryUpsert(product_id="p1", stock=3))

        assert _counters(record) == (3, 2, 5)
        assert _adjustments() == before + 1

    async def test_unchanged_stock_is_not_an_adjustment(self, session):
        await _seed(session, stock=10)
        before = _adjustments()

        await InventoryService.upsert(session, InventoryUpsert(product_id="p1", stock=10, notes="recount"))

        assert _adjustments() == before

    async def test_low_stock_listing(self, session):
        await _seed(session, "plenty", 50)
        await _seed(session, "scarce", 2)

        low = await InventoryService.get_low_stock(session)

        assert [r.product_id for r in low] == ["scarce"]


class TestStockStatus:

    @pytest.mark.parametrize(
        "stock,expected",
        [
            (0, ledger.OUT_OF_STOCK),
            (3, ledger.LOW_STOCK),
            (10, ledger.LOW_STOCK),
            (11, ledger.IN_STOCK),
        ],
    )
    def test_default_thresholds(self, stock, expected):
        assert ledger.stock_status(stock, 10, 5) == expected

    def test_reorder_point_above_low_stock_threshold(self):
        assert ledger.stock_status(7, 5, 8) == ledger.REORDER_NEEDED
