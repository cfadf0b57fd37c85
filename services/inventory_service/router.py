from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.config.settings import RESERVATION_TTL_SECONDS
from shared.security.dependencies import verify_internal_api_key
from .schemas import (
    InventoryResponse,
    InventoryUpsert,
    LedgerResponse,
    ReservationLineResponse,
    ReservationResponse,
    RestockRequest,
    StockOperation,
)
from .service import InventoryService

# Inventory is only reachable by other services
router = APIRouter(dependencies=[Depends(verify_internal_api_key)])
public_router = APIRouter()


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "inventory", "status": "running"}


@router.get("/", response_model=list[InventoryResponse])
async def list_inventory(db: AsyncSession = Depends(get_db)):
    records = await InventoryService.list_inventory(db)
    return [InventoryResponse.from_record(r) for r in records]


@router.post("/", response_model=InventoryResponse)
async def create_or_update_inventory(payload: InventoryUpsert, db: AsyncSession = Depends(get_db)):
    record = await InventoryService.upsert(db, payload)
    return InventoryResponse.from_record(record)


@router.post("/reserve", response_model=LedgerResponse)
async def reserve_stock(payload: StockOperation, db: AsyncSession = Depends(get_db)):
    result = await InventoryService.reserve(
        db, payload.product_id, payload.quantity, payload.reservation_id, payload.order_id
    )
    return LedgerResponse.from_result(result)


@router.post("/release", response_model=LedgerResponse)
async def release_stock(payload: StockOperation, db: AsyncSession = Depends(get_db)):
    result = await InventoryService.release(db, payload.product_id, payload.quantity, payload.reservation_id)
    return LedgerResponse.from_result(result)


@router.post("/confirm", response_model=LedgerResponse)
async def confirm_reserved_stock(payload: StockOperation, db: AsyncSession = Depends(get_db)):
    result = await InventoryService.confirm(
        db, payload.product_id, payload.quantity, payload.reservation_id, payload.order_id
    )
    return LedgerResponse.from_result(result)


# Static paths must be declared before /{product_id}
@router.get("/alerts/low-stock", response_model=list[InventoryResponse])
async def low_stock_items(db: AsyncSession = Depends(get_db)):
    records = await InventoryService.get_low_stock(db)
    return [InventoryResponse.from_record(r) for r in records]


@router.get("/alerts/reorder", response_model=list[InventoryResponse])
async def reorder_items(db: AsyncSession = Depends(get_db)):
    records = await InventoryService.get_reorder_needed(db)
    return [InventoryResponse.from_record(r) for r in records]


@router.get("/reservations/stale", response_model=list[ReservationLineResponse])
async def stale_reservations(
    older_than_seconds: float = Query(default=RESERVATION_TTL_SECONDS, ge=0, alias="olderThanSeconds"),
    limit: int = Query(default=100, gt=0, le=1000),
    db: AsyncSession = Depends(get_db),
):
    lines = await InventoryService.list_stale_reservations(db, older_than_seconds, limit)
    return [ReservationLineResponse.model_validate(line) for line in lines]


@router.get("/reservations/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(reservation_id: str, db: AsyncSession = Depends(get_db)):
    lines = await InventoryService.get_reservation(db, reservation_id)
    return ReservationResponse.from_lines(reservation_id, lines)


@router.get("/{product_id}", response_model=InventoryResponse)
async def get_inventory(product_id: str, db: AsyncSession = Depends(get_db)):
    record = await InventoryService.get_inventory(db, product_id)
    return InventoryResponse.from_record(record)


@router.post("/{product_id}/restock", response_model=LedgerResponse)
async def restock(product_id: str, payload: RestockRequest, db: AsyncSession = Depends(get_db)):
    result = await InventoryService.restock(db, product_id, payload.quantity, payload.notes)
    return LedgerResponse.from_result(result)
