from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from . import ledger


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class StockOperation(CamelModel):
    product_id: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    reservation_id: Optional[str] = None
    order_id: Optional[int] = None


class RestockRequest(CamelModel):
    quantity: int = Field(gt=0)
    notes: Optional[str] = None


class InventoryUpsert(CamelModel):
    product_id: str = Field(min_length=1)
    stock: Optional[int] = Field(default=None, ge=0)
    low_stock_threshold: Optional[int] = Field(default=None, ge=0)
    reorder_point: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None


class InventoryResponse(CamelModel):
    product_id: str
    stock: int
    reserved: int
    available: int
    total: int
    status: str
    low_stock_threshold: int
    reorder_point: int
    notes: Optional[str] = None
    last_updated: Optional[datetime] = None
    last_restocked: Optional[datetime] = None

    @classmethod
    def from_record(cls, record) -> "InventoryResponse":
        return cls(
            product_id=record.product_id,
            stock=record.stock,
            reserved=record.reserved,
            available=record.stock,  # reserved units are never counted in stock
            total=ledger.total_units(record.stock, record.reserved),
            status=ledger.stock_status(record.stock, record.low_stock_threshold, record.reorder_point),
            low_stock_threshold=record.low_stock_threshold,
            reorder_point=record.reorder_point,
            notes=record.notes,
            last_updated=record.last_updated,
            last_restocked=record.last_restocked,
        )


class LedgerResponse(CamelModel):
    outcome: str  # applied | noop
    reservation_id: Optional[str] = None
    reservation_status: Optional[str] = None
    inventory: InventoryResponse

    @classmethod
    def from_result(cls, result) -> "LedgerResponse":
        return cls(
            outcome=result.outcome,
            reservation_id=result.reservation_id,
            reservation_status=result.reservation_status,
            inventory=InventoryResponse.from_record(result.record),
        )


class ReservationLineResponse(CamelModel):
    reservation_id: str
    product_id: str
    quantity: int
    status: str
    order_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ReservationResponse(CamelModel):
    reservation_id: str
    status: str
    lines: List[ReservationLineResponse] = []

    @classmethod
    def from_lines(cls, reservation_id: str, lines) -> "ReservationResponse":
        statuses = {line.status for line in lines}
        # A reservation is terminal only once every line is settled the same way
        overall = statuses.pop() if len(statuses) == 1 else "mixed"
        return cls(
            reservation_id=reservation_id,
            status=overall,
            lines=[ReservationLineResponse.model_validate(line) for line in lines],
        )
