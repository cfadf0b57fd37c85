from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, DateTime, CheckConstraint, UniqueConstraint
from shared.config.database import Base
from shared.config.settings import LOW_STOCK_THRESHOLD, REORDER_POINT


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InventoryRecord(Base):
    __tablename__ = "inventory"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_inventory_stock_non_negative"),
        CheckConstraint("reserved >= 0", name="ck_inventory_reserved_non_negative"),
        {"schema": "inventory_schema"},
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(String(64), unique=True, nullable=False, index=True)
    stock = Column(Integer, nullable=False, default=0)     # available units
    reserved = Column(Integer, nullable=False, default=0)  # held for pending orders
    total = Column(Integer, nullable=False, default=0)     # stock + reserved, written with every mutation
    low_stock_threshold = Column(Integer, nullable=False, default=LOW_STOCK_THRESHOLD)
    reorder_point = Column(Integer, nullable=False, default=REORDER_POINT)
    notes = Column(Text, nullable=True)
    last_updated = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_restocked = Column(DateTime(timezone=True), nullable=True)


class ReservationLine(Base):
    """One (reservation, product) hold. pending -> confirmed | released, once."""
    __tablename__ = "reservations"
    __table_args__ = (
        UniqueConstraint("reservation_id", "product_id", name="uq_reservation_product"),
        CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),
        {"schema": "inventory_schema"},
    )

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(String(64), nullable=False, index=True)
    order_id = Column(Integer, nullable=True, index=True)
    product_id = Column(String(64), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default="pending")  # pending, confirmed, released
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
