from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from shared.config.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(Base):
    __tablename__ = "orders"
    # We use a separate schema to simulate microservice isolation
    __table_args__ = (
        UniqueConstraint("user_id", "idempotency_key", name="uq_orders_user_idempotency_key"),
        {"schema": "order_schema"},
    )

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, nullable=False)
    user_id = Column(Integer, nullable=False, index=True)
    idempotency_key = Column(String(128), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    payment_status = Column(String(20), nullable=False, default="pending")
    payment_method = Column(String(32), nullable=False, default="pending")
    total_amount = Column(Numeric(10, 2), nullable=False)  # price snapshot, fixed at creation
    subtotal = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    shipping_address = Column(JSON, nullable=False)
    source = Column(String(10), nullable=False, default="web")
    notes = Column(Text, nullable=True)

    # Reservation Coordinator bookkeeping
    reservation_id = Column(String(64), nullable=False, index=True)
    reservation_status = Column(String(16), nullable=False, default="pending")  # pending, confirmed, released, sync_failed
    inventory_sync_pending = Column(Boolean, nullable=False, default=False, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    items = relationship(
        "OrderItem", back_populates="order", lazy="selectin", order_by="OrderItem.id"
    )
    status_history = relationship(
        "OrderStatusHistory", back_populates="order", lazy="selectin", order_by="OrderStatusHistory.id"
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = {"schema": "order_schema"}

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("order_schema.orders.id"), nullable=False, index=True)
    product_id = Column(String(64), nullable=False)
    product_name = Column(String(255), nullable=False)
    product_image = Column(String(500), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)

    order = relationship("Order", back_populates="items")


class OrderStatusHistory(Base):
    """Append-only audit trail of status changes."""
    __tablename__ = "order_status_history"
    __table_args__ = {"schema": "order_schema"}

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("order_schema.orders.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    previous_status = Column(String(20), nullable=True)
    changed_by = Column(Integer, nullable=True)
    changed_by_role = Column(String(10), nullable=False, default="system")  # buyer, seller, admin, system
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    order = relationship("Order", back_populates="status_history")
