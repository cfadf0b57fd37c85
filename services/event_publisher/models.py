from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, JSON, String, Text
from shared.config.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OutboxEvent(Base):
    """
    Durable outbound event, written in the same transaction as the order
    change that produced it. ``id`` doubles as the event id consumers dedupe on.
    """
    __tablename__ = "outbox_events"
    # The outbox lives next to the data it describes
    __table_args__ = {"schema": "order_schema"}

    id = Column(String(36), primary_key=True)
    order_id = Column(Integer, nullable=False, index=True)
    event_type = Column(String(50), nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    status = Column(String(16), nullable=False, default="pending", index=True)  # pending, delivered, failed
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    next_attempt_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
