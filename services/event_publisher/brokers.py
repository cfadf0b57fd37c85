"""
Transports the outbox dispatcher hands events to. A broker either returns
normally (delivered) or raises (the dispatcher schedules a retry).
"""
import asyncio
import json

import httpx
import structlog

from shared.config.settings import (
    EVENT_BROKER,
    EVENT_WEBHOOK_URL,
    KAFKA_BOOTSTRAP_SERVERS,
    ORDER_EVENTS_TOPIC,
    SERVICE_TIMEOUT_SECONDS,
)
from shared.security.api_key import API_HEADERS

log = structlog.get_logger(__name__)


class EventDeliveryError(Exception):
    pass


class LoggingEventBroker:
    """Writes events to the structured log. Default for local runs."""

    async def send(self, event: dict, key: str):
        log.info("event_published", key=key, event_id=event["eventId"], event_type=event["type"], event=event)


class HttpEventBroker:
    """POSTs each event to a consumer webhook (e.g. the notification service)."""

    def __init__(self, url: str = EVENT_WEBHOOK_URL, client: httpx.AsyncClient | None = None):
        self.url = url
        self._client = client

    async def send(self, event: dict, key: str):
        headers = {**API_HEADERS, "Idempotency-Key": event["eventId"]}
        try:
            if self._client is not None:
                resp = await self._client.post(self.url, json=event, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=SERVICE_TIMEOUT_SECONDS) as client:
                    resp = await client.post(self.url, json=event, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise EventDeliveryError(f"Webhook delivery failed: {e}") from e


class KafkaEventBroker:
    """Produces events to a Kafka topic keyed by order id, waiting for the broker ack."""

    def __init__(self, bootstrap_servers: str = KAFKA_BOOTSTRAP_SERVERS, topic: str = ORDER_EVENTS_TOPIC):
        from confluent_kafka import Producer

        self.topic = topic
        self.producer = Producer({
            "bootstrap.servers": bootstrap_servers,
            "acks": "all",  # All replicas must acknowledge
            "enable.idempotence": True,
        })

    def _produce(self, event: dict, key: str):
        errors = []

        def delivery_report(err, msg):
            if err is not None:
                errors.append(err)

        self.producer.produce(
            topic=self.topic,
            key=key.encode("utf-8"),
            value=json.dumps(event).encode("utf-8"),
            callback=delivery_report,
        )
        remaining = self.producer.flush(timeout=SERVICE_TIMEOUT_SECONDS)
        if remaining:
            raise EventDeliveryError(f"{remaining} message(s) not acknowledged before timeout")
        if errors:
            raise EventDeliveryError(f"Kafka delivery failed: {errors[0]}")

    async def send(self, event: dict, key: str):
        # confluent-kafka is blocking; keep it off the event loop
        await asyncio.to_thread(self._produce, event, key)


def build_event_broker(kind: str = EVENT_BROKER):
    if kind == "http":
        return HttpEventBroker()
    if kind == "kafka":
        return KafkaEventBroker()
    if kind == "log":
        return LoggingEventBroker()
    raise ValueError(f"Unknown EVENT_BROKER '{kind}' (expected log, http or kafka)")
