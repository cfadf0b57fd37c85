import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# --- DATABASE ---
DB_USER = os.getenv("POSTGRES_USER", "postgres")
DB_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
DB_HOST = os.getenv("POSTGRES_HOST", "localhost")  # In Docker, this will be 'postgres'
DB_PORT = os.getenv("POSTGRES_PORT", "5433")
DB_NAME = os.getenv("POSTGRES_DB", "ecommerce")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)
DB_ECHO = _env_bool("DB_ECHO", False)

# --- COLLABORATORS ---
PRODUCT_URL = os.getenv("PRODUCT_URL", "http://localhost:8001")
INVENTORY_URL = os.getenv("INVENTORY_URL", "http://localhost:8005")
SERVICE_TIMEOUT_SECONDS = float(os.getenv("SERVICE_TIMEOUT_SECONDS", "5.0"))

# --- RETRY POLICY ---
CATALOG_LOOKUP_RETRIES = int(os.getenv("CATALOG_LOOKUP_RETRIES", "2"))
INVENTORY_SYNC_RETRIES = int(os.getenv("INVENTORY_SYNC_RETRIES", "3"))
RETRY_BACKOFF_SECONDS = float(os.getenv("RETRY_BACKOFF_SECONDS", "0.2"))

# --- OUTBOX / RECONCILER ---
OUTBOX_MAX_ATTEMPTS = int(os.getenv("OUTBOX_MAX_ATTEMPTS", "5"))
OUTBOX_BATCH_SIZE = int(os.getenv("OUTBOX_BATCH_SIZE", "100"))
OUTBOX_POLL_INTERVAL_SECONDS = float(os.getenv("OUTBOX_POLL_INTERVAL_SECONDS", "2.0"))
RECONCILE_INTERVAL_SECONDS = float(os.getenv("RECONCILE_INTERVAL_SECONDS", "30.0"))
BACKGROUND_WORKERS_ENABLED = _env_bool("BACKGROUND_WORKERS_ENABLED", True)

# --- EVENT BROKER ---
EVENT_BROKER = os.getenv("EVENT_BROKER", "log")  # log | http | kafka
EVENT_WEBHOOK_URL = os.getenv("EVENT_WEBHOOK_URL", "http://localhost:3004/api/events")
KAFKA_BOOTSTRAP_SERVERS = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092")
ORDER_EVENTS_TOPIC = os.getenv("ORDER_EVENTS_TOPIC", "order-events")

# --- ORDERS ---
ORDER_RATE_LIMIT = os.getenv("ORDER_RATE_LIMIT", "30/minute")
ORDER_CURRENCY = os.getenv("ORDER_CURRENCY", "INR")
ORDER_NUMBER_ATTEMPTS = int(os.getenv("ORDER_NUMBER_ATTEMPTS", "5"))

# --- INVENTORY DEFAULTS ---
LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", "10"))
REORDER_POINT = int(os.getenv("REORDER_POINT", "5"))
# Pending holds older than this with no matching order are released by the reconciler
RESERVATION_TTL_SECONDS = float(os.getenv("RESERVATION_TTL_SECONDS", "900"))

# --- OBSERVABILITY ---
TRACING_ENABLED = _env_bool("TRACING_ENABLED", True)
OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT", "http://localhost:4317")

# --- AUTH ---
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
