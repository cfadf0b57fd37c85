import asyncio
import structlog

from shared.config.settings import RETRY_BACKOFF_SECONDS

log = structlog.get_logger(__name__)


def backoff_delay(attempt: int, base: float = RETRY_BACKOFF_SECONDS) -> float:
    """Exponential backoff: base, 2*base, 4*base, ... for attempt 1, 2, 3, ..."""
    return base * (2 ** max(attempt - 1, 0))


async def retry_async(operation, *, attempts: int, retry_on: tuple, name: str, base_delay: float = RETRY_BACKOFF_SECONDS):
    """
    Awaits ``operation()`` up to ``attempts`` times, sleeping with exponential
    backoff between tries. Only exceptions listed in ``retry_on`` are retried;
    the last one is re-raised once attempts are exhausted.
    """
    attempts = max(attempts, 1)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            if attempt == attempts:
                log.warning("retry_exhausted", operation=name, attempts=attempts, error=str(e))
                raise
            delay = backoff_delay(attempt, base_delay)
            log.info("retrying", operation=name, attempt=attempt, delay=delay, error=str(e))
            await asyncio.sleep(delay)
