# Backoff helper for one-off Discord API calls (timeouts, notifications)
# Prevents 429 storms when a purge and a report land at the same time

import asyncio
from typing import Any, Awaitable, Callable, Optional, Tuple
import discord
from utils.logger import get_logger

log = get_logger()

RETRIABLE_STATUSES = (408, 429, 500, 502, 503, 504)
FATAL_STATUSES = (401, 403, 404, 410)

class ExponentialBackoff:
    """Doubling delay capped at ``max_delay``. Every handed out delay uses up one attempt."""
    def __init__(self, base_delay: float = 1.0, max_delay: float = 32.0, max_attempts: int = 5):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self._attempt = 0

    def get_delay(self) -> float:
        delay = min(self.base_delay * (2 ** self._attempt), self.max_delay)
        self._attempt += 1
        return delay

    @property
    def attempts_exhausted(self) -> bool:
        return self._attempt >= self.max_attempts


async def call_with_backoff(
    call: Callable[[], Awaitable[Any]],
    max_attempts: int = 5,
    base_delay: float = 1.0
) -> Tuple[bool, Optional[Exception]]:
    """
    Awaits ``call()`` until it succeeds or the attempts run out.

    Rate limits, transient server statuses and dropped connections are
    retried; anything else fails at once. Returns ``(ok, error)``, where
    ``error`` is the last failure seen.
    """
    backoff = ExponentialBackoff(base_delay=base_delay, max_attempts=max_attempts)
    last_error = None

    while not backoff.attempts_exhausted:
        try:
            await call()
            return True, None
        except discord.RateLimited as e:
            # retry_after wins over the backoff delay, the attempt still counts
            backoff.get_delay()
            delay = e.retry_after + 0.1
            last_error = e
        except discord.HTTPException as e:
            if e.status not in RETRIABLE_STATUSES:
                if e.status in FATAL_STATUSES:
                    log.warning(f"[Backoff] HTTP {e.status} is not retriable, giving up.")
                return False, e
            delay = backoff.get_delay()
            last_error = e
        except (OSError, asyncio.TimeoutError) as e:
            delay = backoff.get_delay()
            last_error = e
        except Exception as e:
            return False, e

        log.warning(f"[Backoff] {type(last_error).__name__}, retrying in {delay:.1f}s")
        await asyncio.sleep(delay)

    return False, last_error
