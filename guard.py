import logging
from collections import defaultdict
from typing import Awaitable, Callable, Union

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_fixed

from adapters import AdapterResult, Failed, Fatal, TransientSourceError
from config import Settings

logger = logging.getLogger(__name__)


def is_transient(exc: BaseException) -> bool:
    """Network hiccups, throttling and server errors; anything else fails at once."""
    if isinstance(exc, (httpx.TransportError, TransientSourceError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


class ErrorThresholdGuard:
    """
    Counts consecutive failures per adapter and trips once a threshold is passed.

    Each call gets a few immediate retries at a fixed delay for transient
    errors; what is left after that is one failure. A success resets the
    adapter's counter. Past the configured threshold the guard hands back a
    Fatal value instead of a Failed one, and the batch driver must stop.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._counters: dict[str, int] = defaultdict(int)

    def count(self, name: str) -> int:
        return self._counters[name]

    async def guard(
        self, name: str, call: Callable[[], Awaitable[AdapterResult]]
    ) -> Union[AdapterResult, Fatal]:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._settings.retries + 1),
                wait=wait_fixed(self._settings.retry_delay),
                retry=retry_if_exception(is_transient),
                reraise=True,
            ):
                with attempt:
                    result = await call()
        except Exception as exc:
            result = Failed(source=name, cause=exc)

        # Counter updates below never straddle an await, so concurrent
        # fan-out on one event loop keeps them consistent.
        if not isinstance(result, Failed):
            self._counters[name] = 0
            return result

        self._counters[name] += 1
        failures = self._counters[name]
        threshold = self._settings.threshold_for(name)
        logger.warning(
            "%s failed (%d/%d): %s", name, failures, threshold, result.cause
        )
        if failures > threshold:
            logger.error(
                "%s has failed more than %d times in a row", name, threshold
            )
            return Fatal(adapter=name, failures=failures, cause=result.cause)
        return result
