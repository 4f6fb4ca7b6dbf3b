import logging
from typing import Sequence

import httpx
from tenacity import AsyncRetrying, RetryError, stop_after_attempt, wait_fixed

from config import ServiceCheck, Settings

logger = logging.getLogger(__name__)


class UpstreamUnavailableError(Exception):
    """A third-party service the batch depends on is down."""


async def is_service_ok(client: httpx.AsyncClient, service: ServiceCheck, settings: Settings) -> bool:
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(settings.retries + 1),
            wait=wait_fixed(settings.retry_delay),
        ):
            with attempt:
                response = await client.get(service.url, follow_redirects=True)
                response.raise_for_status()
    except RetryError as exc:
        logger.warning("%s check failed: %s", service.name, exc.last_attempt.exception())
        return False
    return True


async def check_services(
    client: httpx.AsyncClient, services: Sequence[ServiceCheck], settings: Settings
) -> None:
    """Raise UpstreamUnavailableError unless every service answers."""
    for service in services:
        if not await is_service_ok(client, service, settings):
            raise UpstreamUnavailableError(f"{service.name}'s status is not OK")
        logger.info("%s's status is OK, continuing...", service.name)
