import asyncio

import httpx

from adapters import Failed, Fatal, NotApplicable, Observed, TransientSourceError
from config import Settings
from guard import ErrorThresholdGuard, is_transient
from models import SourceRating


def _settings(**overrides) -> Settings:
    values = {"retries": 2, "retry_delay": 0}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _observed() -> Observed:
    return Observed(source="imdb", rating=SourceRating(users_rating=8.0))


async def test_success_passes_result_through():
    guard = ErrorThresholdGuard(_settings())

    async def call():
        return _observed()

    result = await guard.guard("imdb", call)
    assert isinstance(result, Observed)
    assert guard.count("imdb") == 0


async def test_transient_failure_is_retried_before_counting():
    guard = ErrorThresholdGuard(_settings(retries=2))
    attempts = []

    async def call():
        attempts.append(1)
        if len(attempts) < 3:
            raise TransientSourceError("timeout")
        return _observed()

    result = await guard.guard("imdb", call)
    assert isinstance(result, Observed)
    assert len(attempts) == 3
    assert guard.count("imdb") == 0


async def test_exhausted_retries_count_as_one_failure():
    guard = ErrorThresholdGuard(_settings(retries=2))
    attempts = []

    async def call():
        attempts.append(1)
        raise httpx.ConnectError("down")

    result = await guard.guard("imdb", call)
    assert isinstance(result, Failed)
    assert len(attempts) == 3
    assert guard.count("imdb") == 1


async def test_permanent_failure_is_not_retried():
    guard = ErrorThresholdGuard(_settings(retries=2))
    attempts = []

    async def call():
        attempts.append(1)
        raise ValueError("layout changed")

    result = await guard.guard("imdb", call)
    assert isinstance(result, Failed)
    assert len(attempts) == 1


async def test_failed_result_counts():
    guard = ErrorThresholdGuard(_settings())

    async def call():
        return Failed(source="imdb", cause=RuntimeError("no rating"))

    await guard.guard("imdb", call)
    assert guard.count("imdb") == 1


async def test_success_resets_counter():
    guard = ErrorThresholdGuard(_settings(retries=0))

    async def failing():
        raise ValueError("boom")

    async def not_applicable():
        return NotApplicable(source="imdb")

    for _ in range(3):
        await guard.guard("imdb", failing)
    assert guard.count("imdb") == 3

    await guard.guard("imdb", not_applicable)
    assert guard.count("imdb") == 0


async def test_exceeding_threshold_is_fatal():
    guard = ErrorThresholdGuard(_settings(retries=0, max_error_counter={"default": 5}))

    async def failing():
        raise ValueError("boom")

    results = [await guard.guard("imdb", failing) for _ in range(6)]

    assert all(isinstance(r, Failed) for r in results[:5])
    assert isinstance(results[5], Fatal)
    assert results[5].adapter == "imdb"
    assert results[5].failures == 6


async def test_counters_are_per_adapter():
    guard = ErrorThresholdGuard(
        _settings(retries=0, max_error_counter={"default": 1, "rotten_tomatoes": 10})
    )

    async def failing():
        raise ValueError("boom")

    for _ in range(5):
        assert not isinstance(await guard.guard("rotten_tomatoes", failing), Fatal)
    assert isinstance(await guard.guard("imdb", failing), Failed)
    assert isinstance(await guard.guard("imdb", failing), Fatal)


async def test_concurrent_failures_are_all_counted():
    guard = ErrorThresholdGuard(_settings(retries=0, max_error_counter={"default": 100}))

    async def failing():
        await asyncio.sleep(0)
        raise ValueError("boom")

    await asyncio.gather(*(guard.guard("imdb", failing) for _ in range(20)))
    assert guard.count("imdb") == 20


def test_is_transient():
    request = httpx.Request("GET", "https://example.com")
    assert is_transient(httpx.ReadTimeout("slow", request=request))
    assert is_transient(
        httpx.HTTPStatusError("", request=request, response=httpx.Response(503, request=request))
    )
    assert is_transient(
        httpx.HTTPStatusError("", request=request, response=httpx.Response(429, request=request))
    )
    assert not is_transient(
        httpx.HTTPStatusError("", request=request, response=httpx.Response(403, request=request))
    )
    assert not is_transient(KeyError("rating"))
