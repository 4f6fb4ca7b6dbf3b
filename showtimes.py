import asyncio

import httpx

from config import Settings

PAGE_SIZE = 15


async def fetch_cinema_movie_ids(client: httpx.AsyncClient, cinema_id: str, settings: Settings) -> list[int]:
    """Collect the AlloCiné ids of every movie showing today at a cinema."""
    movie_ids: list[int] = []
    page = 1

    while True:
        url = f"{settings.base_url_theaters}{cinema_id}/d-0/p-{page}/"
        response = await client.get(url, follow_redirects=True)
        response.raise_for_status()

        results = response.json().get("results", [])
        movie_ids.extend(result["movie"]["internalId"] for result in results if result.get("movie"))

        # A full page means there may be another one
        if len(results) < PAGE_SIZE:
            break

        page += 1
        await asyncio.sleep(settings.request_delay)

    return movie_ids
