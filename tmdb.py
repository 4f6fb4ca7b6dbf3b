import asyncio
from typing import Optional

import httpx

from adapters import AdapterResult, NotApplicable, Observed, TitleRef
from models import SourceRating, TitleDetails

TMDB_IMAGE_BASE = "https://image.tmdb.org/t/p"
TMDB_SITE_BASE = "https://www.themoviedb.org"
YOUTUBE_WATCH_BASE = "https://www.youtube.com/watch?v="

# TMDB's TV statuses -> ours
TV_STATUSES = {
    "Returning Series": "Ongoing",
    "In Production": "Soon",
    "Planned": "Soon",
    "Pilot": "Pilot",
    "Canceled": "Canceled",
    "Ended": "Ended",
}

_semaphore = asyncio.Semaphore(10)


def _tmdb_path(item_type: str) -> str:
    return "movie" if item_type == "movie" else "tv"


def _trailer_url(data: dict) -> Optional[str]:
    for video in data.get("videos", {}).get("results", []):
        if video.get("site") == "YouTube" and video.get("type") == "Trailer" and video.get("key"):
            return f"{YOUTUBE_WATCH_BASE}{video['key']}"
    return None


def parse_details(item_type: str, data: dict) -> TitleDetails:
    """Pull title details out of a TMDB movie or TV payload."""
    poster_path = data.get("poster_path")
    if item_type == "movie":
        return TitleDetails(
            title=data.get("title"),
            image=f"{TMDB_IMAGE_BASE}/w500{poster_path}" if poster_path else None,
            trailer_url=_trailer_url(data),
        )
    return TitleDetails(
        title=data.get("name"),
        image=f"{TMDB_IMAGE_BASE}/w500{poster_path}" if poster_path else None,
        trailer_url=_trailer_url(data),
        seasons_number=data.get("number_of_seasons") or None,
        status=TV_STATUSES.get(data.get("status") or "", "Unknown"),
    )


class TMDBAdapter:
    name = "tmdb"
    source = "tmdb"

    def __init__(self, client: httpx.AsyncClient, api_key: str, base_url: str) -> None:
        self._client = client
        self._api_key = api_key
        self._base_url = base_url

    async def fetch(self, ref: TitleRef) -> AdapterResult:
        path = _tmdb_path(ref.item_type)
        async with _semaphore:
            response = await self._client.get(
                f"{self._base_url}/{path}/{ref.external_id}",
                params={"api_key": self._api_key, "append_to_response": "videos"},
            )
        if response.status_code == 404:
            return NotApplicable(source=self.source)
        response.raise_for_status()

        data = response.json()
        vote_count = data.get("vote_count") or 0
        rating = SourceRating(
            id=ref.external_id,
            url=f"{TMDB_SITE_BASE}/{path}/{ref.external_id}",
            users_rating=data.get("vote_average") if vote_count else None,
        )
        return Observed(source=self.source, rating=rating, details=parse_details(ref.item_type, data))
