import logging
from typing import Callable, Optional

import httpx

from adapters import AdapterResult, NotApplicable, Observed, TitleRef
from models import SourceRating

logger = logging.getLogger(__name__)


class RankingFileError(Exception):
    """The downloaded ranking file does not look like one."""


def parse_ranking_file(text: str) -> dict[str, int]:
    """
    Parse "rank,key" lines into key -> rank.

    Raises RankingFileError when any of the first five lines is malformed,
    which is what a layout change or an error page looks like.
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    ranks: dict[str, int] = {}
    for index, line in enumerate(lines):
        rank, sep, key = line.partition(",")
        if not sep or not rank.strip().isdigit() or not key.strip():
            if index < 5:
                raise RankingFileError(f"Malformed ranking line {index + 1}: {line!r}")
            continue
        # First occurrence wins
        ranks.setdefault(key.strip(), int(rank))
    if not ranks:
        raise RankingFileError("Empty ranking file")
    return ranks


class RankingFileAdapter:
    """Popularity rank of a title, looked up in a ranking file published per item type."""

    def __init__(
        self,
        source: str,
        client: httpx.AsyncClient,
        file_urls: dict[str, str],
        key_for: Callable[[TitleRef], Optional[str]],
    ) -> None:
        self.source = source
        self.name = f"{source}_popularity"
        self._client = client
        self._file_urls = file_urls
        self._key_for = key_for
        self._ranks: dict[str, dict[str, int]] = {}

    async def _load(self, item_type: str) -> dict[str, int]:
        if item_type not in self._ranks:
            response = await self._client.get(self._file_urls[item_type])
            response.raise_for_status()
            self._ranks[item_type] = parse_ranking_file(response.text)
            logger.info(
                "Loaded %d %s popularity ranks for %s", len(self._ranks[item_type]), self.source, item_type
            )
        return self._ranks[item_type]

    async def fetch(self, ref: TitleRef) -> AdapterResult:
        key = self._key_for(ref)
        if key is None or ref.item_type not in self._file_urls:
            return NotApplicable(source=self.source)
        ranks = await self._load(ref.item_type)
        rank = ranks.get(key)
        if rank is None:
            return NotApplicable(source=self.source)
        return Observed(source=self.source, rating=SourceRating(popularity=rank))
