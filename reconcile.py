import asyncio
import logging
from functools import partial
from typing import Iterable, Mapping, Optional, Sequence, Union

from adapters import Fatal, Observed, SourceAdapter, TitleRef
from address import resolve
from config import Settings
from guard import ErrorThresholdGuard
from ids import MissingIdentifierError
from models import POPULARITY_FIELDS, RATING_FIELDS, CanonicalItem, SourceRating, TitleDetails
from validator import cross_validate

logger = logging.getLogger(__name__)

SourceDocs = Mapping[str, Optional[Mapping]]


def _value(source_ratings: SourceDocs, source: str, field: str):
    return (source_ratings.get(source) or {}).get(field)


def compute_ratings_average(
    source_ratings: SourceDocs,
    divisors: Mapping[str, float],
    selection: Optional[Iterable[str]] = None,
) -> Optional[float]:
    """Mean of the selected ratings, each brought onto a 0-5 scale. Missing ratings are skipped."""
    names = divisors.keys() if selection is None else selection
    values = []
    for name in names:
        source, field = RATING_FIELDS[name]
        value = _value(source_ratings, source, field)
        if value is not None:
            values.append(value / divisors[name])
    return sum(values) / len(values) if values else None


def compute_popularity_average(source_ratings: SourceDocs, fields: Iterable[str]) -> Optional[float]:
    values = [
        value
        for value in (_value(source_ratings, *POPULARITY_FIELDS[name]) for name in fields)
        if value is not None
    ]
    return sum(values) / len(values) if values else None


class Reconciler:
    """Merge every adapter's observation of one title into a canonical item."""

    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        guard: ErrorThresholdGuard,
        settings: Settings,
    ) -> None:
        self._adapters = list(adapters)
        self._guard = guard
        self._settings = settings

    async def reconcile(self, ref: TitleRef) -> Union[CanonicalItem, Fatal]:
        results = await asyncio.gather(
            *(self._guard.guard(adapter.name, partial(adapter.fetch, ref)) for adapter in self._adapters)
        )
        for result in results:
            if isinstance(result, Fatal):
                return result

        # AlloCiné identity comes from the identifier file; the cinema filter matches on it.
        source_ratings: dict[str, Optional[dict]] = {"allocine": {"id": ref.allocine_id, "url": ref.url}}
        details: Optional[TitleDetails] = None
        for adapter, result in zip(self._adapters, results):
            source_ratings.setdefault(adapter.source, None)
            if not isinstance(result, Observed):
                continue
            merged = source_ratings[adapter.source] or {}
            merged.update(result.rating.model_dump(exclude_unset=True))
            source_ratings[adapter.source] = merged
            if adapter.source == self._settings.details_source and result.details is not None:
                details = result.details

        if details is None or not details.title:
            raise MissingIdentifierError(f"The title of {ref.url} has not been found")

        self._cross_validate_popularity(source_ratings)

        return CanonicalItem(
            content_address=resolve(ref.url),
            external_id=ref.external_id,
            item_type=ref.item_type,
            title=details.title,
            image=details.image,
            trailer_url=details.trailer_url,
            seasons_number=details.seasons_number if ref.item_type == "tvshow" else None,
            status=details.status if ref.item_type == "tvshow" else None,
            is_active=ref.is_active,
            source_ratings={
                source: SourceRating(**doc) if doc is not None else None
                for source, doc in source_ratings.items()
            },
            ratings_average=compute_ratings_average(source_ratings, self._settings.rating_divisors),
            popularity_average=compute_popularity_average(source_ratings, self._settings.popularity_fields),
        )

    def _cross_validate_popularity(self, source_ratings: dict[str, Optional[dict]]) -> None:
        if len(self._settings.popularity_fields) < 2:
            return
        primary_source, field = POPULARITY_FIELDS[self._settings.popularity_fields[0]]
        secondary_source, _ = POPULARITY_FIELDS[self._settings.popularity_fields[1]]

        primary = _value(source_ratings, primary_source, field)
        secondary = _value(source_ratings, secondary_source, field)
        _, checked = cross_validate(primary, secondary, self._settings.max_popularity_diff)
        if checked is None and secondary is not None:
            logger.debug(
                "Dropping %s popularity %s (%s has %s)", secondary_source, secondary, primary_source, primary
            )
            source_ratings[secondary_source][field] = None
