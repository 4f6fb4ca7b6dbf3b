"""
Read path: match -> derive -> threshold -> sort -> paginate over stored items.

The match stage is rendered to SQL and evaluated by the store; the remaining
stages run over the matched documents in order. Nothing here writes.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence, Union

from pydantic import BaseModel

import database
from config import Settings
from models import ITEM_TYPES, POPULARITY_FIELDS, RATING_FIELDS, STATUSES
from reconcile import compute_popularity_average, compute_ratings_average

logger = logging.getLogger(__name__)

Document = dict[str, Any]

NO_ITEMS_MESSAGE = "No items have been found."
NO_ITEMS_FOR_PAGE_MESSAGE = "No items have been found for page {page}."


class InvalidFilterError(ValueError):
    """A request asked for a filter value this service does not know."""


class QueryFilter(BaseModel):
    item_types: list[str] = ["movie"]
    is_active: Optional[list[bool]] = [True]
    external_id: Optional[int] = None
    allocine_ids: Optional[list[int]] = None
    seasons_number: list[int] = []
    statuses: list[str] = []
    title: Optional[str] = None
    ratings_filters: list[str] = ["all"]
    popularity_filters: list[str] = ["none"]
    minimum_rating: Optional[float] = None
    critics_rating_details: bool = False
    page: int = 1
    limit: int = 20


class PageResult(BaseModel):
    page: int
    limit: int
    total_results: int
    results: list[Document]


class NotFound(BaseModel):
    message: str


def parse_list(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def parse_item_types(value: Optional[str]) -> list[str]:
    item_types = parse_list(value) or ["movie"]
    unknown = [t for t in item_types if t not in ITEM_TYPES]
    if unknown:
        raise InvalidFilterError(f"Unknown item_type: {', '.join(unknown)}")
    return item_types


def parse_is_active(value: Optional[str]) -> list[bool]:
    flags = []
    for part in parse_list(value) or ["true"]:
        if part.lower() not in ("true", "false"):
            raise InvalidFilterError(f"Unknown is_active value: {part}")
        flags.append(part.lower() == "true")
    return flags


def parse_seasons_number(value: Optional[str]) -> list[int]:
    try:
        return [int(part) for part in parse_list(value)]
    except ValueError:
        raise InvalidFilterError(f"Invalid seasons_number: {value}") from None


def parse_statuses(value: Optional[str]) -> list[str]:
    by_lower = {status.lower(): status for status in STATUSES}
    statuses = []
    for part in parse_list(value):
        if part.lower() not in by_lower:
            raise InvalidFilterError(f"Unknown status: {part}")
        statuses.append(by_lower[part.lower()])
    return statuses


@dataclass(frozen=True)
class Match:
    item_types: Sequence[str] = ()
    is_active: Optional[Sequence[bool]] = None
    external_id: Optional[int] = None
    allocine_ids: Optional[Sequence[int]] = None
    seasons_number: Sequence[int] = ()
    max_seasons_number: int = 5
    statuses: Sequence[str] = ()
    title: Optional[str] = None

    def to_sql(self) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []

        def member_of(column: str, values: Sequence[Any]) -> None:
            if not values:
                clauses.append("0")
                return
            clauses.append(f"{column} IN ({', '.join('?' * len(values))})")
            params.extend(values)

        if self.external_id is not None:
            clauses.append("external_id = ?")
            params.append(self.external_id)
        if self.allocine_ids is not None:
            member_of("json_extract(document, '$.source_ratings.allocine.id')", list(self.allocine_ids))
        if self.item_types:
            member_of("item_type", list(self.item_types))
        if self.is_active is not None:
            member_of("is_active", [int(flag) for flag in self.is_active])
        if self.statuses:
            member_of("json_extract(document, '$.status')", list(self.statuses))
        if self.seasons_number:
            seasons = "json_extract(document, '$.seasons_number')"
            exact = sorted({n for n in self.seasons_number if n < self.max_seasons_number})
            parts = []
            if exact:
                parts.append(f"{seasons} IN ({', '.join('?' * len(exact))})")
                params.extend(exact)
            # The highest value stands for "this many seasons or more".
            if any(n >= self.max_seasons_number for n in self.seasons_number):
                parts.append(f"{seasons} >= ?")
                params.append(self.max_seasons_number)
            clauses.append(f"({' OR '.join(parts)})")
        if self.title:
            clauses.append("instr(casefold(json_extract(document, '$.title')), ?) > 0")
            params.append(self.title.casefold())

        return " AND ".join(clauses) or "1 = 1", params


@dataclass(frozen=True)
class AddRatingsAverage:
    divisors: dict[str, float]
    selection: Sequence[str]

    def apply(self, documents: list[Document]) -> list[Document]:
        for document in documents:
            document["ratings_average"] = compute_ratings_average(
                document.get("source_ratings") or {}, self.divisors, self.selection
            )
        return documents


@dataclass(frozen=True)
class MinimumRating:
    minimum: float

    def apply(self, documents: list[Document]) -> list[Document]:
        return [
            document
            for document in documents
            if document.get("ratings_average") is not None
            and document["ratings_average"] >= self.minimum
        ]


@dataclass(frozen=True)
class SortByRatings:
    def apply(self, documents: list[Document]) -> list[Document]:
        rated = [d for d in documents if d.get("ratings_average") is not None]
        unrated = [d for d in documents if d.get("ratings_average") is None]
        return sorted(rated, key=lambda d: d["ratings_average"], reverse=True) + unrated


@dataclass(frozen=True)
class SortByPopularity:
    selection: Sequence[str]

    def apply(self, documents: list[Document]) -> list[Document]:
        for document in documents:
            document["popularity_average"] = compute_popularity_average(
                document.get("source_ratings") or {}, self.selection
            )
        ranked = [d for d in documents if d["popularity_average"] is not None]
        unranked = [d for d in documents if d["popularity_average"] is None]
        return sorted(ranked, key=lambda d: d["popularity_average"]) + unranked


@dataclass(frozen=True)
class Paginate:
    page: int
    limit: int

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def apply(self, documents: list[Document]) -> list[Document]:
        return documents[self.skip : self.skip + self.limit]


@dataclass(frozen=True)
class Projection:
    """Fields left out of every per-source rating in a response."""

    exclude: frozenset[str] = frozenset()

    @classmethod
    def from_flags(cls, critics_rating_details: bool = False) -> "Projection":
        exclude = set()
        if not critics_rating_details:
            exclude.add("critics_rating_details")
        return cls(frozenset(exclude))

    def apply(self, document: Document) -> Document:
        if not self.exclude:
            return document
        ratings = document.get("source_ratings") or {}
        document["source_ratings"] = {
            source: (
                {k: v for k, v in rating.items() if k not in self.exclude}
                if rating is not None
                else None
            )
            for source, rating in ratings.items()
        }
        return document


@dataclass
class Pipeline:
    match: Match
    transforms: list = field(default_factory=list)
    paginate: Paginate = field(default_factory=lambda: Paginate(page=1, limit=20))

    def __iter__(self) -> Iterator:
        yield self.match
        yield from self.transforms
        yield self.paginate


def _rating_selection(names: Sequence[str], settings: Settings) -> list[str]:
    if not names or "all" in names:
        return list(settings.rating_divisors)
    unknown = [n for n in names if n not in RATING_FIELDS or n not in settings.rating_divisors]
    if unknown:
        raise InvalidFilterError(f"Unknown ratings_filters: {', '.join(unknown)}")
    return list(names)


def _popularity_selection(names: Sequence[str]) -> list[str]:
    if not names or "none" in names:
        return []
    if "all" in names:
        return list(POPULARITY_FIELDS)
    unknown = [n for n in names if n not in POPULARITY_FIELDS]
    if unknown:
        raise InvalidFilterError(f"Unknown popularity_filters: {', '.join(unknown)}")
    return list(names)


def build_pipeline(query_filter: QueryFilter, settings: Settings) -> Pipeline:
    if query_filter.page < 1 or query_filter.limit < 1:
        raise InvalidFilterError("page and limit must be positive")

    match = Match(
        item_types=query_filter.item_types,
        is_active=query_filter.is_active,
        external_id=query_filter.external_id,
        allocine_ids=query_filter.allocine_ids,
        seasons_number=query_filter.seasons_number,
        max_seasons_number=settings.max_seasons_number,
        statuses=query_filter.statuses,
        title=query_filter.title,
    )

    transforms: list = [
        AddRatingsAverage(
            divisors=settings.rating_divisors,
            selection=_rating_selection(query_filter.ratings_filters, settings),
        )
    ]
    if query_filter.minimum_rating is not None:
        transforms.append(MinimumRating(query_filter.minimum_rating))

    popularity = _popularity_selection(query_filter.popularity_filters)
    transforms.append(SortByPopularity(popularity) if popularity else SortByRatings())

    return Pipeline(
        match=match,
        transforms=transforms,
        paginate=Paginate(page=query_filter.page, limit=query_filter.limit),
    )


async def run_query(
    query_filter: QueryFilter, settings: Settings, db_path: Path = database.DB_PATH
) -> Union[PageResult, NotFound]:
    pipeline = build_pipeline(query_filter, settings)

    where, params = pipeline.match.to_sql()
    documents = await database.find_documents(where, params, db_path)
    for stage in pipeline.transforms:
        documents = stage.apply(documents)

    total = len(documents)
    if total == 0:
        return NotFound(message=NO_ITEMS_MESSAGE)
    if pipeline.paginate.skip >= total:
        return NotFound(message=NO_ITEMS_FOR_PAGE_MESSAGE.format(page=query_filter.page))

    projection = Projection.from_flags(query_filter.critics_rating_details)
    results = [projection.apply(document) for document in pipeline.paginate.apply(documents)]
    logger.debug("Query matched %d items, returning %d", total, len(results))
    return PageResult(
        page=query_filter.page,
        limit=query_filter.limit,
        total_results=total,
        results=results,
    )
