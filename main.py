import logging
from contextlib import asynccontextmanager
from typing import Optional, Union

import httpx
from fastapi import FastAPI, HTTPException, Query

import database
import scheduler
from config import settings
from query import (
    NO_ITEMS_MESSAGE,
    InvalidFilterError,
    NotFound,
    PageResult,
    Projection,
    QueryFilter,
    parse_is_active,
    parse_item_types,
    parse_list,
    parse_seasons_number,
    parse_statuses,
    run_query,
)
from showtimes import fetch_cinema_movie_ids

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await database.init_db(settings.db_path)
    if settings.refresh_enabled:
        scheduler.start_scheduler(settings)
    yield
    scheduler.stop_scheduler()


app = FastAPI(lifespan=lifespan)


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "is_refreshing": scheduler.get_refresh_state(),
        "last_updated": await database.get_last_updated(db_path=settings.db_path),
    }


async def _cinema_movie_ids(cinema_id: str) -> list[int]:
    async with httpx.AsyncClient(timeout=30.0) as client:
        try:
            return await fetch_cinema_movie_ids(client, cinema_id, settings)
        except httpx.HTTPError as exc:
            logger.warning("Showtimes lookup failed for %s: %s", cinema_id, exc)
            raise HTTPException(status_code=502, detail=f"Showtimes unavailable for {cinema_id}") from exc


async def _run(query_filter: QueryFilter) -> Union[PageResult, NotFound]:
    try:
        return await run_query(query_filter, settings, settings.db_path)
    except InvalidFilterError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/")
async def list_items(
    item_type: Optional[str] = None,
    is_active: Optional[str] = None,
    cinema_id: Optional[str] = None,
    seasons_number: Optional[str] = None,
    status: Optional[str] = None,
    title: Optional[str] = None,
    ratings_filters: str = "all",
    popularity_filters: str = "none",
    minimum_ratings: Optional[float] = None,
    critics_rating_details: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_limit, ge=1, le=settings.max_limit),
    allData: bool = False,
):
    try:
        query_filter = QueryFilter(
            item_types=parse_item_types(item_type),
            is_active=parse_is_active(is_active),
            seasons_number=parse_seasons_number(seasons_number),
            statuses=parse_statuses(status),
            title=title or None,
            ratings_filters=parse_list(ratings_filters),
            popularity_filters=parse_list(popularity_filters),
            minimum_rating=minimum_ratings,
            critics_rating_details=critics_rating_details,
            page=page,
            limit=limit,
        )
    except InvalidFilterError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if cinema_id:
        query_filter.allocine_ids = await _cinema_movie_ids(cinema_id)

    result = await _run(query_filter)
    if isinstance(result, NotFound) or allData:
        return result
    return result.results


async def _get_by_id(
    external_id: int,
    item_type: str,
    ratings_filters: Optional[str],
    critics_rating_details: bool,
):
    if ratings_filters:
        result = await _run(
            QueryFilter(
                item_types=[item_type],
                is_active=None,
                external_id=external_id,
                ratings_filters=parse_list(ratings_filters),
                critics_rating_details=critics_rating_details,
                limit=1,
            )
        )
        return result if isinstance(result, NotFound) else result.results[0]

    item = await database.get_item_by_external_id(external_id, item_type, settings.db_path)
    if item is None:
        return NotFound(message=NO_ITEMS_MESSAGE)
    return Projection.from_flags(critics_rating_details).apply(item.model_dump(mode="json"))


@app.get("/movie/{external_id}")
async def get_movie(
    external_id: int,
    ratings_filters: Optional[str] = None,
    critics_rating_details: bool = False,
):
    return await _get_by_id(external_id, "movie", ratings_filters, critics_rating_details)


@app.get("/tv/{external_id}")
async def get_tvshow(
    external_id: int,
    ratings_filters: Optional[str] = None,
    critics_rating_details: bool = False,
):
    return await _get_by_id(external_id, "tvshow", ratings_filters, critics_rating_details)
