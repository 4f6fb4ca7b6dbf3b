from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

ItemType = Literal["movie", "tvshow"]
Status = Literal["Soon", "Canceled", "Ongoing", "Pilot", "Ended", "Unknown"]

ITEM_TYPES: tuple[str, ...] = ("movie", "tvshow")
STATUSES: tuple[str, ...] = ("Soon", "Canceled", "Ongoing", "Pilot", "Ended", "Unknown")

# Selectable rating fields: name -> (platform, field)
RATING_FIELDS: dict[str, tuple[str, str]] = {
    "allocine_critics": ("allocine", "critics_rating"),
    "allocine_users": ("allocine", "users_rating"),
    "betaseries_users": ("betaseries", "users_rating"),
    "imdb_users": ("imdb", "users_rating"),
    "letterboxd_users": ("letterboxd", "users_rating"),
    "metacritic_critics": ("metacritic", "critics_rating"),
    "metacritic_users": ("metacritic", "users_rating"),
    "rottentomatoes_critics": ("rotten_tomatoes", "critics_rating"),
    "rottentomatoes_users": ("rotten_tomatoes", "users_rating"),
    "senscritique_users": ("senscritique", "users_rating"),
    "tmdb_users": ("tmdb", "users_rating"),
    "trakt_users": ("trakt", "users_rating"),
    "tvtime_users": ("tv_time", "users_rating"),
}

POPULARITY_FIELDS: dict[str, tuple[str, str]] = {
    "allocine_popularity": ("allocine", "popularity"),
    "imdb_popularity": ("imdb", "popularity"),
}


class CriticRating(BaseModel):
    critic_name: str
    critic_rating: Optional[float] = None


class SourceRating(BaseModel):
    id: Optional[Union[int, str]] = None
    url: Optional[str] = None
    users_rating: Optional[float] = None
    critics_rating: Optional[float] = None
    critics_number: Optional[int] = None
    critics_rating_details: Optional[list[CriticRating]] = None
    popularity: Optional[int] = None


class TitleDetails(BaseModel):
    title: Optional[str] = None
    image: Optional[str] = None
    trailer_url: Optional[str] = None
    seasons_number: Optional[int] = None
    status: Optional[Status] = None


class CanonicalItem(BaseModel):
    content_address: str
    external_id: int
    item_type: ItemType
    title: str
    image: Optional[str] = None
    trailer_url: Optional[str] = None
    seasons_number: Optional[int] = None
    status: Optional[Status] = None
    is_active: bool = True
    source_ratings: dict[str, Optional[SourceRating]] = Field(default_factory=dict)
    ratings_average: Optional[float] = None
    popularity_average: Optional[float] = None
    updated_at: Optional[str] = None  # ISO timestamp string
