from pathlib import Path

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServiceCheck(BaseModel):
    name: str
    url: str


class Settings(BaseSettings):
    db_path: Path = Path("data/ratings.db")
    films_ids_path: Path = Path("data/films_ids.txt")
    series_ids_path: Path = Path("data/series_ids.txt")
    log_level: str = "INFO"

    tmdb_api_key: str = ""
    base_url_tmdb: str = "https://api.themoviedb.org/3"
    base_url_allocine: str = "https://www.allocine.fr"
    base_url_theaters: str = "https://www.allocine.fr/_/showtimes/theater-"
    base_url_assets: str = "https://whatson-assets.vercel.app"
    # item_type -> file name under base_url_assets, per popularity source
    popularity_files: dict[str, dict[str, str]] = {
        "allocine": {
            "movie": "popularity_ids_films.txt",
            "tvshow": "popularity_ids_series.txt",
        },
    }

    refresh_enabled: bool = False
    refresh_schedule: str = "0 3 * * *"
    request_delay: float = 1.0

    retries: int = 3
    retry_delay: float = 3.0
    max_error_counter: dict[str, int] = {"default": 5, "rotten_tomatoes": 10}

    details_source: str = "tmdb"
    max_popularity_diff: int = 50
    popularity_fields: list[str] = ["allocine_popularity", "imdb_popularity"]
    rating_divisors: dict[str, float] = {
        "allocine_critics": 1,
        "allocine_users": 1,
        "betaseries_users": 1,
        "imdb_users": 2,
        "letterboxd_users": 1,
        "metacritic_critics": 20,
        "metacritic_users": 2,
        "rottentomatoes_critics": 20,
        "rottentomatoes_users": 20,
        "senscritique_users": 2,
        "tmdb_users": 2,
        "trakt_users": 20,
        "tvtime_users": 2,
    }

    default_limit: int = 20
    max_limit: int = 200
    max_seasons_number: int = 5

    keys_to_check: list[str] = [
        "content_address",
        "external_id",
        "item_type",
        "title",
        "image",
        "trailer_url",
        "seasons_number",
        "status",
        "is_active",
        "source_ratings",
        "ratings_average",
        "popularity_average",
        "updated_at",
    ]

    preflight_enabled: bool = True
    services: list[ServiceCheck] = [
        ServiceCheck(name="AlloCiné", url="https://www.allocine.fr"),
        ServiceCheck(name="The Movie Database", url="https://www.themoviedb.org"),
    ]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        frozen=True,
    )

    def threshold_for(self, adapter_name: str) -> int:
        return self.max_error_counter.get(adapter_name, self.max_error_counter["default"])

    def ids_path_for(self, item_type: str) -> Path:
        return self.films_ids_path if item_type == "movie" else self.series_ids_path


settings = Settings()
