import csv
import logging
import re
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from adapters import TitleRef
from config import Settings
from models import ItemType

logger = logging.getLogger(__name__)

_ALLOCINE_ID_RE = re.compile(r"=(\d+)\.")


class MissingIdentifierError(Exception):
    """A title cannot be reconciled because a mandatory id or its title is missing."""


class IdentifierRow(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(alias="URL")
    themoviedb_id: str = Field(default="", alias="THEMOVIEDB_ID")
    imdb_id: str = Field(default="", alias="IMDB_ID")
    betaseries_id: str = Field(default="", alias="BETASERIES_ID")
    metacritic_id: str = Field(default="", alias="METACRITIC_ID")
    is_active: str = Field(default="", alias="IS_ACTIVE_1")

    @property
    def active(self) -> bool:
        return self.is_active.strip().upper() == "TRUE"


def load_identifier_file(path: Path, include_inactive: bool = False) -> list[IdentifierRow]:
    """Read an identifier file. Only active rows are returned unless asked otherwise."""
    with path.open(newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f, skipinitialspace=True)
        rows = [IdentifierRow(**{k.strip(): (v or "").strip() for k, v in record.items() if k}) for record in reader]

    if not include_inactive:
        rows = [row for row in rows if row.active]
    logger.info("Loaded %d identifiers from %s", len(rows), path)
    return rows


def canonical_url(row: IdentifierRow, settings: Settings) -> str:
    return f"{settings.base_url_allocine}{row.url}"


def _optional_id(value: str) -> Optional[str]:
    value = value.strip()
    return None if value in ("", "null") else value


def title_ref(row: IdentifierRow, item_type: ItemType, settings: Settings) -> TitleRef:
    url = canonical_url(row, settings)

    match = _ALLOCINE_ID_RE.search(row.url)
    if match is None:
        raise MissingIdentifierError(f"No AlloCiné id in {url}")

    try:
        external_id = int(row.themoviedb_id)
    except ValueError:
        raise MissingIdentifierError(f"The Movie Database id has not been found for {url}") from None

    betaseries_id = _optional_id(row.betaseries_id)
    # Some movies are filed as series on BetaSeries: "serie/<slug>"
    if betaseries_id and betaseries_id.startswith("serie/"):
        betaseries_id = betaseries_id.split("/", 1)[1]

    return TitleRef(
        item_type=item_type,
        url=url,
        allocine_id=int(match.group(1)),
        external_id=external_id,
        imdb_id=_optional_id(row.imdb_id),
        betaseries_id=betaseries_id,
        metacritic_id=_optional_id(row.metacritic_id),
        is_active=row.active,
    )
