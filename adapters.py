"""Source adapter contract and the values that flow through it."""

from typing import Optional, Protocol, Union

from pydantic import BaseModel

from models import ItemType, SourceRating, TitleDetails


class TitleRef(BaseModel):
    """Everything the adapters may need to locate one title on their platform."""

    item_type: ItemType
    url: str
    allocine_id: int
    external_id: int
    imdb_id: Optional[str] = None
    betaseries_id: Optional[str] = None
    metacritic_id: Optional[str] = None
    is_active: bool = True


class Observed(BaseModel):
    source: str
    rating: SourceRating
    details: Optional[TitleDetails] = None


class NotApplicable(BaseModel):
    source: str


class Failed(BaseModel):
    model_config = {"arbitrary_types_allowed": True}

    source: str
    cause: BaseException


class Fatal(BaseModel):
    """Returned by the guard once an adapter has failed too many times in a row."""

    model_config = {"arbitrary_types_allowed": True}

    adapter: str
    failures: int
    cause: Optional[BaseException] = None


AdapterResult = Union[Observed, NotApplicable, Failed]


class TransientSourceError(Exception):
    """A failure worth retrying immediately (timeouts, throttling, 5xx)."""


class SourceAdapter(Protocol):
    name: str
    source: str

    async def fetch(self, ref: TitleRef) -> AdapterResult: ...
