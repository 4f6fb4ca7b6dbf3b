import pytest
from pydantic import ValidationError

from models import RATING_FIELDS, CanonicalItem, CriticRating, SourceRating


def test_canonical_item_defaults():
    item = CanonicalItem(content_address="abc", external_id=872585, item_type="movie", title="Oppenheimer")
    assert item.is_active is True
    assert item.source_ratings == {}
    assert item.ratings_average is None
    assert item.popularity_average is None
    assert item.status is None


def test_source_rating_fields_are_unknown_by_default():
    rating = SourceRating(users_rating=4.2)
    assert rating.critics_rating is None
    assert rating.popularity is None
    assert rating.model_dump(exclude_unset=True) == {"users_rating": 4.2}


def test_source_rating_with_critics_details():
    rating = SourceRating(
        critics_rating=3.8,
        critics_number=2,
        critics_rating_details=[
            CriticRating(critic_name="Le Monde", critic_rating=4),
            CriticRating(critic_name="Télérama", critic_rating=3.5),
        ],
    )
    assert rating.critics_rating_details[1].critic_name == "Télérama"


def test_rejects_unknown_item_type():
    with pytest.raises(ValidationError):
        CanonicalItem(content_address="abc", external_id=1, item_type="podcast", title="X")


def test_rejects_unknown_status():
    with pytest.raises(ValidationError):
        CanonicalItem(content_address="abc", external_id=1, item_type="tvshow", title="X", status="Renewed")


def test_every_rating_field_has_a_default_divisor():
    from config import Settings

    assert set(Settings(_env_file=None).rating_divisors) == set(RATING_FIELDS)
