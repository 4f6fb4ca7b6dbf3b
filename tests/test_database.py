import json
import logging

import aiosqlite

import database
from address import resolve
from models import CanonicalItem, SourceRating


def make_item(name: str, item_type: str = "movie", **overrides) -> CanonicalItem:
    values = dict(
        content_address=resolve(f"https://www.allocine.fr/{name}.html"),
        external_id=abs(hash(name)) % 100000,
        item_type=item_type,
        title=name.title(),
        source_ratings={
            "allocine": SourceRating(id=1, users_rating=4.0, popularity=3),
            "imdb": SourceRating(id="tt1", users_rating=8.0, popularity=5),
            "betaseries": None,
        },
        ratings_average=4.0,
        popularity_average=4.0,
    )
    values.update(overrides)
    return CanonicalItem(**values)


async def test_init_db_creates_table(tmp_db):
    await database.init_db(tmp_db)

    async with aiosqlite.connect(tmp_db) as db:
        async with db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='items'"
        ) as cursor:
            row = await cursor.fetchone()
    assert row is not None


async def test_upsert_and_get_item(tmp_db):
    await database.init_db(tmp_db)
    item = make_item("oppenheimer", external_id=872585)

    stored = await database.upsert_item(item, tmp_db)

    fetched = await database.get_item(item.content_address, tmp_db)
    assert fetched == stored
    assert fetched.updated_at is not None
    assert fetched.source_ratings["imdb"].users_rating == 8.0
    assert fetched.source_ratings["betaseries"] is None


async def test_upsert_is_idempotent(tmp_db):
    await database.init_db(tmp_db)
    item = make_item("dune")

    first = await database.upsert_item(item, tmp_db)
    second = await database.upsert_item(item, tmp_db)

    assert first.model_dump(exclude={"updated_at"}) == second.model_dump(exclude={"updated_at"})
    assert await database.list_addresses("movie", tmp_db) == [item.content_address]


async def test_upsert_replaces_every_field(tmp_db):
    await database.init_db(tmp_db)
    item = make_item("dune")
    await database.upsert_item(item, tmp_db)

    updated = item.model_copy(update={"title": "Dune: Part One", "source_ratings": {}, "ratings_average": None})
    await database.upsert_item(updated, tmp_db)

    fetched = await database.get_item(item.content_address, tmp_db)
    assert fetched.title == "Dune: Part One"
    assert fetched.source_ratings == {}
    assert fetched.ratings_average is None


async def test_get_item_by_external_id(tmp_db):
    await database.init_db(tmp_db)
    await database.upsert_item(make_item("dune-movie", external_id=438631), tmp_db)
    await database.upsert_item(make_item("dune-show", item_type="tvshow", external_id=438631), tmp_db)

    movie = await database.get_item_by_external_id(438631, "movie", tmp_db)
    show = await database.get_item_by_external_id(438631, "tvshow", tmp_db)

    assert movie.title == "Dune-Movie"
    assert show.title == "Dune-Show"
    assert await database.get_item_by_external_id(1, "movie", tmp_db) is None


async def test_deactivate_missing(tmp_db):
    await database.init_db(tmp_db)
    a, b, c = make_item("a"), make_item("b"), make_item("c")
    show = make_item("d", item_type="tvshow")
    for item in (a, b, c, show):
        await database.upsert_item(item, tmp_db)

    count = await database.deactivate_missing("movie", {a.content_address, c.content_address}, tmp_db)

    assert count == 1
    stored_b = await database.get_item(b.content_address, tmp_db)
    assert stored_b.is_active is False
    assert stored_b.popularity_average is None
    assert stored_b.source_ratings["allocine"].popularity is None
    assert stored_b.source_ratings["imdb"].popularity is None
    assert stored_b.source_ratings["imdb"].users_rating == 8.0
    assert stored_b.source_ratings["betaseries"] is None

    stored_a = await database.get_item(a.content_address, tmp_db)
    assert stored_a.is_active is True
    assert stored_a.popularity_average == 4.0
    # Other item types are untouched
    assert (await database.get_item(show.content_address, tmp_db)).is_active is True


async def test_deactivate_missing_updates_active_column(tmp_db):
    await database.init_db(tmp_db)
    item = make_item("gone")
    await database.upsert_item(item, tmp_db)

    await database.deactivate_missing("movie", set(), tmp_db)

    documents = await database.find_documents("is_active = ?", [0], tmp_db)
    assert [d["content_address"] for d in documents] == [item.content_address]


async def test_deactivate_missing_counts_each_item_once(tmp_db):
    await database.init_db(tmp_db)
    await database.upsert_item(make_item("gone"), tmp_db)

    assert await database.deactivate_missing("movie", set(), tmp_db) == 1
    assert await database.deactivate_missing("movie", set(), tmp_db) == 0


async def test_skip_fast_path_returns_none_when_absent(tmp_db):
    await database.init_db(tmp_db)
    assert await database.skip_fast_path("missing", ["title"], tmp_db) is None


async def test_skip_fast_path_logs_schema_drift(tmp_db, caplog):
    await database.init_db(tmp_db)
    item = make_item("drifted")
    await database.upsert_item(item, tmp_db)
    expected = list(CanonicalItem.model_fields) + ["episodes_details"]

    with caplog.at_level(logging.WARNING, logger="database"):
        found = await database.skip_fast_path(item.content_address, expected, tmp_db)

    assert found is not None
    assert found.title == "Drifted"
    assert "episodes_details" in caplog.text


async def test_skip_fast_path_is_quiet_when_keys_match(tmp_db, caplog):
    await database.init_db(tmp_db)
    item = make_item("complete")
    await database.upsert_item(item, tmp_db)

    with caplog.at_level(logging.WARNING, logger="database"):
        await database.skip_fast_path(item.content_address, list(CanonicalItem.model_fields), tmp_db)

    assert caplog.text == ""


async def test_skip_fast_path_refetches_unreadable_document(tmp_db, caplog):
    await database.init_db(tmp_db)
    async with aiosqlite.connect(tmp_db) as db:
        await db.execute(
            "INSERT INTO items (content_address, external_id, item_type, document) VALUES (?, ?, ?, ?)",
            ("abc", 1, "movie", json.dumps({"content_address": "abc", "external_id": 1, "item_type": "movie", "name": "old key"})),
        )
        await db.commit()

    with caplog.at_level(logging.WARNING, logger="database"):
        found = await database.skip_fast_path("abc", ["content_address", "title"], tmp_db)

    assert found is None
    assert "missing: title" in caplog.text
    assert "refetched" in caplog.text


async def test_find_documents_title_is_case_insensitive(tmp_db):
    await database.init_db(tmp_db)
    await database.upsert_item(make_item("amélie", title="Le Fabuleux Destin d'Amélie Poulain"), tmp_db)

    documents = await database.find_documents(
        "instr(casefold(json_extract(document, '$.title')), ?) > 0", ["amélie"], tmp_db
    )
    assert len(documents) == 1


async def test_get_last_updated_returns_none_when_empty(tmp_db):
    await database.init_db(tmp_db)
    assert await database.get_last_updated(db_path=tmp_db) is None


async def test_get_last_updated_returns_latest(tmp_db):
    await database.init_db(tmp_db)
    await database.upsert_item(make_item("first"), tmp_db)
    last = await database.upsert_item(make_item("second"), tmp_db)

    assert await database.get_last_updated(db_path=tmp_db) == last.updated_at
    assert await database.get_last_updated("tvshow", tmp_db) is None
