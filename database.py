import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

import aiosqlite
from pydantic import ValidationError

from config import settings
from models import CanonicalItem, ItemType

logger = logging.getLogger(__name__)

DB_PATH = settings.db_path


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if value is not None else None


async def init_db(db_path: Path = DB_PATH) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS items (
                content_address TEXT PRIMARY KEY,
                external_id     INTEGER NOT NULL,
                item_type       TEXT NOT NULL,
                is_active       INTEGER NOT NULL DEFAULT 1,
                updated_at      TEXT,
                document        TEXT NOT NULL
            )
            """
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_items_type_active ON items (item_type, is_active)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_items_external_id ON items (external_id, item_type)"
        )
        await db.commit()


async def upsert_item(item: CanonicalItem, db_path: Path = DB_PATH) -> CanonicalItem:
    """Create or fully replace the item stored under its content address."""
    item = item.model_copy(update={"updated_at": datetime.now(timezone.utc).isoformat()})
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            """
            INSERT INTO items
                (content_address, external_id, item_type, is_active, updated_at, document)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(content_address) DO UPDATE SET
                external_id = excluded.external_id,
                item_type   = excluded.item_type,
                is_active   = excluded.is_active,
                updated_at  = excluded.updated_at,
                document    = excluded.document
            """,
            (
                item.content_address,
                item.external_id,
                item.item_type,
                int(item.is_active),
                item.updated_at,
                item.model_dump_json(),
            ),
        )
        await db.commit()
    return item


async def get_item(address: str, db_path: Path = DB_PATH) -> Optional[CanonicalItem]:
    async with aiosqlite.connect(db_path) as db:
        async with db.execute(
            "SELECT document FROM items WHERE content_address = ?", (address,)
        ) as cursor:
            row = await cursor.fetchone()
    return CanonicalItem.model_validate_json(row[0]) if row else None


async def get_item_by_external_id(
    external_id: int, item_type: ItemType, db_path: Path = DB_PATH
) -> Optional[CanonicalItem]:
    async with aiosqlite.connect(db_path) as db:
        async with db.execute(
            "SELECT document FROM items WHERE external_id = ? AND item_type = ?",
            (external_id, item_type),
        ) as cursor:
            row = await cursor.fetchone()
    return CanonicalItem.model_validate_json(row[0]) if row else None


async def list_addresses(item_type: ItemType, db_path: Path = DB_PATH) -> list[str]:
    async with aiosqlite.connect(db_path) as db:
        async with db.execute(
            "SELECT content_address FROM items WHERE item_type = ? ORDER BY content_address",
            (item_type,),
        ) as cursor:
            rows = await cursor.fetchall()
    return [row[0] for row in rows]


async def deactivate_missing(
    item_type: ItemType, active_addresses: Iterable[str], db_path: Path = DB_PATH
) -> int:
    """
    Mark every active stored item of this type that is no longer listed as inactive.

    Popularity is only meaningful for titles currently tracked, so the
    average and every per-source rank are cleared as well. Returns the
    number of items touched.
    """
    active = set(active_addresses)
    async with aiosqlite.connect(db_path) as db:
        async with db.execute(
            "SELECT content_address, document FROM items WHERE item_type = ? AND is_active = 1",
            (item_type,),
        ) as cursor:
            rows = await cursor.fetchall()

        updates = []
        for address, raw in rows:
            if address in active:
                continue
            document = json.loads(raw)
            document["is_active"] = False
            document["popularity_average"] = None
            for rating in document.get("source_ratings", {}).values():
                if rating is not None:
                    rating["popularity"] = None
            updates.append((json.dumps(document), address))

        await db.executemany(
            "UPDATE items SET is_active = 0, document = ? WHERE content_address = ?",
            updates,
        )
        await db.commit()

    logger.info("%d %s items have been marked inactive", len(updates), item_type)
    return len(updates)


async def skip_fast_path(
    address: str, expected_keys: Sequence[str], db_path: Path = DB_PATH
) -> Optional[CanonicalItem]:
    """Return the stored item, if any, logging when its keys drifted from the expected set."""
    async with aiosqlite.connect(db_path) as db:
        async with db.execute(
            "SELECT document FROM items WHERE content_address = ?", (address,)
        ) as cursor:
            row = await cursor.fetchone()
    if row is None:
        return None

    document = json.loads(row[0])
    missing = sorted(set(expected_keys) - document.keys())
    unexpected = sorted(document.keys() - set(expected_keys))
    if missing or unexpected:
        logger.warning(
            "Stored document %s does not match the expected keys (missing: %s, unexpected: %s)",
            address,
            ", ".join(missing) or "none",
            ", ".join(unexpected) or "none",
        )
    try:
        return CanonicalItem.model_validate(document)
    except ValidationError as exc:
        logger.warning("Stored document %s is unreadable, it will be refetched: %s", address, exc)
        return None


async def find_documents(
    where: str, params: Sequence[Any], db_path: Path = DB_PATH
) -> list[dict[str, Any]]:
    """Return the raw documents matching a WHERE clause built over the items table."""
    async with aiosqlite.connect(db_path) as db:
        await db.create_function("casefold", 1, _casefold, deterministic=True)
        async with db.execute(
            f"SELECT document FROM items WHERE {where} ORDER BY content_address", params
        ) as cursor:
            rows = await cursor.fetchall()
    return [json.loads(row[0]) for row in rows]


async def get_last_updated(
    item_type: Optional[ItemType] = None, db_path: Path = DB_PATH
) -> Optional[str]:
    query = "SELECT MAX(updated_at) FROM items"
    params: tuple = ()
    if item_type is not None:
        query += " WHERE item_type = ?"
        params = (item_type,)
    async with aiosqlite.connect(db_path) as db:
        async with db.execute(query, params) as cursor:
            row = await cursor.fetchone()
    return row[0] if row else None
