import asyncio
import logging
from pathlib import Path
from typing import Optional, Sequence

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import BaseModel

import database
from adapters import Fatal, SourceAdapter
from address import resolve
from config import Settings
from guard import ErrorThresholdGuard
from ids import IdentifierRow, MissingIdentifierError, canonical_url, load_identifier_file, title_ref
from models import ItemType
from popularity import RankingFileAdapter
from preflight import UpstreamUnavailableError, check_services
from reconcile import Reconciler
from tmdb import TMDBAdapter

logger = logging.getLogger(__name__)

_refresh_lock = asyncio.Lock()
_refresh_state: dict[str, bool] = {"is_refreshing": False}
_scheduler: Optional[AsyncIOScheduler] = None


class BatchAbortedError(Exception):
    """A source failed past its threshold; nothing from `index` onwards was written."""

    def __init__(self, index: int, fatal: Fatal) -> None:
        super().__init__(
            f"{fatal.adapter} failed {fatal.failures} times in a row, aborting at index {index}"
        )
        self.index = index
        self.fatal = fatal


class RefreshReport(BaseModel):
    item_type: ItemType
    total: int
    processed: int = 0
    upserted: int = 0
    skipped: int = 0
    deactivated: int = 0


def build_adapters(client: httpx.AsyncClient, settings: Settings) -> list[SourceAdapter]:
    """Adapters shipped with this service; HTML-scraping ones are plugged in by callers."""
    adapters: list[SourceAdapter] = [
        TMDBAdapter(client, settings.tmdb_api_key, settings.base_url_tmdb),
    ]
    key_for = {
        "allocine": lambda ref: ref.url,
        "imdb": lambda ref: ref.imdb_id,
    }
    for source, files in settings.popularity_files.items():
        if source not in key_for:
            logger.warning("No popularity key known for %s, skipping it", source)
            continue
        file_urls = {item_type: f"{settings.base_url_assets}/{name}" for item_type, name in files.items()}
        adapters.append(RankingFileAdapter(source, client, file_urls, key_for[source]))
    return adapters


async def run_refresh(
    item_type: ItemType,
    rows: Sequence[IdentifierRow],
    reconciler: Reconciler,
    settings: Settings,
    db_path: Path = database.DB_PATH,
    start_index: int = 0,
    skip_existing: bool = False,
    sweep: bool = True,
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[RefreshReport]:
    """
    Reconcile and store every title listed in `rows`, starting at `start_index`.

    Returns None if another refresh is already running. Raises
    UpstreamUnavailableError before writing anything when a pre-flight check
    fails (only when a client is given), and BatchAbortedError when a source
    exceeds its error threshold; rerun with the reported index to resume.
    """
    if _refresh_state["is_refreshing"]:
        logger.info("Refresh already in progress, skipping.")
        return None

    async with _refresh_lock:
        if _refresh_state["is_refreshing"]:
            return None
        _refresh_state["is_refreshing"] = True

    try:
        report = RefreshReport(item_type=item_type, total=len(rows))

        if client is not None and settings.preflight_enabled:
            await check_services(client, settings.services, settings)

        if sweep:
            active = {resolve(canonical_url(row, settings)) for row in rows}
            report.deactivated = await database.deactivate_missing(item_type, active, db_path)

        logger.info("Starting %s refresh at index %d of %d", item_type, start_index, len(rows))
        for index in range(start_index, len(rows)):
            row = rows[index]
            logger.info(
                "%d / %d (%.1f%%) %s", index + 1, len(rows), (index + 1) * 100 / len(rows), row.url
            )
            report.processed += 1

            if skip_existing:
                address = resolve(canonical_url(row, settings))
                if await database.skip_fast_path(address, settings.keys_to_check, db_path) is not None:
                    report.skipped += 1
                    continue

            try:
                ref = title_ref(row, item_type, settings)
                result = await reconciler.reconcile(ref)
            except MissingIdentifierError as exc:
                logger.error("Skipping %s: %s", row.url, exc)
                report.skipped += 1
                continue

            if isinstance(result, Fatal):
                raise BatchAbortedError(index, result)

            await database.upsert_item(result, db_path)
            report.upserted += 1

        logger.info(
            "Refresh complete: %d upserted, %d skipped, %d deactivated.",
            report.upserted,
            report.skipped,
            report.deactivated,
        )
        return report
    finally:
        _refresh_state["is_refreshing"] = False


async def refresh_from_files(settings: Settings, db_path: Path = database.DB_PATH) -> None:
    """Scheduled job: refresh movies then TV shows from their identifier files."""
    async with httpx.AsyncClient(
        headers={"User-Agent": "ratings-aggregator/1.0"},
        timeout=30.0,
    ) as client:
        for item_type in ("movie", "tvshow"):
            rows = load_identifier_file(settings.ids_path_for(item_type))
            reconciler = Reconciler(build_adapters(client, settings), ErrorThresholdGuard(settings), settings)
            try:
                await run_refresh(item_type, rows, reconciler, settings, db_path, client=client)
            except (BatchAbortedError, UpstreamUnavailableError) as exc:
                logger.critical("Scheduled %s refresh aborted: %s", item_type, exc)
                return


def get_refresh_state() -> bool:
    return _refresh_state["is_refreshing"]


def start_scheduler(settings: Settings) -> None:
    """Create and start the APScheduler with the refresh job."""
    global _scheduler

    minute, hour, day, month, day_of_week = settings.refresh_schedule.split()

    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        refresh_from_files,
        "cron",
        args=[settings],
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=day_of_week,
    )
    _scheduler.start()
    logger.info("Scheduler started. Cron: %s", settings.refresh_schedule)


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown()
        _scheduler = None
