"""Command line entry points for the ingestion batch."""

import asyncio
import logging
import sys

import click
import httpx

import database
from address import resolve, reverse
from config import settings
from guard import ErrorThresholdGuard
from ids import canonical_url, load_identifier_file
from preflight import UpstreamUnavailableError
from reconcile import Reconciler
from scheduler import BatchAbortedError, build_adapters, run_refresh

logger = logging.getLogger(__name__)

ITEM_TYPE = click.Choice(["movie", "tvshow"])


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Refresh and inspect the ratings database."""
    logging.basicConfig(level=logging.DEBUG if verbose else settings.log_level)


async def _refresh(item_type, start_index, skip_existing, include_inactive, sweep, preflight):
    await database.init_db(settings.db_path)
    rows = load_identifier_file(settings.ids_path_for(item_type), include_inactive=include_inactive)
    async with httpx.AsyncClient(
        headers={"User-Agent": "ratings-aggregator/1.0"},
        timeout=30.0,
    ) as client:
        reconciler = Reconciler(build_adapters(client, settings), ErrorThresholdGuard(settings), settings)
        return await run_refresh(
            item_type,
            rows,
            reconciler,
            settings,
            settings.db_path,
            start_index=start_index,
            skip_existing=skip_existing,
            sweep=sweep,
            client=client if preflight else None,
        )


@cli.command()
@click.option("--item-type", type=ITEM_TYPE, required=True)
@click.option("--start-index", type=click.IntRange(min=0), default=0, help="Resume from this row")
@click.option("--skip-existing", is_flag=True, help="Do not refetch titles already stored")
@click.option("--include-inactive", is_flag=True, help="Also refresh rows not flagged active")
@click.option("--no-sweep", is_flag=True, help="Do not deactivate titles missing from the file")
@click.option("--no-preflight", is_flag=True, help="Skip third-party status checks")
def refresh(item_type, start_index, skip_existing, include_inactive, no_sweep, no_preflight) -> None:
    """Reconcile every title of ITEM_TYPE from its identifier file."""
    try:
        report = asyncio.run(
            _refresh(item_type, start_index, skip_existing, include_inactive, not no_sweep, not no_preflight)
        )
    except UpstreamUnavailableError as exc:
        click.echo(f"Aborting before the batch: {exc}", err=True)
        sys.exit(1)
    except BatchAbortedError as exc:
        click.echo(f"{exc}. Resume with --start-index {exc.index}", err=True)
        sys.exit(1)

    if report is None:
        click.echo("A refresh is already running.")
        return
    click.echo(
        f"{report.upserted} upserted, {report.skipped} skipped, "
        f"{report.deactivated} deactivated out of {report.total}."
    )


async def _orphans(item_type: str) -> list[str]:
    rows = load_identifier_file(settings.ids_path_for(item_type), include_inactive=True)
    known = {resolve(canonical_url(row, settings)) for row in rows}
    stored = await database.list_addresses(item_type, settings.db_path)
    return [address for address in stored if address not in known]


@cli.command("check-ids")
@click.option("--item-type", type=ITEM_TYPE, required=True)
def check_ids(item_type) -> None:
    """List stored titles that no longer appear in the identifier file."""
    for address in asyncio.run(_orphans(item_type)):
        click.echo(f"{address}: {reverse(address)}")


if __name__ == "__main__":
    cli()
