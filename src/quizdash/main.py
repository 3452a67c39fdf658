import sys
import asyncio
import signal
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Sequence

import httpx
from loguru import logger
from pydantic import BaseModel
from rich import print
from rich.panel import Panel

from quizdash.config.settings import ConfigurationError, settings
from quizdash.logging.setup import setup_logging
from quizdash.models.city import City
from quizdash.models.game import Game
from quizdash.normalization.columns import TableStructureError
from quizdash.scrapers.base_scraper import AuthenticationError, BaseScraper, ScraperError, create_http_client
from quizdash.scrapers.selector import create_scraper
from quizdash.storage.factory import create_storage
from quizdash.storage.interface import Storage, StorageError
from quizdash.utils.cancellation import CancellationToken
from quizdash.utils.progress import ProgressReporter


class RunSummary(BaseModel):
    cities: int = 0
    new_games: int = 0
    processed_games: int = 0
    sync_status: str = "skipped"
    cancelled: bool = False


def build_commit_message(new_games: int, processed_games: int, today: Optional[date] = None) -> str:
    today = today or datetime.now(timezone.utc).date()
    return (
        f"feat: Update quiz results [{today.isoformat()}]\n\n"
        f"- Add {new_games} newly scraped games\n"
        f"- Process results for {processed_games} pending games\n"
    )


async def process_new_games(
    storage: Storage,
    cities: Sequence[City],
    client: httpx.AsyncClient,
    cancel_token: CancellationToken,
) -> List[Game]:
    """Discovers and saves new games for each city, then advances its watermark."""
    rank_mappings = await storage.get_rank_mappings()
    active_city_ids = {city.id for city in cities}
    all_games: List[Game] = []

    logger.info(f"Processing {len(cities)} cities")
    with ProgressReporter(len(cities), "Discovering new games") as progress:
        for city in cities:
            if cancel_token.cancelled:
                logger.info("Shutdown signal received, stopping game discovery")
                break

            scraper = create_scraper(
                city,
                storage,
                rank_mappings,
                client=client,
                active_city_ids=active_city_ids,
                cancel_token=cancel_token,
            )
            if scraper is None:
                progress.advance(f"Skipped {city.name} (unknown strategy)")
                continue

            try:
                games = await scraper.discover_games()
                if games:
                    await storage.save_games(games)
                    # Games are oldest first; the last one is the newest
                    await storage.update_city_last_game_id(city.id, games[-1].id)
                    logger.info(f"Found {len(games)} new games in {city.name}")
                all_games.extend(games)
                progress.advance(f"{city.name}: {len(games)} new games")
            except AuthenticationError as e:
                logger.critical(f"Authentication error for {city.name}: {e}")
                progress.advance(f"Failed {city.name}")
            except (ScraperError, StorageError) as e:
                logger.error(f"Failed to process new games for {city.name}: {e}")
                progress.advance(f"Failed {city.name}")

    return all_games


async def process_pending_results(
    storage: Storage,
    client: httpx.AsyncClient,
    cancel_token: CancellationToken,
    active_city_ids: Sequence[int] = (),
    skip_games_before: Optional[date] = None,
) -> List[Game]:
    """Fetches results for every unprocessed game and returns the games marked processed."""
    pending_games = await storage.get_games_without_results()
    if not pending_games:
        logger.info("No pending games to process")
        return []

    cities = {city.id: city for city in await storage.get_cities()}
    rank_mappings = await storage.get_rank_mappings()
    scrapers: Dict[int, Optional[BaseScraper]] = {}
    processed: List[Game] = []

    with ProgressReporter(len(pending_games), "Processing pending results") as progress:
        for game in pending_games:
            if cancel_token.cancelled:
                logger.info("Shutdown signal received, stopping result processing")
                break

            city = cities.get(game.city_id)
            if city is None:
                logger.warning(f"City {game.city_id} of game {game.id} not found, skipping")
                progress.advance(f"Skipped game {game.id} (city not found)")
                continue

            try:
                if await _skip_without_fetching(storage, game, skip_games_before):
                    processed.append(game)
                    progress.advance(f"Skipped game {game.id}")
                    continue

                if city.id not in scrapers:
                    scrapers[city.id] = create_scraper(
                        city,
                        storage,
                        rank_mappings,
                        client=client,
                        active_city_ids=active_city_ids,
                        cancel_token=cancel_token,
                    )
                scraper = scrapers[city.id]
                if scraper is None:
                    progress.advance(f"Skipped game {game.id} (unknown strategy)")
                    continue

                logger.info(f"Processing game {game.id} ({game.description}) in {city.name}")
                results = await scraper.fetch_results(game)
                if results:
                    await storage.save_results(results)
                    await storage.mark_game_as_processed(game.id)
                    processed.append(game)
                    progress.advance(f"Processed game {game.id}")
                else:
                    progress.advance(f"No results for game {game.id}")
            except TableStructureError as e:
                logger.error(f"Unusable results table for game {game.id}: {e}")
                progress.advance(f"Failed game {game.id}")
            except (ScraperError, StorageError) as e:
                logger.error(f"Failed to process game {game.id}: {e}")
                progress.advance(f"Failed game {game.id}")

    return processed


async def _skip_without_fetching(storage: Storage, game: Game, skip_games_before: Optional[date]) -> bool:
    """Marks games that need no fetch as processed. Returns True if the game was handled."""
    if game.is_stream:
        reason = "stream game"
    elif skip_games_before is not None and game.date.date() < skip_games_before:
        reason = f"dated before {skip_games_before.isoformat()}"
    elif await storage.has_results_for_game(game.id):
        reason = "results already stored"
    else:
        return False

    await storage.mark_game_as_processed(game.id)
    logger.info(f"Marked game {game.id} as processed without fetching ({reason})")
    return True


async def sync_storage(storage: Storage, new_games: int, processed_games: int) -> str:
    try:
        await storage.sync_changes(build_commit_message(new_games, processed_games))
    except StorageError as e:
        logger.error(f"Failed to sync changes: {e}")
        return "failed"
    logger.info("Successfully synced all changes")
    return "synced"


async def run(cancel_token: CancellationToken, storage: Optional[Storage] = None) -> RunSummary:
    """Runs one discovery pass and one results pass, then syncs the store."""
    summary = RunSummary()

    if storage is None:
        storage = create_storage(settings)
    logger.info("Initializing storage...")
    await storage.initialize()

    client = create_http_client()
    new_games: List[Game] = []
    processed: List[Game] = []
    try:
        cities = await storage.get_cities_by_ids(settings.city_ids)
        summary.cities = len(cities)
        missing = set(settings.city_ids) - {city.id for city in cities}
        if missing:
            logger.warning(f"Configured cities not found in storage: {sorted(missing)}")

        new_games = await process_new_games(storage, cities, client, cancel_token)
        processed = await process_pending_results(
            storage,
            client,
            cancel_token,
            active_city_ids=settings.city_ids,
            skip_games_before=settings.skip_games_before,
        )
    finally:
        await client.aclose()
        summary.new_games = len(new_games)
        summary.processed_games = len(processed)
        summary.cancelled = cancel_token.cancelled
        # Best effort on shutdown too
        if new_games or processed or cancel_token.cancelled:
            summary.sync_status = await sync_storage(storage, len(new_games), len(processed))

    return summary


def _install_signal_handlers(cancel_token: CancellationToken) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel_token.cancel, f"received {sig.name}")
        except (NotImplementedError, RuntimeError):
            logger.debug(f"Cannot install handler for {sig.name} on this platform")


def print_summary(summary: RunSummary) -> None:
    status = "[yellow]cancelled[/yellow]" if summary.cancelled else "[green]completed[/green]"
    print(
        Panel(
            f"Run {status}\n"
            f"Cities: {summary.cities}\n"
            f"New games: {summary.new_games}\n"
            f"Processed games: {summary.processed_games}\n"
            f"Sync: {summary.sync_status}",
            title="QuizDash scrape",
            expand=False,
        )
    )


async def main() -> int:
    """Main entry point for the application. Returns the process exit code."""
    logger.info("Starting QuizDash scraper")
    cancel_token = CancellationToken()
    _install_signal_handlers(cancel_token)

    try:
        summary = await run(cancel_token)
    except ConfigurationError as e:
        logger.critical(f"Configuration error: {e}")
        return 1
    except StorageError as e:
        logger.critical(f"Storage error: {e}")
        return 1
    except Exception:
        logger.exception("An error occurred during main execution loop.")
        return 1

    print_summary(summary)
    logger.info("Completed successfully" if not summary.cancelled else "Stopped after shutdown request")
    return 0


def cli() -> None:
    setup_logging()
    try:
        exit_code = asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Execution interrupted by user (KeyboardInterrupt).")
        exit_code = 0
    sys.exit(exit_code)


if __name__ == "__main__":
    cli()
