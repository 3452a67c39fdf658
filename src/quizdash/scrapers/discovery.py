"""Incremental game discovery.

Listing pages are requested newest first. Discovery for a city stops at the
first game id that is either already collected in this run (the source
wrapped around past its last page) or equal to the city's watermark (every
older game is already persisted). Games are returned oldest first so the
watermark can be advanced in chronological order.
"""

from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from quizdash.models.city import City
from quizdash.models.game import Game
from quizdash.normalization.reconciler import EntityReconciler
from quizdash.scrapers.base_scraper import ScraperError
from quizdash.utils.cancellation import CancellationToken


class ListingPage(BaseModel):
    rows: List[Any] = []
    count: Optional[int] = None  # Row count reported by the source, if any


class ListingRow(BaseModel):
    """A validated game listing row, independent of the source format."""

    game_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    template_name: Optional[str] = None
    template_type: Optional[int] = None
    number: str = ""
    package_number: Optional[str] = None
    date: datetime
    price: float = Field(0, ge=0)
    location: str
    address: Optional[str] = None
    is_stream: bool = False


PageFetcher = Callable[[int], Awaitable[ListingPage]]
RowIdentifier = Callable[[Dict[str, Any]], Optional[str]]
RowParser = Callable[[Dict[str, Any]], ListingRow]


class GameDiscoveryEngine:
    """Paginates one city's game listing until a stop condition is met."""

    def __init__(
        self,
        city: City,
        reconciler: EntityReconciler,
        fetch_page: PageFetcher,
        row_id: RowIdentifier,
        parse_row: RowParser,
        cancel_token: Optional[CancellationToken] = None,
    ):
        self.city = city
        self.reconciler = reconciler
        self.fetch_page = fetch_page
        self.row_id = row_id
        self.parse_row = parse_row
        self.cancel_token = cancel_token or CancellationToken()

    async def discover(self) -> List[Game]:
        games: List[Game] = []
        seen: Set[str] = set()
        watermark = self.city.last_game_id
        page = 1

        logger.info(f"Discovering games for {self.city.name} (ID: {self.city.id})")

        while True:
            if self.cancel_token.cancelled:
                logger.info(f"Shutdown requested, stopping discovery for {self.city.name}")
                break

            logger.info(f"Processing page {page}")
            try:
                listing = await self.fetch_page(page)
            except ScraperError as e:
                logger.error(
                    f"Failed to fetch games for city {self.city.name}, page {page}: {e}. "
                    f"Keeping {len(games)} games found so far."
                )
                break

            if not listing.rows:
                logger.info(f"No more games after page {page - 1}")
                break

            stop = False
            for raw in listing.rows:
                if not isinstance(raw, dict):
                    logger.warning(f"Skipping malformed listing row in {self.city.name}: {raw!r}")
                    continue

                game_id = self.row_id(raw)
                if not game_id:
                    logger.warning(f"Skipping listing row without an id in {self.city.name}: {raw!r}")
                    continue

                if game_id in seen:
                    logger.info(f"Reached the end at page {page - 1}")
                    stop = True
                    break

                if watermark and game_id == watermark:
                    logger.info(f"Reached previously saved game {watermark}")
                    stop = True
                    break

                seen.add(game_id)
                game = await self._build_game(game_id, raw)
                if game is not None:
                    games.append(game)

            if stop:
                break
            if listing.count == 0:
                logger.info(f"Source reports no more games after page {page}")
                break
            page += 1

        games.reverse()
        logger.info(f"Discovered {len(games)} new games for {self.city.name}")
        return games

    async def _build_game(self, game_id: str, raw: Dict[str, Any]) -> Optional[Game]:
        try:
            row = self.parse_row(raw)
        except ValidationError as e:
            logger.warning(f"Invalid game data for {self.city.id} / {game_id}: {e.errors()}")
            return None

        series = await self.reconciler.resolve_series(
            row.title, template_name=row.template_name, template_type=row.template_type
        )

        try:
            return Game(
                id=row.game_id,
                city_id=self.city.id,
                series_id=series.id,
                number=row.number,
                package_number=row.package_number,
                date=row.date,
                price=row.price,
                location=row.location,
                address=row.address,
                is_stream=row.is_stream,
            )
        except ValidationError as e:
            logger.warning(f"Invalid game data for {self.city.id} / {game_id}: {e.errors()}")
            return None
