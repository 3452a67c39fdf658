# src/quizdash/scrapers/api_scraper.py

from typing import Any, Dict, List, Optional

from loguru import logger
from pydantic import ValidationError

from quizdash.config.settings import settings
from quizdash.models.enums import StrategyTag
from quizdash.models.game import Game
from quizdash.models.result import GameResult
from quizdash.models.table import ResultRow, ResultTable, TableCell
from quizdash.normalization.results import ResultExtractor
from quizdash.scrapers.base_scraper import BaseScraper, InvalidResponseError
from quizdash.scrapers.discovery import GameDiscoveryEngine, ListingPage, ListingRow
from quizdash.utils.misc_utils import as_list, as_mapping, parse_local_datetime

# Listing timestamps are city-local, four-digit year
LISTING_DATE_FORMAT = "%d.%m.%Y %H:%M"
STREAM_GAME_TYPE = 1


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class ApiScraper(BaseScraper):
    """Strategy for cities served by the JSON API."""

    strategy = StrategyTag.API

    async def discover_games(self) -> List[Game]:
        engine = GameDiscoveryEngine(
            city=self.city,
            reconciler=self.reconciler,
            fetch_page=self._fetch_listing_page,
            row_id=self._row_id,
            parse_row=self._parse_row,
            cancel_token=self.cancel_token,
        )
        return await engine.discover()

    async def _fetch_listing_page(self, page: int) -> ListingPage:
        url = f"{settings.api_base_url}/games/finished/{self.city.id}"
        params = {"per_page": self.page_size, "page": page, "order": "-date"}
        payload = await self._get_json(url, params=params)
        try:
            data = payload["data"]
            pagination = as_mapping(data.get("pagination"))
            return ListingPage(rows=data["data"] or [], count=pagination.get("count"))
        except (KeyError, TypeError, AttributeError, ValidationError) as e:
            raise InvalidResponseError(f"Unexpected listing payload for page {page}: {e!r}") from e

    @staticmethod
    def _row_id(raw: Dict[str, Any]) -> Optional[str]:
        game_id = raw.get("id")
        return str(game_id) if game_id not in (None, "") else None

    def _parse_row(self, raw: Dict[str, Any]) -> ListingRow:
        template = as_mapping(raw.get("template"))
        place = as_mapping(raw.get("place"))
        is_stream = raw.get("game_type") == STREAM_GAME_TYPE
        return ListingRow(
            game_id=self._row_id(raw) or "",
            title=raw.get("title") or "",
            template_name=template.get("title"),
            template_type=template.get("game_type"),
            number=_text(raw.get("game_number")),
            package_number=_text(raw.get("package_number")) or None,
            date=parse_local_datetime(raw.get("date") or "", LISTING_DATE_FORMAT, self.city.timezone),
            price=raw.get("price") or 0,
            location=place.get("title") or "",
            address=None if is_stream else place.get("address"),
            is_stream=is_stream,
        )

    async def fetch_results(self, game: Game) -> List[GameResult]:
        url = f"{settings.api_base_url}/games/{game.id}/results"
        payload = await self._get_json(url)
        try:
            records = payload["data"] or []
        except (KeyError, TypeError) as e:
            raise InvalidResponseError(f"Unexpected results payload for game {game.id}: {e!r}") from e
        if not isinstance(records, list):
            raise InvalidResponseError(f"Unexpected results payload for game {game.id}: data is not a list")

        if not records:
            logger.warning(f"No results published for game {game.id}")
            return []

        extractor = ResultExtractor(self.reconciler, self.rank_mappings, strategy=self.strategy)
        return await extractor.extract(game, self.city, results_to_table(records))


def results_to_table(records: List[Dict[str, Any]]) -> ResultTable:
    """Lays API result records out as a table so they share the HTML extraction path."""
    valid = [record for record in records if isinstance(record, dict)]
    if len(valid) < len(records):
        logger.warning(f"Skipping {len(records) - len(valid)} malformed result records")

    round_count = max((len(as_list(record.get("rounds"))) for record in valid), default=0)
    with_city = any(record.get("city") for record in valid)

    header = ["Место", "Команда"]
    if with_city:
        header.append("Город")
    header += [f"Раунд {number}" for number in range(1, round_count + 1)]
    header += ["Итого", "Ранг"]

    rows = []
    for record in valid:
        team = as_mapping(record.get("team"))
        rounds = list(as_list(record.get("rounds")))
        rounds += [None] * (round_count - len(rounds))
        rank = record.get("rank")
        rank_title = rank.get("title") if isinstance(rank, dict) else rank

        cells = [TableCell(text=_text(record.get("place"))), TableCell(text=_text(team.get("title")))]
        if with_city:
            cells.append(TableCell(text=_text(record.get("city"))))
        cells += [TableCell(text=_text(score)) for score in rounds]
        cells += [TableCell(text=_text(record.get("total"))), TableCell(text=_text(rank_title))]

        external_id = team.get("id")
        rows.append(
            ResultRow(
                cells=cells,
                team_external_id=str(external_id) if external_id not in (None, "") else None,
            )
        )

    return ResultTable(header=header, rows=rows)
