# src/quizdash/scrapers/legacy_scraper.py

from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup, Tag
from loguru import logger
from pydantic import ValidationError

from quizdash.config.settings import settings
from quizdash.models.enums import StrategyTag
from quizdash.models.game import Game
from quizdash.models.result import GameResult
from quizdash.models.table import ResultRow, ResultTable, TableCell
from quizdash.normalization.columns import ColumnClassifier
from quizdash.normalization.results import ResultExtractor
from quizdash.scrapers.base_scraper import BaseScraper, InvalidResponseError
from quizdash.scrapers.discovery import GameDiscoveryEngine, ListingPage, ListingRow
from quizdash.utils.misc_utils import parse_local_datetime, strip_number_sign

# Finished games only
FINISHED_STATUS = 6
# Listing timestamps are city-local, two-digit year
LISTING_DATE_FORMAT = "%d.%m.%y %H:%M"
STREAM_GAME_TYPE = 1


class LegacyScraper(BaseScraper):
    """Strategy for cities on the old site: JSON listing plus HTML results tables."""

    strategy = StrategyTag.LEGACY

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
        params = {
            "status": FINISHED_STATUS,
            "city_id": self.city.listing_id,
            "page": page,
            "per_page": self.page_size,
        }
        payload = await self._get_json(settings.legacy_games_api_url, params=params)
        try:
            data = payload["data"]
            return ListingPage(rows=data["data"] or [], count=data.get("count"))
        except (KeyError, TypeError, AttributeError, ValidationError) as e:
            raise InvalidResponseError(f"Unexpected listing payload for page {page}: {e!r}") from e

    @staticmethod
    def _row_id(raw: Dict[str, Any]) -> Optional[str]:
        game_id = raw.get("id")
        return str(game_id) if game_id not in (None, "") else None

    def _parse_row(self, raw: Dict[str, Any]) -> ListingRow:
        is_stream = raw.get("game_type") == STREAM_GAME_TYPE
        return ListingRow(
            game_id=self._row_id(raw) or "",
            title=raw.get("title") or "",
            number=strip_number_sign(str(raw.get("name") or "")),
            date=parse_local_datetime(raw.get("datetime") or "", LISTING_DATE_FORMAT, self.city.timezone),
            price=raw.get("price") or 0,
            location=raw.get("place") or "",
            address=None if is_stream else raw.get("address"),
            is_stream=is_stream,
        )

    async def fetch_results(self, game: Game) -> List[GameResult]:
        url = settings.legacy_game_page_url.format(city_slug=self.city.slug)
        response = await self._make_request("GET", url, params={"id": game.id})

        extractor = ResultExtractor(self.reconciler, self.rank_mappings, strategy=self.strategy)
        table = parse_results_table(response.text, extractor.classifier)
        if table is None:
            logger.warning(f"No results table found for game {game.id}")
            return []
        return await extractor.extract(game, self.city, table)


def _cell(tag: Tag) -> TableCell:
    image = tag.find("img")
    src = image.get("src") if image is not None else None
    return TableCell(text=tag.get_text(" ", strip=True), image_src=src or None)


def _cells(row: Tag) -> List[Tag]:
    return row.find_all(["td", "th"], recursive=False)


def parse_results_table(html: str, classifier: ColumnClassifier) -> Optional[ResultTable]:
    """Finds the results table on a legacy game page.

    The first table whose header mentions a team or round column wins. Tables
    without a <thead> use their first row as the header.
    """
    soup = BeautifulSoup(html, "html.parser")

    for table in soup.find_all("table"):
        rows = table.find_all("tr")
        if not rows:
            continue

        thead = table.find("thead")
        if thead is not None and thead.find("tr") is not None:
            header_row = thead.find("tr")
            tbody = table.find("tbody")
            body_rows = tbody.find_all("tr") if tbody is not None else [
                row for row in rows if row.find_parent("thead") is None
            ]
        else:
            header_row, body_rows = rows[0], rows[1:]

        header = [_cell(tag).text for tag in _cells(header_row)]
        if not classifier.looks_like_results_header(" ".join(header)):
            continue

        return ResultTable(
            header=header,
            rows=[ResultRow(cells=[_cell(tag) for tag in _cells(row)]) for row in body_rows],
        )

    return None
