from typing import Collection, Dict, List, Optional, Sequence, Type

import httpx
from loguru import logger

from quizdash.models.city import City
from quizdash.models.enums import DEFAULT_STRATEGY, StrategyTag
from quizdash.models.rank import RankMapping
from quizdash.scrapers.api_scraper import ApiScraper
from quizdash.scrapers.base_scraper import BaseScraper
from quizdash.scrapers.legacy_scraper import LegacyScraper
from quizdash.storage.interface import Storage
from quizdash.utils.cancellation import CancellationToken

STRATEGIES: Dict[StrategyTag, Type[BaseScraper]] = {
    StrategyTag.LEGACY: LegacyScraper,
    StrategyTag.API: ApiScraper,
}

available_strategies: List[str] = [tag.value for tag in STRATEGIES]


def resolve_strategy_tag(tag: Optional[str]) -> Optional[StrategyTag]:
    """Maps a configured tag to a known strategy; None if the tag is unknown."""
    if tag is None or not str(tag).strip():
        return DEFAULT_STRATEGY
    try:
        return StrategyTag(str(tag).strip().lower())
    except ValueError:
        return None


def create_scraper(
    city: City,
    storage: Storage,
    rank_mappings: Sequence[RankMapping],
    *,
    client: Optional[httpx.AsyncClient] = None,
    active_city_ids: Collection[int] = (),
    cancel_token: Optional[CancellationToken] = None,
) -> Optional[BaseScraper]:
    """Creates the scraper configured for a city.

    An unknown strategy falls back to the default one, except for cities
    being actively scraped in this run: those are excluded (None is returned)
    so a typo cannot scrape them with the wrong semantics.
    """
    tag = resolve_strategy_tag(city.strategy)

    if tag is None:
        if city.id in active_city_ids:
            logger.error(
                f"Unknown scraper strategy '{city.strategy}' for {city.name} (ID: {city.id}). "
                f"Available: {available_strategies}. Excluding the city from this run."
            )
            return None
        logger.warning(
            f"Unknown scraper strategy '{city.strategy}' for {city.name}. "
            f"Falling back to {DEFAULT_STRATEGY.value}."
        )
        tag = DEFAULT_STRATEGY

    scraper_class = STRATEGIES[tag]
    logger.debug(f"Using {tag.value} strategy for {city.name}")
    return scraper_class(city, storage, rank_mappings, client=client, cancel_token=cancel_token)
