from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import httpx
from loguru import logger
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
)

from quizdash.config.settings import settings
from quizdash.models.city import City
from quizdash.models.enums import StrategyTag
from quizdash.models.game import Game
from quizdash.models.rank import RankMapping
from quizdash.models.result import GameResult
from quizdash.normalization.reconciler import EntityReconciler
from quizdash.storage.interface import Storage
from quizdash.utils.cancellation import CancellationToken

# Define common HTTP status codes that warrant a retry
RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class ScraperError(Exception):
    """Custom exception for scraper-related errors."""

    pass


class AuthenticationError(ScraperError):
    """Exception raised for authentication failures (401, 403)."""

    pass


class RateLimitError(ScraperError):
    """Exception raised for rate limit errors (429)."""

    pass


class InvalidResponseError(ScraperError):
    """Exception raised when a JSON endpoint answers with something else."""

    pass


def create_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.request_timeout),
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT},
    )


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, (httpx.RequestError, RateLimitError, InvalidResponseError))


def _retry_delay(retry_state: RetryCallState) -> float:
    # args[0] is the scraper instance
    return retry_state.args[0].retry_delay


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        f"Request attempt {retry_state.attempt_number} failed ({exc!r}), "
        f"retrying in {_retry_delay(retry_state)}s"
    )


class BaseScraper(ABC):
    """A scraping strategy bound to one city.

    Subclasses implement the two operations every strategy offers:
    :meth:`discover_games` and :meth:`fetch_results`.
    """

    strategy: StrategyTag

    def __init__(
        self,
        city: City,
        storage: Storage,
        rank_mappings: Sequence[RankMapping],
        client: Optional[httpx.AsyncClient] = None,
        cancel_token: Optional[CancellationToken] = None,
    ):
        self.city = city
        self.storage = storage
        self.rank_mappings = list(rank_mappings)
        self.reconciler = EntityReconciler(storage)
        self.cancel_token = cancel_token or CancellationToken()
        self._owns_client = client is None
        self.client = client or create_http_client()
        self.retry_delay = settings.retry_delay_seconds
        self.page_size = settings.page_size

    @abstractmethod
    async def discover_games(self) -> List[Game]:
        """Returns games not yet known to the store, oldest first."""
        pass

    @abstractmethod
    async def fetch_results(self, game: Game) -> List[GameResult]:
        """Returns the results of a single game.

        Raises:
            ScraperError: if the results could not be fetched.
            TableStructureError: if the results table is unusable.
        """
        pass

    @retry(
        stop=stop_after_attempt(2),  # one retry after the first failure
        wait=_retry_delay,
        retry=retry_if_exception(_is_retryable),
        before_sleep=_log_retry,
        reraise=True,
    )
    async def _send(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        expect_json: bool = False,
    ) -> httpx.Response:
        logger.debug("Making request", method=method, url=url, params=params)
        response = await self.client.request(method, url, params=params)

        if response.status_code in {401, 403}:
            logger.warning(
                f"Authentication error ({response.status_code}) for {self.strategy.value} at {url}."
            )
            raise AuthenticationError(f"Authentication failed ({response.status_code}) at {url}")

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            logger.warning(f"Rate limit hit (429) at {url}. Retry-After: {retry_after}")
            raise RateLimitError(f"Rate limited at {url}")

        response.raise_for_status()

        if expect_json:
            content_type = response.headers.get("content-type", "")
            if "json" not in content_type:
                logger.warning(f"Received non-JSON response ({content_type or 'no content type'}) from {url}")
                raise InvalidResponseError(f"Non-JSON response from {url}")
            try:
                response.json()
            except ValueError as e:
                raise InvalidResponseError(f"Malformed JSON from {url}") from e

        logger.debug(f"Request successful: {response.status_code} for {url}")
        return response

    async def _make_request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        expect_json: bool = False,
    ) -> httpx.Response:
        """Makes an HTTP request, retrying transient failures once.

        Every failure surfaces as a ScraperError subclass.
        """
        try:
            return await self._send(method, url, params=params, expect_json=expect_json)
        except ScraperError:
            raise
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error {e.response.status_code} for {url}")
            raise ScraperError(f"HTTP error: {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error(f"Request to {url} failed: {e!r}")
            raise ScraperError(f"Request failed: {e!r}") from e

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = await self._make_request("GET", url, params=params, expect_json=True)
        return response.json()

    async def close(self):
        """Closes the underlying HTTP client if this scraper created it."""
        if self._owns_client:
            await self.client.aclose()
            logger.debug(f"Closed HTTP client for {self.strategy.value} scraper")
