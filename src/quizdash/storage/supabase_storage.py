# src/quizdash/storage/supabase_storage.py
from typing import Any, Dict, List, Optional

from loguru import logger
from postgrest.exceptions import APIError
from pydantic import BaseModel
from supabase import AsyncClient, create_async_client

from quizdash.config.settings import ConfigurationError, settings
from quizdash.models.city import City
from quizdash.models.game import Game
from quizdash.models.rank import RankMapping
from quizdash.models.result import GameResult
from quizdash.models.series import Series
from quizdash.models.team import Team
from quizdash.normalization.text import dedup_key
from quizdash.storage.interface import Storage, StorageError
from quizdash.storage.team_cache import TeamCache

# Derived properties that have no column
COMPUTED_FIELDS = {"calculated_sum", "description"}


def to_row(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json", exclude=COMPUTED_FIELDS)


class SupabaseStorage(Storage):
    """Stores every entity in a Supabase (PostgREST) table of the same name."""

    def __init__(
        self,
        url: Optional[str] = None,
        key: Optional[str] = None,
        client: Optional[AsyncClient] = None,
    ):
        self.url = url or settings.supabase_url
        self.key = key or settings.supabase_key
        if client is None and (not self.url or not self.key):
            raise ConfigurationError("Database storage needs SUPABASE_URL and SUPABASE_KEY to be set.")
        self._client = client
        self._series: Optional[Dict[str, Series]] = None
        self.team_cache = TeamCache(self._load_teams)

    @property
    def client(self) -> AsyncClient:
        if self._client is None:
            raise StorageError("Supabase client accessed before initialize()")
        return self._client

    async def initialize(self) -> None:
        if self._client is not None:
            logger.debug("Async Supabase client already initialized.")
            return

        logger.debug(f"Attempting to initialize Async Supabase client with URL: {self.url}")
        try:
            self._client = await create_async_client(self.url, self.key)
        except Exception as e:
            raise StorageError(f"Failed to initialize Async Supabase client: {e}") from e
        logger.success("Async Supabase client initialized successfully.")

    async def _execute(self, table_name: str, query) -> List[Dict[str, Any]]:
        try:
            response = await query.execute()
        except APIError as e:
            logger.debug(f"Full APIError details: {e}")
            raise StorageError(f"Error during request to {table_name}: {e.message}") from e
        return response.data or []

    async def _select(self, table_name: str) -> List[Dict[str, Any]]:
        return await self._execute(table_name, self.client.table(table_name).select("*"))

    async def _handle_upsert(self, table_name: str, data: List[Dict[str, Any]]) -> None:
        if not data:
            logger.debug(f"No data provided for upsert to table {table_name}. Skipping.")
            return
        await self._execute(table_name, self.client.table(table_name).upsert(data))
        logger.debug(f"Upserted {len(data)} records to {table_name}")

    # --- Cities ---

    async def get_cities(self) -> List[City]:
        return [City.model_validate(row) for row in await self._select("cities")]

    async def find_city_by_name(self, name: str) -> Optional[City]:
        key = dedup_key(name)
        if not key:
            return None
        for city in await self.get_cities():
            if dedup_key(city.name) == key:
                return city
        return None

    async def update_city_last_game_id(self, city_id: int, game_id: str) -> None:
        query = self.client.table("cities").update({"last_game_id": game_id}).eq("id", city_id)
        await self._execute("cities", query)
        logger.debug(f"Watermark for city {city_id} set to {game_id}")

    # --- Series ---

    async def _series_index(self) -> Dict[str, Series]:
        if self._series is None:
            self._series = {}
            for row in await self._select("series"):
                series = Series.model_validate(row)
                self._series.setdefault(dedup_key(series.name), series)
        return self._series

    async def find_series_by_name(self, name: str) -> Optional[Series]:
        return (await self._series_index()).get(dedup_key(name))

    async def save_series(self, series: Series) -> None:
        await self._handle_upsert("series", [to_row(series)])
        (await self._series_index()).setdefault(dedup_key(series.name), series)

    # --- Ranks ---

    async def get_rank_mappings(self) -> List[RankMapping]:
        return [RankMapping.model_validate(row) for row in await self._select("ranks")]

    # --- Games ---

    async def save_games(self, games: List[Game]) -> None:
        await self._handle_upsert("games", [to_row(g.model_copy(update={"processed": False})) for g in games])

    async def get_games_without_results(self) -> List[Game]:
        query = self.client.table("games").select("*").eq("processed", False).order("date")
        return [Game.model_validate(row) for row in await self._execute("games", query)]

    async def mark_game_as_processed(self, game_id: str) -> None:
        query = self.client.table("games").update({"processed": True}).eq("id", game_id)
        await self._execute("games", query)

    # --- Results ---

    async def save_results(self, results: List[GameResult]) -> None:
        await self._handle_upsert("results", [to_row(r) for r in results])

    async def has_results_for_game(self, game_id: str) -> bool:
        query = self.client.table("results").select("id").eq("game_id", game_id).limit(1)
        return bool(await self._execute("results", query))

    # --- Teams ---

    async def _load_teams(self) -> List[Team]:
        return [Team.model_validate(row) for row in await self._select("teams")]

    async def find_team_by_name_and_city(self, name: str, city_id: int) -> Optional[Team]:
        return await self.team_cache.by_name_and_city(name, city_id)

    async def find_team_by_external_id(self, external_id: str) -> Optional[Team]:
        return await self.team_cache.by_external_id(external_id)

    async def find_team_by_slug_and_city(self, slug: str, city_id: int) -> Optional[Team]:
        return await self.team_cache.by_slug_and_city(slug, city_id)

    async def save_team(self, team: Team) -> None:
        await self._handle_upsert("teams", [to_row(team)])
        await self.team_cache.put([team])

    async def update_teams(self, teams: List[Team]) -> None:
        await self._handle_upsert("teams", [to_row(t) for t in teams])
        await self.team_cache.put(teams)
