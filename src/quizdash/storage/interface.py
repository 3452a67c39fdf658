from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from quizdash.models.city import City
from quizdash.models.game import Game
from quizdash.models.rank import RankMapping
from quizdash.models.result import GameResult
from quizdash.models.series import Series
from quizdash.models.team import Team


class StorageError(Exception):
    """Raised when the store cannot be read or written."""

    pass


class Storage(ABC):
    """Persistence contract consumed by the scrapers and the run loop.

    Lookups return None (or an empty list) when nothing matches; only I/O
    failures raise StorageError.
    """

    async def initialize(self) -> None:
        """Prepares the store before the first read. No-op by default."""
        return None

    # City operations
    @abstractmethod
    async def get_cities(self) -> List[City]: ...

    async def get_cities_by_ids(self, ids: Iterable[int]) -> List[City]:
        """Returns the requested cities in the order the ids were given."""
        by_id = {city.id: city for city in await self.get_cities()}
        return [by_id[city_id] for city_id in ids if city_id in by_id]

    @abstractmethod
    async def find_city_by_name(self, name: str) -> Optional[City]: ...

    @abstractmethod
    async def update_city_last_game_id(self, city_id: int, game_id: str) -> None: ...

    # Series operations
    @abstractmethod
    async def find_series_by_name(self, name: str) -> Optional[Series]: ...

    @abstractmethod
    async def save_series(self, series: Series) -> None: ...

    # Rank operations
    @abstractmethod
    async def get_rank_mappings(self) -> List[RankMapping]: ...

    # Game operations
    @abstractmethod
    async def save_games(self, games: List[Game]) -> None: ...

    @abstractmethod
    async def get_games_without_results(self) -> List[Game]: ...

    @abstractmethod
    async def mark_game_as_processed(self, game_id: str) -> None: ...

    # Result operations
    @abstractmethod
    async def save_results(self, results: List[GameResult]) -> None: ...

    @abstractmethod
    async def has_results_for_game(self, game_id: str) -> bool: ...

    # Team operations
    @abstractmethod
    async def find_team_by_name_and_city(self, name: str, city_id: int) -> Optional[Team]: ...

    @abstractmethod
    async def find_team_by_external_id(self, external_id: str) -> Optional[Team]: ...

    @abstractmethod
    async def find_team_by_slug_and_city(self, slug: str, city_id: int) -> Optional[Team]: ...

    @abstractmethod
    async def save_team(self, team: Team) -> None: ...

    @abstractmethod
    async def update_teams(self, teams: List[Team]) -> None: ...

    # Remote durability
    async def sync_changes(self, message: str = "update data files") -> None:
        """Flushes local changes to a remote, where the store has one."""
        return None
