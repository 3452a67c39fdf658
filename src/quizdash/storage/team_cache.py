from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from loguru import logger

from quizdash.models.team import Team
from quizdash.normalization.text import dedup_key

TeamLoader = Callable[[], Awaitable[List[Team]]]


class TeamCache:
    """In-memory index of all teams, loaded once per process.

    Every team the store writes must also pass through :meth:`put` so the
    indexes never go stale within a run.
    """

    def __init__(self, loader: TeamLoader):
        self._loader = loader
        self._loaded = False
        self._by_id: Dict[UUID, Team] = {}
        self._by_name: Dict[Tuple[str, int], Team] = {}
        self._by_slug: Dict[Tuple[str, int], Team] = {}
        self._by_external_id: Dict[str, Team] = {}

    async def ensure_loaded(self) -> None:
        if self._loaded:
            return
        teams = await self._loader()
        for team in teams:
            self._index(team)
        self._loaded = True
        logger.debug(f"Team cache loaded with {len(self._by_id)} teams")

    def _index(self, team: Team) -> None:
        previous = self._by_id.get(team.id)
        if previous is not None:
            self._unindex(previous)
        self._by_id[team.id] = team
        # First team wins on a key collision, matching a top-down file scan
        self._by_name.setdefault((dedup_key(team.name), team.city_id), team)
        self._by_slug.setdefault((team.slug, team.city_id), team)
        if team.external_id:
            self._by_external_id.setdefault(team.external_id, team)

    def _unindex(self, team: Team) -> None:
        for index, key in (
            (self._by_name, (dedup_key(team.name), team.city_id)),
            (self._by_slug, (team.slug, team.city_id)),
            (self._by_external_id, team.external_id),
        ):
            if key is not None and index.get(key) is team:
                del index[key]

    async def by_name_and_city(self, name: str, city_id: int) -> Optional[Team]:
        await self.ensure_loaded()
        return self._by_name.get((dedup_key(name), city_id))

    async def by_slug_and_city(self, slug: str, city_id: int) -> Optional[Team]:
        await self.ensure_loaded()
        return self._by_slug.get((slug, city_id))

    async def by_external_id(self, external_id: str) -> Optional[Team]:
        await self.ensure_loaded()
        return self._by_external_id.get(external_id)

    async def all(self) -> List[Team]:
        await self.ensure_loaded()
        return list(self._by_id.values())

    async def put(self, teams: Iterable[Team]) -> None:
        """Write-through update after the store persisted the teams."""
        await self.ensure_loaded()
        for team in teams:
            self._index(team)
