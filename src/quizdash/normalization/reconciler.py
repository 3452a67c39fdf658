from typing import Iterable, Optional

from loguru import logger

from quizdash.models.rank import RankMapping
from quizdash.models.series import Series
from quizdash.models.team import Team
from quizdash.normalization.text import dedup_key, normalize_text
from quizdash.storage.interface import Storage
from quizdash.utils.slug import generate_slug, generate_unique_team_slug


class EntityReconciler:
    """Find-or-create logic for series and teams, and rank badge lookup.

    Calling any resolve method twice with the same input returns the same
    record and creates nothing the second time.
    """

    def __init__(self, storage: Storage):
        self.storage = storage

    async def resolve_series(
        self,
        title: str,
        template_name: Optional[str] = None,
        template_type: Optional[int] = None,
    ) -> Series:
        series = await self.storage.find_series_by_name(title)
        if series is not None:
            return series

        series = Series(
            name=normalize_text(title),
            slug=generate_slug(title),
            template_name=normalize_text(template_name) or None,
            template_type=template_type,
        )
        await self.storage.save_series(series)
        logger.info(f"Created series '{series.name}' ({series.slug})")
        return series

    async def resolve_team(
        self,
        name: str,
        city_id: int,
        *,
        external_id: Optional[str] = None,
        rank_unresolved: bool = False,
    ) -> Team:
        """Finds the team by external id, then by (name, city); creates it otherwise.

        A team found by name gets the external id backfilled. `rank_unresolved`
        only affects a newly created team.
        """
        if external_id:
            team = await self.storage.find_team_by_external_id(external_id)
            if team is not None:
                return team

        team = await self.storage.find_team_by_name_and_city(name, city_id)
        if team is not None:
            if external_id and team.external_id != external_id:
                if team.external_id:
                    logger.warning(
                        f"Team '{team.name}' ({team.id}) already has external id "
                        f"{team.external_id}, keeping it instead of {external_id}"
                    )
                    return team
                team = team.model_copy(update={"external_id": external_id})
                await self.storage.update_teams([team])
                logger.debug(f"Backfilled external id {external_id} onto team '{team.name}'")
            return team

        team = Team(
            external_id=external_id,
            city_id=city_id,
            name=normalize_text(name),
            slug=await generate_unique_team_slug(name, city_id, self.storage),
            inconsistent_rank=rank_unresolved,
        )
        await self.storage.save_team(team)
        logger.debug(f"Created team '{team.name}' ({team.slug}) in city {city_id}")
        return team

    def resolve_rank(
        self,
        rank_mappings: Iterable[RankMapping],
        *,
        image_src: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Optional[RankMapping]:
        """Matches a legacy badge image or an API rank title. Never creates ranks."""
        if image_src:
            for rank in rank_mappings:
                if image_src in rank.image_urls:
                    return rank
            return None
        if title:
            key = dedup_key(title)
            for rank in rank_mappings:
                if dedup_key(rank.name) == key:
                    return rank
        return None
