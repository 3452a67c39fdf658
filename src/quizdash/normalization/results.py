from typing import List, Optional, Sequence
from uuid import uuid4

from loguru import logger
from pydantic import ValidationError

from quizdash.models.city import City
from quizdash.models.enums import StrategyTag
from quizdash.models.game import Game
from quizdash.models.rank import RankMapping
from quizdash.models.result import GameResult
from quizdash.models.table import ColumnIndexes, ResultRow, ResultTable
from quizdash.normalization.columns import ColumnClassifier
from quizdash.normalization.reconciler import EntityReconciler
from quizdash.normalization.text import normalize_text
from quizdash.utils.misc_utils import parse_decimal, parse_int


class ResultExtractor:
    """Turns a results table into GameResult records, creating teams as needed."""

    def __init__(
        self,
        reconciler: EntityReconciler,
        rank_mappings: Sequence[RankMapping],
        strategy: StrategyTag = StrategyTag.LEGACY,
        classifier: Optional[ColumnClassifier] = None,
    ):
        self.reconciler = reconciler
        self.rank_mappings = list(rank_mappings)
        self.strategy = strategy
        self.classifier = classifier or ColumnClassifier()

    async def extract(self, game: Game, city: City, table: ResultTable) -> List[GameResult]:
        """Extracts all valid rows of the table.

        Raises:
            TableStructureError: if the header lacks a mandatory column.
        """
        columns = self.classifier.classify(table.header)
        results: List[GameResult] = []

        for row_number, row in enumerate(table.rows, start=1):
            try:
                result = await self._extract_row(game, city, columns, row)
            except ValidationError as e:
                logger.warning(
                    f"Dropping invalid result row {row_number} of game {game.id}: {e.errors()}"
                )
                continue
            if result is not None:
                results.append(result)

        if any(result.has_errors for result in results):
            logger.warning(f"Found results with calculation errors in game {game.id}")

        logger.debug(f"Extracted {len(results)} of {len(table.rows)} rows for game {game.id}")
        return results

    async def _extract_row(
        self, game: Game, city: City, columns: ColumnIndexes, row: ResultRow
    ) -> Optional[GameResult]:
        team_name = normalize_text(row.cell(columns.team).text)
        if not team_name:
            logger.warning(f"Skipping result row without a team name in game {game.id}")
            return None

        team_city_id = city.id
        if columns.team_city is not None:
            team_city_name = normalize_text(row.cell(columns.team_city).text)
            if team_city_name:
                team_city = await self.reconciler.storage.find_city_by_name(team_city_name)
                if team_city is not None:
                    team_city_id = team_city.id

        rounds = [parse_decimal(row.cell(index).text) for index in columns.rounds]
        reported_total = parse_decimal(row.cell(columns.total).text)
        place = parse_int(row.cell(columns.place).text) if columns.place is not None else 0

        rank_id: Optional[str] = None
        rank_unresolved = False
        if columns.rank is not None:
            badge = row.cell(columns.rank)
            if self.strategy == StrategyTag.LEGACY:
                rank = self.reconciler.resolve_rank(self.rank_mappings, image_src=badge.image_src)
                has_badge = bool(badge.image_src)
            else:
                rank = self.reconciler.resolve_rank(self.rank_mappings, title=badge.text)
                has_badge = bool(badge.text.strip())
            if rank is not None:
                rank_id = rank.id
            elif has_badge:
                rank_unresolved = True
                logger.debug(
                    f"Unknown rank badge '{badge.image_src or badge.text}' for '{team_name}'"
                )

        # Validated before the team is resolved so a bad row creates nothing
        draft = GameResult(
            game_id=game.id,
            team_id=uuid4(),
            rounds=rounds,
            sum=reported_total,
            place=place,
            rank_id=rank_id,
        )

        team = await self.reconciler.resolve_team(
            team_name,
            team_city_id,
            external_id=row.team_external_id,
            rank_unresolved=rank_unresolved,
        )
        return draft.model_copy(update={"team_id": team.id})
