import csv
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Type, TypeVar

from loguru import logger
from pydantic import BaseModel, ValidationError

from quizdash.config.settings import settings
from quizdash.models.city import City
from quizdash.models.game import Game
from quizdash.models.rank import RankMapping
from quizdash.models.result import GameResult
from quizdash.models.series import Series
from quizdash.models.team import Team
from quizdash.normalization.text import dedup_key
from quizdash.storage.interface import Storage, StorageError
from quizdash.storage.team_cache import TeamCache

ModelT = TypeVar("ModelT", bound=BaseModel)

CITY_FIELDS = ["_id", "name", "slug", "timezone", "last_game_id", "strategy", "source_id"]
SERIES_FIELDS = ["_id", "name", "slug", "template_name", "template_type"]
GAME_FIELDS = [
    "_id",
    "city_id",
    "series_id",
    "number",
    "package_number",
    "date",
    "price",
    "location",
    "address",
    "is_stream",
    "processed",
]
TEAM_FIELDS = ["_id", "external_id", "city_id", "name", "slug", "previous_team_id", "inconsistent_rank"]
RESULT_FIELDS = ["_id", "game_id", "team_id", "rounds", "sum", "place", "rank_id", "has_errors"]
RANK_FIELDS = ["_id", "name", "image_urls"]

# Columns holding lists, stored as JSON arrays
LIST_FIELDS = {"rounds", "image_urls"}


def to_record(model: BaseModel, fields: Sequence[str]) -> Dict[str, str]:
    data = model.model_dump(mode="json", by_alias=True)
    record = {}
    for field in fields:
        value = data.get(field)
        if value is None:
            record[field] = ""
        elif isinstance(value, bool):
            record[field] = "true" if value else "false"
        elif isinstance(value, list):
            record[field] = json.dumps(value, ensure_ascii=False)
        else:
            record[field] = str(value)
    return record


def _decode_list(value: str) -> List[Any]:
    value = value.strip()
    if value.startswith("["):
        return json.loads(value)
    # Hand-maintained reference files may use a plain separator
    separator = ";" if ";" in value else ","
    return [part.strip() for part in value.split(separator) if part.strip()]


def from_record(model_cls: Type[ModelT], record: Dict[str, str]) -> ModelT:
    data: Dict[str, Any] = {}
    for key, value in record.items():
        if key is None or value is None or value == "":
            continue
        data[key] = _decode_list(value) if key in LIST_FIELDS else value
    return model_cls.model_validate(data)


class CsvStorage(Storage):
    """Stores every entity in its own CSV file under one directory."""

    def __init__(self, data_path: Optional[Path] = None):
        self.data_path = Path(data_path or settings.data_path)
        self.cities_file = self.data_path / "cities.csv"
        self.series_file = self.data_path / "series.csv"
        self.games_file = self.data_path / "games.csv"
        self.teams_file = self.data_path / "teams.csv"
        self.results_file = self.data_path / "results.csv"
        self.ranks_file = self.data_path / "ranks.csv"
        self.team_cache = TeamCache(self._load_teams)

    @property
    def data_files(self) -> List[Path]:
        return [
            self.games_file,
            self.results_file,
            self.cities_file,
            self.ranks_file,
            self.teams_file,
            self.series_file,
        ]

    async def initialize(self) -> None:
        try:
            self.data_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create data directory {self.data_path}") from e
        logger.info(f"Using CSV storage at {self.data_path}")

    # --- File helpers ---

    def _read_rows(self, path: Path) -> List[Dict[str, str]]:
        try:
            with path.open("r", encoding="utf-8", newline="") as f:
                return list(csv.DictReader(f))
        except FileNotFoundError:
            return []
        except (OSError, csv.Error) as e:
            raise StorageError(f"Failed to read {path}") from e

    def _read_models(self, path: Path, model_cls: Type[ModelT]) -> List[ModelT]:
        models = []
        for line, record in enumerate(self._read_rows(path), start=2):
            try:
                models.append(from_record(model_cls, record))
            except (ValidationError, ValueError) as e:
                logger.warning(f"Skipping malformed {model_cls.__name__} record at {path.name}:{line}: {e}")
        return models

    def _append_rows(self, path: Path, fields: Sequence[str], records: Iterable[Dict[str, str]]) -> None:
        try:
            write_header = not path.exists() or path.stat().st_size == 0
            with path.open("a", encoding="utf-8", newline="") as f:
                writer = csv.DictWriter(f, fieldnames=list(fields), extrasaction="ignore")
                if write_header:
                    writer.writeheader()
                writer.writerows(records)
        except (OSError, csv.Error) as e:
            raise StorageError(f"Failed to append to {path}") from e
        self._touched(path)

    def _write_rows(self, path: Path, fields: Sequence[str], records: Iterable[Dict[str, str]]) -> None:
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8", newline="") as f:
                writer = csv.DictWriter(f, fieldnames=list(fields), extrasaction="ignore")
                writer.writeheader()
                writer.writerows(records)
            tmp_path.replace(path)
        except (OSError, csv.Error) as e:
            raise StorageError(f"Failed to write {path}") from e
        self._touched(path)

    def _touched(self, path: Path) -> None:
        """Hook called after a data file changed."""
        return None

    # --- Cities ---

    async def get_cities(self) -> List[City]:
        return self._read_models(self.cities_file, City)

    async def find_city_by_name(self, name: str) -> Optional[City]:
        key = dedup_key(name)
        if not key:
            return None
        for city in await self.get_cities():
            if dedup_key(city.name) == key:
                return city
        return None

    async def update_city_last_game_id(self, city_id: int, game_id: str) -> None:
        cities = await self.get_cities()
        updated = [
            city.model_copy(update={"last_game_id": game_id}) if city.id == city_id else city
            for city in cities
        ]
        self._write_rows(self.cities_file, CITY_FIELDS, (to_record(c, CITY_FIELDS) for c in updated))
        logger.debug(f"Watermark for city {city_id} set to {game_id}")

    # --- Series ---

    async def find_series_by_name(self, name: str) -> Optional[Series]:
        key = dedup_key(name)
        for series in self._read_models(self.series_file, Series):
            if dedup_key(series.name) == key:
                return series
        return None

    async def save_series(self, series: Series) -> None:
        self._append_rows(self.series_file, SERIES_FIELDS, [to_record(series, SERIES_FIELDS)])
        logger.debug(f"Saved series {series.name} to {self.series_file}")

    # --- Ranks ---

    async def get_rank_mappings(self) -> List[RankMapping]:
        return self._read_models(self.ranks_file, RankMapping)

    # --- Games ---

    async def save_games(self, games: List[Game]) -> None:
        if not games:
            return
        records = [to_record(game.model_copy(update={"processed": False}), GAME_FIELDS) for game in games]
        self._append_rows(self.games_file, GAME_FIELDS, records)
        logger.debug(f"Saved {len(games)} games to {self.games_file}")

    async def get_games(self) -> List[Game]:
        return self._read_models(self.games_file, Game)

    async def get_games_without_results(self) -> List[Game]:
        return [game for game in await self.get_games() if not game.processed]

    async def mark_game_as_processed(self, game_id: str) -> None:
        rows = self._read_rows(self.games_file)
        if not rows:
            raise StorageError(f"Failed to mark game {game_id} as processed: no games stored")
        for row in rows:
            if row.get("_id") == str(game_id):
                row["processed"] = "true"
        fields = list(rows[0].keys())
        self._write_rows(self.games_file, fields, rows)

    # --- Results ---

    async def save_results(self, results: List[GameResult]) -> None:
        if not results:
            return
        self._append_rows(self.results_file, RESULT_FIELDS, (to_record(r, RESULT_FIELDS) for r in results))
        logger.debug(f"Saved {len(results)} results to {self.results_file}")

    async def get_results(self) -> List[GameResult]:
        return self._read_models(self.results_file, GameResult)

    async def has_results_for_game(self, game_id: str) -> bool:
        return any(row.get("game_id") == str(game_id) for row in self._read_rows(self.results_file))

    # --- Teams ---

    async def _load_teams(self) -> List[Team]:
        return self._read_models(self.teams_file, Team)

    async def find_team_by_name_and_city(self, name: str, city_id: int) -> Optional[Team]:
        return await self.team_cache.by_name_and_city(name, city_id)

    async def find_team_by_external_id(self, external_id: str) -> Optional[Team]:
        return await self.team_cache.by_external_id(external_id)

    async def find_team_by_slug_and_city(self, slug: str, city_id: int) -> Optional[Team]:
        return await self.team_cache.by_slug_and_city(slug, city_id)

    async def save_team(self, team: Team) -> None:
        self._append_rows(self.teams_file, TEAM_FIELDS, [to_record(team, TEAM_FIELDS)])
        await self.team_cache.put([team])
        logger.debug(f"Saved team {team.name} to {self.teams_file}")

    async def update_teams(self, teams: List[Team]) -> None:
        if not teams:
            return
        changed = {str(team.id): team for team in teams}
        rows = self._read_rows(self.teams_file)
        # Unchanged rows are written back as read, malformed ones included
        merged = [
            to_record(changed.pop(row["_id"]), TEAM_FIELDS) if row.get("_id") in changed else row for row in rows
        ]
        # Teams not on disk yet are appended
        merged.extend(to_record(team, TEAM_FIELDS) for team in changed.values())
        fields = list(rows[0].keys()) if rows else []
        fields += [field for field in TEAM_FIELDS if field not in fields]
        self._write_rows(self.teams_file, [f for f in fields if f is not None], merged)
        await self.team_cache.put(teams)
        logger.debug(f"Updated {len(teams)} teams in {self.teams_file}")

    async def sync_changes(self, message: str = "update data files") -> None:
        logger.debug("CSV storage has no remote to sync with")
