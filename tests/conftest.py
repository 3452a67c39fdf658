import csv
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Sequence
from uuid import uuid4

import pytest

from quizdash.models.city import City
from quizdash.models.game import Game
from quizdash.models.rank import RankMapping
from quizdash.normalization.reconciler import EntityReconciler
from quizdash.storage.csv_storage import CITY_FIELDS, RANK_FIELDS, CsvStorage, to_record


def write_csv(path: Path, fields: Sequence[str], rows: List[Dict[str, str]]) -> None:
    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=list(fields))
        writer.writeheader()
        writer.writerows(rows)


def make_game(game_id: str = "1001", city_id: int = 17, **overrides) -> Game:
    data = {
        "id": game_id,
        "city_id": city_id,
        "series_id": uuid4(),
        "number": "12",
        "date": datetime(2024, 3, 15, 16, 30, tzinfo=timezone.utc),
        "price": 500,
        "location": "Бар Лофт",
        "address": "ул. Пушкина, 1",
    }
    data.update(overrides)
    return Game(**data)


@pytest.fixture
def city() -> City:
    return City(id=17, name="Москва", slug="moscow", timezone="Europe/Moscow")


@pytest.fixture
def other_city() -> City:
    return City(id=18, name="Санкт-Петербург", slug="spb", timezone="Europe/Moscow")


@pytest.fixture
def rank_mappings() -> List[RankMapping]:
    return [
        RankMapping(id="rank-novice", name="Новички", image_urls=["/img/rank/1.png"]),
        RankMapping(id="rank-pro", name="Профи", image_urls=["/img/rank/5.png", "/img/rank/5-old.png"]),
    ]


@pytest.fixture
def storage(tmp_path, city, other_city, rank_mappings) -> CsvStorage:
    store = CsvStorage(data_path=tmp_path)
    write_csv(store.cities_file, CITY_FIELDS, [to_record(c, CITY_FIELDS) for c in (city, other_city)])
    write_csv(store.ranks_file, RANK_FIELDS, [to_record(r, RANK_FIELDS) for r in rank_mappings])
    return store


@pytest.fixture
def reconciler(storage) -> EntityReconciler:
    return EntityReconciler(storage)
