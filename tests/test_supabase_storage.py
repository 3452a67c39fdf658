from typing import Any, Dict, List
from unittest.mock import Mock
from uuid import uuid4

import pytest
from postgrest.exceptions import APIError

from quizdash.config.settings import ConfigurationError
from quizdash.models.result import GameResult
from quizdash.models.team import Team
from quizdash.storage.interface import StorageError
from quizdash.storage.supabase_storage import SupabaseStorage

from tests.conftest import make_game


class FakeQuery:
    """Chainable stand-in for a PostgREST request builder."""

    def __init__(self, client: "FakeClient", table: str):
        self.client = client
        self.table = table
        self.ops: List[tuple] = []

    def _chain(name):
        def method(self, *args, **kwargs):
            self.ops.append((name, args))
            return self

        return method

    select = _chain("select")
    upsert = _chain("upsert")
    update = _chain("update")
    eq = _chain("eq")
    order = _chain("order")
    limit = _chain("limit")
    del _chain

    async def execute(self):
        self.client.executed.append(self)
        if self.client.error is not None:
            raise self.client.error
        return Mock(data=self.client.rows.get(self.table, []))


class FakeClient:
    def __init__(self, rows: Dict[str, List[Dict[str, Any]]] = None):
        self.rows = rows or {}
        self.executed: List[FakeQuery] = []
        self.error = None

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)


class TestSupabaseStorageConfig:
    def test_requires_credentials(self):
        with pytest.raises(ConfigurationError):
            SupabaseStorage(url="", key="")


@pytest.mark.asyncio
class TestSupabaseStorage:
    async def test_pending_games_query(self):
        game = make_game("1001")
        row = game.model_dump(mode="json", exclude={"description"})
        client = FakeClient({"games": [row]})
        storage = SupabaseStorage(client=client)

        [loaded] = await storage.get_games_without_results()

        assert loaded.id == "1001"
        assert loaded.date == game.date
        assert ("eq", ("processed", False)) in client.executed[0].ops

    async def test_results_upserted_without_computed_fields(self):
        client = FakeClient()
        storage = SupabaseStorage(client=client)
        result = GameResult(game_id="1001", team_id=uuid4(), rounds=[1, 2], sum=3)

        await storage.save_results([result])

        [(name, args)] = client.executed[0].ops
        assert name == "upsert"
        [payload] = args[0]
        assert "calculated_sum" not in payload
        assert payload["id"] == str(result.id)
        assert payload["rounds"] == [1.0, 2.0]

    async def test_empty_upsert_is_skipped(self):
        client = FakeClient()
        await SupabaseStorage(client=client).save_games([])
        assert client.executed == []

    async def test_team_lookups_use_cache(self):
        team = Team(city_id=17, name="Умники", slug="umniki")
        client = FakeClient({"teams": [team.model_dump(mode="json")]})
        storage = SupabaseStorage(client=client)

        assert (await storage.find_team_by_name_and_city("умники", 17)).id == team.id
        assert (await storage.find_team_by_slug_and_city("umniki", 17)).id == team.id
        assert len(client.executed) == 1

        await storage.update_teams([team.model_copy(update={"external_id": "9001"})])
        assert (await storage.find_team_by_external_id("9001")).id == team.id

    async def test_series_found_by_normalized_name(self):
        series_id = str(uuid4())
        client = FakeClient({"series": [{"id": series_id, "name": "Квиз, плиз!", "slug": "quiz-please"}]})
        storage = SupabaseStorage(client=client)

        assert str((await storage.find_series_by_name(" квиз, плиз! ")).id) == series_id
        assert await storage.find_series_by_name("Другое") is None

    async def test_api_error_becomes_storage_error(self):
        client = FakeClient()
        client.error = APIError({"message": "permission denied", "code": "42501"})
        storage = SupabaseStorage(client=client)

        with pytest.raises(StorageError, match="permission denied"):
            await storage.mark_game_as_processed("1001")
