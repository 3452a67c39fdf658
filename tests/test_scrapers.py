from datetime import datetime, timezone

import httpx
import pytest

from quizdash.config.settings import settings
from quizdash.models.enums import StrategyTag
from quizdash.normalization.columns import ColumnClassifier
from quizdash.scrapers.api_scraper import ApiScraper, results_to_table
from quizdash.scrapers.base_scraper import AuthenticationError, ScraperError
from quizdash.scrapers.legacy_scraper import LegacyScraper, parse_results_table
from quizdash.scrapers.selector import create_scraper, resolve_strategy_tag

from tests.conftest import make_game

RESULTS_PAGE = """
<html><body>
<table class="schedule"><thead><tr><td>Дата</td><td>Адрес</td></tr></thead>
<tbody><tr><td>15.03</td><td>Бар</td></tr></tbody></table>
<table class="results">
  <thead><tr><td></td><td>Название команды</td><td>Раунд 1</td><td>Раунд 2</td><td>Итого</td><td>Ранг</td></tr></thead>
  <tbody>
    <tr><td>1</td><td>Умники</td><td>10</td><td>12,5</td><td>22,5</td><td><img src="/img/rank/5.png"></td></tr>
    <tr><td>2</td><td>Знатоки</td><td>9</td><td>11</td><td>20</td><td></td></tr>
  </tbody>
</table>
</body></html>
"""


def make_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def make_scraper(scraper_class, city, storage, rank_mappings, handler):
    scraper = scraper_class(city, storage, rank_mappings, client=make_client(handler))
    scraper.retry_delay = 0
    return scraper


class TestParseResultsTable:
    def test_picks_results_table(self):
        table = parse_results_table(RESULTS_PAGE, ColumnClassifier())

        assert table.header[1] == "Название команды"
        assert len(table.rows) == 2
        assert table.rows[0].cells[5].image_src == "/img/rank/5.png"

    def test_table_without_thead_uses_first_row(self):
        html = "<table><tr><th>Команда</th><th>Тур 1</th><th>Итого</th></tr><tr><td>A</td><td>1</td><td>1</td></tr></table>"
        table = parse_results_table(html, ColumnClassifier())

        assert table.header == ["Команда", "Тур 1", "Итого"]
        assert [c.text for c in table.rows[0].cells] == ["A", "1", "1"]

    def test_no_results_table(self):
        assert parse_results_table("<p>Игра отменена</p>", ColumnClassifier()) is None


@pytest.mark.asyncio
class TestLegacyScraper:
    async def test_discover_games(self, city, storage, rank_mappings):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["status"] == "6"
            assert request.url.params["city_id"] == "17"
            assert request.url.params["per_page"] == str(settings.page_size)
            if request.url.params["page"] == "1":
                rows = [
                    {"id": 202, "title": "Квиз, плиз!", "name": "#12", "datetime": "15.03.24 19:30",
                     "price": 500, "place": "Бар", "address": "ул. Пушкина, 1", "game_type": 0},
                    {"id": 201, "title": "Квиз, плиз! Онлайн", "name": "#3", "datetime": "14.03.24 19:30",
                     "price": 0, "place": "Онлайн", "address": "ignored", "game_type": 1},
                ]
                return httpx.Response(200, json={"data": {"data": rows, "count": 2}})
            return httpx.Response(200, json={"data": {"data": [], "count": 0}})

        scraper = make_scraper(LegacyScraper, city, storage, rank_mappings, handler)
        games = await scraper.discover_games()

        assert [g.id for g in games] == ["201", "202"]
        assert games[0].is_stream is True
        assert games[0].address is None
        assert games[1].number == "12"
        assert games[1].date == datetime(2024, 3, 15, 16, 30, tzinfo=timezone.utc)

    async def test_wrong_typed_listing_rows_are_dropped(self, city, storage, rank_mappings):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params["page"] == "1":
                rows = [
                    {"id": 303, "title": "Квиз, плиз!", "name": "#14", "datetime": 123, "place": "Бар"},
                    {"id": 302, "title": "Квиз, плиз!", "name": "#13", "datetime": "16.03.24 19:30",
                     "place": {"title": "Бар"}},
                    "not a row",
                    {"id": 301, "title": "Квиз, плиз!", "name": "#12", "datetime": "15.03.24 19:30", "place": "Бар"},
                ]
                return httpx.Response(200, json={"data": {"data": rows, "count": 4}})
            return httpx.Response(200, json={"data": {"data": [], "count": 0}})

        scraper = make_scraper(LegacyScraper, city, storage, rank_mappings, handler)
        games = await scraper.discover_games()

        assert [g.id for g in games] == ["301"]

    async def test_non_json_listing_is_retried_once(self, city, storage, rank_mappings):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, text="<html>maintenance</html>", headers={"content-type": "text/html"})

        scraper = make_scraper(LegacyScraper, city, storage, rank_mappings, handler)
        games = await scraper.discover_games()

        assert games == []
        assert len(calls) == 2

    async def test_fetch_results(self, city, storage, rank_mappings):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.host == "moscow.quizplease.ru"
            assert request.url.params["id"] == "1001"
            return httpx.Response(200, text=RESULTS_PAGE, headers={"content-type": "text/html"})

        scraper = make_scraper(LegacyScraper, city, storage, rank_mappings, handler)
        results = await scraper.fetch_results(make_game("1001"))

        assert [r.sum for r in results] == [22.5, 20]
        assert results[0].rank_id == "rank-pro"
        assert all(not r.has_errors for r in results)

    async def test_authentication_error_is_not_retried(self, city, storage, rank_mappings):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(403)

        scraper = make_scraper(LegacyScraper, city, storage, rank_mappings, handler)
        with pytest.raises(AuthenticationError):
            await scraper.fetch_results(make_game("1001"))
        assert len(calls) == 1

    async def test_server_error_retried_then_raised(self, city, storage, rank_mappings):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        scraper = make_scraper(LegacyScraper, city, storage, rank_mappings, handler)
        with pytest.raises(ScraperError, match="503"):
            await scraper.fetch_results(make_game("1001"))
        assert len(calls) == 2


API_RESULTS = {
    "data": [
        {"team": {"id": 9001, "title": "Умники"}, "place": 1, "rounds": [10, 12.5], "total": 22.5,
         "rank": {"title": "Профи"}, "city": None},
        {"team": {"id": 9002, "title": "Знатоки"}, "place": 2, "rounds": [9], "total": 9, "rank": None, "city": None},
    ]
}


@pytest.mark.asyncio
class TestApiScraper:
    async def test_discover_games(self, city, storage, rank_mappings):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/games/finished/17"
            assert request.url.params["order"] == "-date"
            if request.url.params["page"] == "1":
                rows = [
                    {"id": "a1b2", "title": "Квиз, плиз!", "template": {"title": "Классика", "game_type": 2},
                     "game_number": 12, "package_number": 3.0, "date": "15.03.2024 19:30", "price": 600,
                     "place": {"title": "Бар", "address": "ул. Пушкина, 1"}, "game_type": 0},
                ]
                return httpx.Response(200, json={"data": {"data": rows, "pagination": {"count": 1}}})
            return httpx.Response(200, json={"data": {"data": [], "pagination": {"count": 0}}})

        scraper = make_scraper(ApiScraper, city, storage, rank_mappings, handler)
        games = await scraper.discover_games()

        assert len(games) == 1
        game = games[0]
        assert (game.id, game.number, game.package_number) == ("a1b2", "12", "3")
        assert game.location == "Бар"
        assert game.date == datetime(2024, 3, 15, 16, 30, tzinfo=timezone.utc)
        series = await storage.find_series_by_name("Квиз, плиз!")
        assert series.template_name == "Классика"

    async def test_fetch_results_backfills_external_id(self, city, storage, rank_mappings, reconciler):
        existing = await reconciler.resolve_team("Умники", city.id)

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/games/a1b2/results"
            return httpx.Response(200, json=API_RESULTS)

        scraper = make_scraper(ApiScraper, city, storage, rank_mappings, handler)
        results = await scraper.fetch_results(make_game("a1b2"))

        assert len(results) == 2
        assert results[0].team_id == existing.id
        assert results[0].rank_id == "rank-pro"
        assert (await storage.find_team_by_external_id("9001")).id == existing.id
        assert (await storage.find_team_by_external_id("9002")).name == "Знатоки"

    async def test_wrong_typed_listing_fields(self, city, storage, rank_mappings):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params["page"] == "1":
                rows = [
                    {"id": "b2", "title": "Квиз, плиз!", "template": "Классика", "date": 20240316,
                     "place": {"title": "Бар"}},
                    {"id": "b1", "title": "Квиз, плиз!", "template": "Классика", "date": "15.03.2024 19:30",
                     "place": "Бар"},
                ]
                return httpx.Response(200, json={"data": {"data": rows, "pagination": {"count": 2}}})
            return httpx.Response(200, json={"data": {"data": [], "pagination": {"count": 0}}})

        scraper = make_scraper(ApiScraper, city, storage, rank_mappings, handler)
        games = await scraper.discover_games()

        assert [g.id for g in games] == ["b1"]
        assert games[0].location == ""

    async def test_wrong_typed_result_records(self, city, storage, rank_mappings):
        records = [
            {"team": {"id": 9001, "title": "Умники"}, "place": 1, "rounds": [10, 12.5], "total": 22.5, "rank": "Профи"},
            {"team": "Знатоки", "place": 2, "rounds": 9, "total": 9, "rank": None},
            "oops",
        ]
        scraper = make_scraper(
            ApiScraper, city, storage, rank_mappings, lambda request: httpx.Response(200, json={"data": records})
        )

        [result] = await scraper.fetch_results(make_game("a1b2"))

        assert result.rank_id == "rank-pro"
        assert result.sum == 22.5

    async def test_results_payload_that_is_not_a_list(self, city, storage, rank_mappings):
        scraper = make_scraper(
            ApiScraper, city, storage, rank_mappings, lambda request: httpx.Response(200, json={"data": {"x": 1}})
        )
        with pytest.raises(ScraperError, match="not a list"):
            await scraper.fetch_results(make_game("a1b2"))

    async def test_empty_results(self, city, storage, rank_mappings):
        scraper = make_scraper(
            ApiScraper, city, storage, rank_mappings, lambda request: httpx.Response(200, json={"data": []})
        )
        assert await scraper.fetch_results(make_game("a1b2")) == []

class TestResultsToTable:
    def test_results_to_table_pads_rounds(self):
        table = results_to_table(API_RESULTS["data"])

        assert table.header == ["Место", "Команда", "Раунд 1", "Раунд 2", "Итого", "Ранг"]
        assert [c.text for c in table.rows[1].cells] == ["2", "Знатоки", "9", "", "9", ""]
        assert table.rows[0].team_external_id == "9001"


class TestStrategySelector:
    def test_resolve_tag(self):
        assert resolve_strategy_tag(None) == StrategyTag.LEGACY
        assert resolve_strategy_tag(" V2 ") == StrategyTag.API
        assert resolve_strategy_tag("v9") is None

    def test_configured_strategy(self, city, storage, rank_mappings):
        scraper = create_scraper(city.model_copy(update={"strategy": "v2"}), storage, rank_mappings)
        assert isinstance(scraper, ApiScraper)

    def test_unknown_strategy_for_active_city_is_excluded(self, city, storage, rank_mappings):
        city = city.model_copy(update={"strategy": "v9"})
        assert create_scraper(city, storage, rank_mappings, active_city_ids={city.id}) is None

    def test_unknown_strategy_for_inactive_city_falls_back(self, city, storage, rank_mappings):
        city = city.model_copy(update={"strategy": "v9"})
        scraper = create_scraper(city, storage, rank_mappings, active_city_ids={99})
        assert isinstance(scraper, LegacyScraper)

    def test_settings_point_at_source(self):
        assert "{city_slug}" in settings.legacy_game_page_url
