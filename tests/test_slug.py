from unittest.mock import AsyncMock

import pytest

from quizdash.models.team import Team
from quizdash.utils.slug import generate_slug, generate_unique_team_slug


class TestGenerateSlug:
    def test_token_substitutions(self):
        assert generate_slug("Квиз, плиз!") == "quiz-please"
        assert generate_slug("C++") == "c-plus-plus"
        assert generate_slug("1?=!") == "one-question-is-fine"

    def test_transliterates_to_ascii(self):
        slug = generate_slug("Мозгобойня")
        assert slug
        assert slug.isascii()
        assert slug == slug.lower()

    def test_punctuation_only_name(self):
        assert generate_slug("!!!") == ""


@pytest.mark.asyncio
class TestUniqueTeamSlug:
    async def test_free_slug_is_returned_as_is(self):
        storage = AsyncMock()
        storage.find_team_by_slug_and_city.return_value = None

        assert await generate_unique_team_slug("Dream Team", 17, storage) == "dream-team"
        storage.find_team_by_slug_and_city.assert_awaited_once_with("dream-team", 17)

    async def test_collisions_get_numeric_suffix(self):
        taken = Team(city_id=17, name="x", slug="x")
        storage = AsyncMock()
        storage.find_team_by_slug_and_city.side_effect = [taken, taken, None]

        assert await generate_unique_team_slug("Dream Team", 17, storage) == "dream-team-2"
        probed = [call.args[0] for call in storage.find_team_by_slug_and_city.await_args_list]
        assert probed == ["dream-team", "dream-team-1", "dream-team-2"]

    async def test_empty_slug_falls_back(self):
        storage = AsyncMock()
        storage.find_team_by_slug_and_city.return_value = None

        assert await generate_unique_team_slug("???", 17, storage) == "team"
