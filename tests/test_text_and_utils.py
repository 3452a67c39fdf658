from datetime import datetime, timezone

import pytest

from quizdash.normalization.text import dedup_key, normalize_text
from quizdash.utils.misc_utils import (
    as_list,
    as_mapping,
    parse_decimal,
    parse_int,
    parse_local_datetime,
    strip_number_sign,
)


class TestNormalizeText:
    def test_replaces_typographic_variants(self):
        assert normalize_text("«Умники»\xa0 и  умницы…") == '"Умники" и умницы...'

    def test_dashes_and_quotes(self):
        assert normalize_text("Раунд 1–20 “finals” it’s") == "Раунд 1-20 \"finals\" it's"

    def test_removes_zero_width_characters(self):
        assert normalize_text("Ко\u200bманда\ufeff") == "Команда"

    def test_empty_input(self):
        assert normalize_text(None) == ""
        assert normalize_text("   ") == ""

    def test_dedup_key_ignores_case_and_spacing(self):
        assert dedup_key("  Квиз,   Плиз!  ") == dedup_key("квиз, плиз!")


class TestParsing:
    @pytest.mark.parametrize(
        "value,expected",
        [("4,5", 4.5), ("10", 10.0), (" 3.25 ", 3.25), ("12abc", 12.0), ("", 0.0), ("—", 0.0), (None, 0.0), (7, 7.0)],
    )
    def test_parse_decimal(self, value, expected):
        assert parse_decimal(value) == expected

    def test_parse_decimal_strips_thousands_space(self):
        assert parse_decimal("1\xa0000,5") == 1000.5

    @pytest.mark.parametrize("value,expected", [("3", 3), ("12.", 12), ("", 0), ("n/a", 0), (None, 0)])
    def test_parse_int(self, value, expected):
        assert parse_int(value) == expected

    def test_parse_local_datetime_converts_to_utc(self):
        parsed = parse_local_datetime("15.03.24 19:30", "%d.%m.%y %H:%M", "Europe/Moscow")
        assert parsed == datetime(2024, 3, 15, 16, 30, tzinfo=timezone.utc)

    def test_parse_local_datetime_invalid(self):
        assert parse_local_datetime("tomorrow", "%d.%m.%y %H:%M", "Europe/Moscow") is None
        assert parse_local_datetime("", "%d.%m.%y %H:%M", "Europe/Moscow") is None
        assert parse_local_datetime(123, "%d.%m.%y %H:%M", "Europe/Moscow") is None
        assert parse_local_datetime({"date": "15.03.24"}, "%d.%m.%y %H:%M", "Europe/Moscow") is None

    def test_strip_number_sign(self):
        assert strip_number_sign("#12") == "12"
        assert strip_number_sign("Special") == "Special"

    def test_shape_guards(self):
        assert as_mapping({"a": 1}) == {"a": 1}
        assert as_mapping("Профи") == {}
        assert as_list([1, 2]) == [1, 2]
        assert as_list(9) == []
