# src/quizdash/utils/misc_utils.py
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

_LEADING_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)")
_LEADING_INT = re.compile(r"^[+-]?\d+")


def parse_decimal(value: Any) -> float:
    """Parses a score written with either a comma or a dot as decimal separator.

    Mirrors lenient float parsing: leading whitespace is skipped, trailing
    garbage is ignored, and anything unparsable counts as 0.
    """
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if value is None:
        return 0.0
    text = str(value).strip().replace("\xa0", "").replace(" ", "").replace(",", ".", 1)
    match = _LEADING_NUMBER.match(text)
    if not match:
        return 0.0
    return float(match.group(0))


def parse_int(value: Any) -> int:
    """Parses a placement; unparsable values count as 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if value is None:
        return 0
    match = _LEADING_INT.match(str(value).strip())
    return int(match.group(0)) if match else 0


def parse_local_datetime(value: Any, fmt: str, tz_name: str) -> Optional[datetime]:
    """Parses a city-local timestamp and converts it to UTC. Non-string values give None."""
    if not isinstance(value, str) or not value:
        return None
    try:
        local = datetime.strptime(value.strip(), fmt)
    except ValueError:
        return None
    return local.replace(tzinfo=ZoneInfo(tz_name)).astimezone(timezone.utc)


def strip_number_sign(name: str) -> str:
    """'#12' -> '12'; anything else is returned unchanged."""
    match = re.fullmatch(r"#(\d+)", name.strip())
    return match.group(1) if match else name.strip()


def as_mapping(value: Any) -> Dict[str, Any]:
    """Returns value if it is a dict, otherwise an empty dict."""
    return value if isinstance(value, dict) else {}


def as_list(value: Any) -> List[Any]:
    """Returns value if it is a list, otherwise an empty list."""
    return value if isinstance(value, list) else []
