from enum import Enum


class StrategyTag(str, Enum):
    LEGACY = "v1"  # HTML results tables
    API = "v2"  # JSON API


DEFAULT_STRATEGY = StrategyTag.LEGACY


class StorageType(str, Enum):
    CSV = "csv"
    GITHUB = "github"
    DATABASE = "database"


class ColumnRole(str, Enum):
    TEAM = "team"
    ROUND = "round"
    TOTAL = "total"
    PLACE = "place"
    TEAM_CITY = "team_city"
    RANK = "rank"
