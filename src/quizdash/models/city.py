# src/quizdash/models/city.py
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class City(BaseModel):
    """A city the league publishes games for."""

    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(..., alias="_id")
    name: str
    slug: str
    timezone: str = "Europe/Moscow"
    # Watermark: newest game id already persisted for this city
    last_game_id: Optional[str] = None
    # Strategy tag override ("v1", "v2"); None means the default strategy
    strategy: Optional[str] = None
    # City id expected by the legacy listing when it differs from `id`
    source_id: Optional[int] = None

    @property
    def listing_id(self) -> int:
        return self.source_id if self.source_id is not None else self.id
