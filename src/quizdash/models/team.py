# src/quizdash/models/team.py
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class Team(BaseModel):
    """Represents a team playing in a city, deduplicated by name or external id."""

    model_config = ConfigDict(populate_by_name=True)

    id: UUID = Field(default_factory=uuid4, alias="_id")
    external_id: Optional[str] = None  # Team id reported by the v2 API
    city_id: int
    name: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    previous_team_id: Optional[UUID] = None
    inconsistent_rank: bool = False  # Rank badge could not be resolved
