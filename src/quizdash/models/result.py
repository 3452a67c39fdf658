from typing import Any, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field

# Reported totals may differ from the round sum by float noise only
SUM_TOLERANCE = 0.01


class GameResult(BaseModel):
    """One team's scored result in one game. Written once, never updated."""

    model_config = ConfigDict(populate_by_name=True)

    id: UUID = Field(default_factory=uuid4, alias="_id")
    game_id: str = Field(..., min_length=1)
    team_id: UUID
    rounds: List[float] = Field(..., min_length=1)
    sum: float = Field(..., description="Total as reported by the source.")
    place: int = Field(0, ge=0)
    rank_id: Optional[str] = None
    has_errors: bool = False

    @computed_field  # type: ignore[misc]
    @property
    def calculated_sum(self) -> float:
        return sum(self.rounds)

    def model_post_init(self, __context: Any) -> None:
        # Derived only: whatever the input said is overwritten
        self.has_errors = abs(self.calculated_sum - self.sum) > SUM_TOLERANCE
