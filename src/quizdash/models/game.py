from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class Game(BaseModel):
    """Represents a single scheduled quiz game."""

    model_config = ConfigDict(populate_by_name=True)

    # Legacy integer-as-string or an opaque API id, depending on strategy
    id: str = Field(..., alias="_id", min_length=1)
    city_id: int
    series_id: UUID
    number: str = ""
    package_number: Optional[str] = None
    date: datetime
    price: float = Field(0, ge=0)
    location: str = ""
    address: Optional[str] = None
    is_stream: bool = False
    processed: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value):
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("date")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @computed_field  # type: ignore[misc]
    @property
    def description(self) -> str:
        """A human-readable description of the game."""
        return f"#{self.number} @ {self.location} ({self.date.strftime('%Y-%m-%d %H:%M')} UTC)"

    def __hash__(self):
        return hash(self.id)

    def __eq__(self, other):
        if not isinstance(other, Game):
            return NotImplemented
        return self.id == other.id
