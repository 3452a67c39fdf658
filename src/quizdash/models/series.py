from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class Series(BaseModel):
    """A recurring game title; games are numbered within a series."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: UUID = Field(default_factory=uuid4, alias="_id")
    name: str
    slug: str
    template_name: Optional[str] = None
    template_type: Optional[int] = None
