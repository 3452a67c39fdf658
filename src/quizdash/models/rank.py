from typing import List

from pydantic import BaseModel, ConfigDict, Field


class RankMapping(BaseModel):
    """Reference table entry for a rank badge. Maintained outside the scraper."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(..., alias="_id")
    name: str
    # Image URLs the legacy site has used to draw this badge
    image_urls: List[str] = []
