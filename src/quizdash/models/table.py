from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TableCell(BaseModel):
    """A single cell of a results table."""

    model_config = ConfigDict(frozen=True)

    text: str = ""
    image_src: Optional[str] = None  # Rank badge image on legacy pages


class ResultRow(BaseModel):
    cells: List[TableCell]
    team_external_id: Optional[str] = None  # Only the v2 API reports team ids

    def cell(self, index: Optional[int]) -> TableCell:
        if index is None or index < 0 or index >= len(self.cells):
            return TableCell()
        return self.cells[index]


class ResultTable(BaseModel):
    """Results in tabular form, independent of where they were scraped from."""

    header: List[str]
    rows: List[ResultRow] = []


class ColumnIndexes(BaseModel):
    """Positions of the semantic columns located in a results table header."""

    team: int
    rounds: List[int] = Field(..., min_length=1)
    total: int
    place: Optional[int] = None
    rank: Optional[int] = None
    team_city: Optional[int] = None
