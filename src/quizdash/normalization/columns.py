from typing import Dict, List, Mapping, Optional, Sequence

from loguru import logger

from quizdash.models.enums import ColumnRole
from quizdash.models.table import ColumnIndexes
from quizdash.normalization.text import dedup_key


class TableStructureError(Exception):
    """Raised when a results table lacks one of the mandatory columns."""

    pass


# Substrings identifying each column role in a header cell.
# Checked in this order; the first role with a matching substring wins.
COLUMN_KEYWORDS: Dict[ColumnRole, List[str]] = {
    ColumnRole.TEAM: [
        "название команды",
        "команда",
        "название команд",
        "team",
        "название",
        "нахвание",
        "навание",
        "названия команд",
    ],
    ColumnRole.ROUND: [
        "раунд",
        "round",
        "тур",
        "блок",
        "tour",
        " - ",  # en dash ranges, normalized
        "1-20",
        "21-40",
        "41-50",
    ],
    ColumnRole.TOTAL: ["итого", "сумма", "total", "всего", "результат", "итог"],
    ColumnRole.PLACE: ["место", "place", "position", "позиция"],
    ColumnRole.TEAM_CITY: ["город", "city"],
    ColumnRole.RANK: ["ранг", "rank", "уровень", "level"],
}

class ColumnClassifier:
    """Locates semantically named columns in an unlabeled results table header."""

    def __init__(self, keywords: Optional[Mapping[ColumnRole, Sequence[str]]] = None):
        source = keywords if keywords is not None else COLUMN_KEYWORDS
        # Keywords are written in normalized form; header text is normalized on match
        self.keywords: Dict[ColumnRole, List[str]] = {
            role: [variant.lower() for variant in variants]
            for role, variants in source.items()
        }

    def match_role(self, cell_text: str) -> Optional[ColumnRole]:
        """Returns the first role whose keywords occur in the cell text."""
        text = dedup_key(cell_text)
        if not text:
            return None
        for role, variants in self.keywords.items():
            if any(variant in text for variant in variants):
                return role
        return None

    def looks_like_results_header(self, header_text: str) -> bool:
        text = dedup_key(header_text)
        return any(
            variant in text
            for role in (ColumnRole.TEAM, ColumnRole.ROUND)
            for variant in self.keywords.get(role, [])
        )

    def classify(self, header: Sequence[str]) -> ColumnIndexes:
        """Maps header cells to column roles.

        Raises:
            TableStructureError: if the team, round or total column is missing.
        """
        found: Dict[ColumnRole, int] = {}
        rounds: List[int] = []

        for index, cell_text in enumerate(header):
            role = self.match_role(cell_text)
            if role is None:
                continue
            if role == ColumnRole.ROUND:
                rounds.append(index)
            else:
                # Rightmost match wins
                found[role] = index

        if ColumnRole.PLACE not in found and header and not header[0].strip():
            # Legacy tables leave the header above placement numbers empty
            found[ColumnRole.PLACE] = 0

        if ColumnRole.TEAM not in found:
            raise TableStructureError("Team name column not found")
        if not rounds:
            raise TableStructureError("No round columns found")
        if ColumnRole.TOTAL not in found:
            raise TableStructureError("Total score column not found")

        indexes = ColumnIndexes(
            team=found[ColumnRole.TEAM],
            rounds=rounds,
            total=found[ColumnRole.TOTAL],
            place=found.get(ColumnRole.PLACE),
            rank=found.get(ColumnRole.RANK),
            team_city=found.get(ColumnRole.TEAM_CITY),
        )
        logger.debug(f"Classified header {list(header)} as {indexes.model_dump()}")
        return indexes
