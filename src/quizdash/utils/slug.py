# src/quizdash/utils/slug.py
from typing import TYPE_CHECKING, List, Tuple

from loguru import logger
from slugify import slugify

if TYPE_CHECKING:
    from quizdash.storage.interface import Storage

# Applied to the lowercased name before transliteration, in order
TOKEN_SUBSTITUTIONS: List[Tuple[str, str]] = [
    ("квиз", "quiz"),
    ("плиз", "please"),
    ("1?=!", "one-question-is-fine"),
    ("¯\\_(ツ)_/¯", " shrug "),
    (".*", " wildcard "),
    ("*", " star "),
    ("+", " plus "),
]


def generate_slug(name: str) -> str:
    """Generates a URL-safe, transliterated slug from a display name."""
    preprocessed = (name or "").lower()
    for token, replacement in TOKEN_SUBSTITUTIONS:
        preprocessed = preprocessed.replace(token, replacement)
    return slugify(preprocessed, lowercase=True)


async def generate_unique_team_slug(base_name: str, city_id: int, storage: "Storage") -> str:
    """Returns a slug no other team in the city uses.

    Collisions get a numeric suffix on the base name: base, base-1, base-2, ...
    """
    slug = generate_slug(base_name)
    if not slug:
        # Names made only of punctuation slugify to nothing
        base_name, slug = "team", "team"
    counter = 1
    while await storage.find_team_by_slug_and_city(slug, city_id) is not None:
        logger.debug(f"Slug '{slug}' is taken in city {city_id}")
        slug = generate_slug(f"{base_name} {counter}")
        counter += 1
    return slug
