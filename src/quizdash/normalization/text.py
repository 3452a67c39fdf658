"""Canonical forms for user-submitted text.

Team and series names on the source site are typed by hand, so the same name
shows up with curly or straight quotes, different dashes, ellipsis glyphs and
stray non-breaking spaces. Everything that is compared or deduplicated goes
through :func:`normalize_text` first.
"""

import re
from typing import Optional

_REPLACEMENTS = [
    (re.compile(r"[“”‟″]"), '"'),
    (re.compile(r"[‘’‛′‵]"), "'"),
    (re.compile(r"[…⋯⋮⋰⋱]"), "..."),
    (re.compile(r"[‒–—―−]"), "-"),
    (re.compile(r"[«»‹›『』「」]"), '"'),
    (re.compile(r"[·•●]"), "."),
    (re.compile(r"[‚„]"), ","),
    (re.compile("[\u200b-\u200d\ufeff]"), ""),
]
_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: Optional[str]) -> str:
    """Replaces typographic variants with ASCII forms and collapses whitespace."""
    if not text:
        return ""
    for pattern, replacement in _REPLACEMENTS:
        text = pattern.sub(replacement, text)
    # \s covers NBSP and the other unicode spaces
    return _WHITESPACE.sub(" ", text).strip()


def dedup_key(text: Optional[str]) -> str:
    """Lowercased normalized text used as the identity of series and teams."""
    return normalize_text(text).lower()
