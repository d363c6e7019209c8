"""Query normalization and synonym expansion.

Every cache in the package is keyed by the output of :func:`normalize_query`,
so two raw inputs that normalize to the same string are the same query:

    1) lowercase the input,
    2) fold accented characters to ASCII with ``unidecode`` (``"café"`` ->
       ``"cafe"``),
    3) replace everything except letters, digits and spaces with a space,
    4) collapse whitespace and trim.

The function is idempotent. :func:`expand_query` adds a handful of known
synonyms so a cached ``"earbuds"`` result can serve a ``"headphones"`` search.
"""
from __future__ import annotations

import logging
import re

from unidecode import unidecode

logger = logging.getLogger(__name__)

_NON_ALNUM_SPACE_RE = re.compile(r"[^0-9a-z ]+")

MAX_EXPANSIONS = 4

# Small hand-curated synonym map used for cache lookups only. Keys and values
# are already normalized.
QUERY_SYNONYMS: dict[str, tuple[str, ...]] = {
    "headphones": ("earbuds", "headset", "wireless headphones"),
    "earbuds": ("headphones", "wireless earbuds"),
    "sneakers": ("running shoes", "shoes"),
    "running shoes": ("sneakers",),
    "shoes": ("sneakers",),
    "laptop": ("notebook computer", "macbook"),
    "phone": ("smartphone", "cell phone"),
    "smartphone": ("phone",),
    "tv": ("television", "smart tv"),
    "television": ("tv",),
    "watch": ("smartwatch", "wristwatch"),
    "jacket": ("coat",),
    "coat": ("jacket",),
    "mug": ("coffee mug", "cup"),
    "candle": ("scented candle",),
    "necklace": ("pendant", "jewelry"),
    "gift": ("gifts", "present"),
    "present": ("gift",),
}


def normalize_query(text: str | None) -> str:
    """Return the canonical cache key for ``text``."""

    lowered = unidecode(text or "").lower()
    cleaned = _NON_ALNUM_SPACE_RE.sub(" ", lowered)
    normalized = " ".join(cleaned.split())
    logger.debug("normalize_query raw=%r normalized=%r", text, normalized)
    return normalized


def expand_query(text: str | None) -> list[str]:
    """Normalized query followed by its known synonyms, without duplicates."""

    normalized = normalize_query(text)
    if not normalized:
        return []
    expansions = [normalized]
    for synonym in QUERY_SYNONYMS.get(normalized, ()):
        if synonym not in expansions:
            expansions.append(synonym)
        if len(expansions) >= MAX_EXPANSIONS:
            break
    return expansions
