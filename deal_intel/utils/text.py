"""
Text normalization and fuzzy matching helpers for knowledge-base keys.
"""
import re
from typing import Iterable, List, Tuple

from rapidfuzz import process
from rapidfuzz.distance import Levenshtein

_WHITESPACE = re.compile(r"\s+")
_DASHES = str.maketrans({"–": "-", "—": "-", "‒": "-", "−": "-"})
_QUOTES = str.maketrans({"‘": "'", "’": "'", "“": '"', "”": '"'})


def normalize_key(value: str | None) -> str:
    """
    Canonical comparison form of a key-field value.

    Lowercase, trimmed, internal whitespace collapsed, dash and quote variants unified.

    Example:
        >>> normalize_key("  Acme  CRM — Active ")
        'acme crm - active'
    """
    if not value:
        return ""
    text = value.translate(_DASHES).translate(_QUOTES)
    return _WHITESPACE.sub(" ", text).strip().lower()


def nearest_matches(target: str, candidates: Iterable[str], limit: int = 3) -> List[Tuple[str, int]]:
    """
    Closest candidates to target by Levenshtein distance over normalized text.

    Returns:
        Up to `limit` (candidate, distance) tuples, closest first
    """
    matches = process.extract(
        target,
        list(candidates),
        scorer=Levenshtein.distance,
        processor=normalize_key,
        limit=limit,
    )
    return [(candidate, int(distance)) for candidate, distance, _ in matches]
