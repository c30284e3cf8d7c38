from __future__ import annotations

import string
from typing import Iterable, Optional


# Apostrophes survive so "what's" stays one token.
_PUNCT_TABLE = str.maketrans({c: " " for c in string.punctuation if c != "'"})


def normalize_for_matching(text: str) -> str:
    """
    Deterministic, local normalization for wake-phrase and intent matching:
    - lowercase
    - strip punctuation (-> spaces)
    - collapse whitespace
    """
    s = str(text or "").lower()
    s = s.translate(_PUNCT_TABLE)
    s = " ".join(s.split())
    return s


def find_phrase(text: str, phrases: Iterable[str]) -> Optional[str]:
    """Return the first phrase contained in text (both normalized), else None."""
    haystack = normalize_for_matching(text)
    for phrase in phrases:
        needle = normalize_for_matching(phrase)
        if needle and needle in haystack:
            return phrase
    return None
