from __future__ import annotations

import re

__all__ = [
    "clip",
    "truncate",
    "fold_quotes",
    "contains_word",
]

_QUOTES = str.maketrans({"’": "'", "‘": "'", "“": '"', "”": '"'})


def clip(x: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, float(x)))


def truncate(text: str, max_len: int, ellipsis: str = "...") -> str:
    if not text or max_len <= 0:
        return ""
    if len(text) <= max_len:
        return text
    return text[: max(0, max_len - len(ellipsis))] + ellipsis


def fold_quotes(s: str) -> str:
    """Typographic quotes -> ASCII. Length-preserving, so match spans stay valid."""
    return (s or "").translate(_QUOTES)


def contains_word(text: str, word: str) -> bool:
    """Whole-word, case-insensitive containment (apostrophes allowed inside words)."""
    return re.search(rf"(?<![\w']){re.escape(word)}(?![\w'])", text, re.IGNORECASE) is not None
