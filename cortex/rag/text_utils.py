"""Tokenization and hashing helpers shared by the chunker and indices."""

import re
from collections import Counter

_TOKEN_RE = re.compile(r"[a-z0-9]+")

FNV_OFFSET_BASIS = 0xCBF29CE484222325
FNV_PRIME = 0x100000001B3
_MASK_64 = 0xFFFFFFFFFFFFFFFF


def tokenize(text: str) -> list[str]:
    """Lowercase ``text`` and split it into ASCII alphanumeric tokens."""
    return _TOKEN_RE.findall(text.lower())


def extract_keywords(text: str, limit: int = 20) -> list[str]:
    """Return the ``limit`` most frequent tokens, most frequent first.

    Ties keep first-occurrence order so the result is deterministic.
    """
    counts = Counter(tokenize(text))
    return [token for token, _ in counts.most_common(limit)]


def fnv1a_64(text: str) -> int:
    """64-bit FNV-1a hash of the UTF-8 encoding of ``text``."""
    value = FNV_OFFSET_BASIS
    for byte in text.encode("utf-8"):
        value ^= byte
        value = (value * FNV_PRIME) & _MASK_64
    return value
