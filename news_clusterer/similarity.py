"""Lexical similarity between headlines and keyword lists."""

from __future__ import annotations

import re
import unicodedata
from typing import AbstractSet, Iterable, List

# Weighting rewards a short candidate fully contained in a longer reference
# more than it penalizes a long candidate with unmatched extra tokens.
PRECISION_WEIGHT = 0.6
RECALL_WEIGHT = 0.4

MIN_TOKEN_LENGTH = 3

_NON_ALNUM = re.compile(r"[^\w\s]|_")

STOP_WORDS = frozenset({
    # English
    "the", "and", "for", "with", "from", "that", "this", "these", "those",
    "are", "was", "were", "has", "have", "had", "been", "will", "would",
    "its", "into", "over", "after", "about", "than", "then", "they", "their",
    "them", "there", "what", "when", "where", "which", "who", "whom", "why",
    "how", "not", "but", "can", "could", "should", "may", "might", "also",
    "more", "most", "some", "such", "all", "any", "our", "out", "you", "your",
    "his", "her", "she", "him", "one", "two", "via", "amid", "says", "said",
    # Spanish / Catalan
    "los", "las", "del", "por", "para", "con", "una", "uno", "que", "como",
    "sus", "els", "les", "amb", "per", "dels", "una", "pel", "als", "entre",
})


def tokenize(text: str | None) -> List[str]:
    """
    Split text into meaningful tokens, in first-occurrence order.

    Lowercases, strips everything that is not a letter, digit or whitespace
    (accented letters count as letters, underscores do not),
    splits on whitespace, and drops short tokens and stop words. Repeated
    tokens are kept once.
    """
    if not text:
        return []
    cleaned = _NON_ALNUM.sub("", unicodedata.normalize("NFC", text).lower())
    tokens = [
        token for token in cleaned.split()
        if len(token) >= MIN_TOKEN_LENGTH and token not in STOP_WORDS
    ]
    return list(dict.fromkeys(tokens))


def normalize(text: str | None) -> frozenset[str]:
    """Token set for `text`."""
    return frozenset(tokenize(text))


def normalize_all(texts: Iterable[str]) -> frozenset[str]:
    """Token set for a list of strings (e.g. keywords) joined with spaces."""
    return normalize(" ".join(t for t in texts if t))


def overlap(reference: AbstractSet[str], candidate: AbstractSet[str]) -> float:
    """
    Asymmetric token-set overlap in [0, 1].

    score = 0.6 * |R ∩ C| / |C| + 0.4 * |R ∩ C| / |R|, and 0 when either set
    is empty.
    """
    if not reference or not candidate:
        return 0.0
    matches = len(reference & candidate)
    precision = matches / len(candidate)
    recall = matches / len(reference)
    return PRECISION_WEIGHT * precision + RECALL_WEIGHT * recall
