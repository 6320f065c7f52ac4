"""Keyword-rule story type classification."""

from __future__ import annotations

from typing import Iterable, List, Tuple

from .models import Cluster

FALLBACK_TYPE = "other"
FALLBACK_CONFIDENCE = 0.35
BASE_CONFIDENCE = 0.5
CONFIDENCE_PER_HIT = 0.1
MAX_CONFIDENCE = 0.95

# Order matters: on equal hit counts the earlier rule wins.
STORY_TYPE_RULES: List[Tuple[str, List[str]]] = [
    ("news", [
        "announced", "announces", "council", "government", "police", "minister",
        "approves", "approved", "arrested", "election", "mayor", "court",
        "strike", "accident", "breaking",
    ]),
    ("feature", [
        "in depth", "behind the", "the rise of", "portrait of", "a look at",
        "explainer", "feature", "everyday life",
    ]),
    ("interview", [
        "interview", "in conversation", "speaks to", "talks to", "q&a",
        "sits down with", "told us",
    ]),
    ("opinion", [
        "opinion", "editorial", "column", "commentary", "viewpoint", "we must",
        "letter to",
    ]),
    ("review", [
        "review", "reviewed", "rating", "stars", "verdict", "we tried",
    ]),
    ("recommendation", [
        "best ", "top 10", "where to", "guide", "must-see", "things to do",
        "recommended", "don't miss",
    ]),
    ("whats_on", [
        "festival", "concert", "exhibition", "lineup", "gig", "tickets",
        "this weekend", "theatre", "performance", "jazz", "fair", "market",
    ]),
    ("history", [
        "history", "historic", "anniversary", "century", "years ago",
        "heritage", "founded", "archive",
    ]),
    (FALLBACK_TYPE, []),
]


def classify_story_type(headline: str, summary: str = "", keywords: Iterable[str] = ()) -> dict:
    """
    Categorize a story from its headline, summary and keywords.

    Each rule scores the number of its keywords found as substrings of the
    lowercased corpus. The rule with the strictly greatest score wins.

    Returns:
        {"story_type": str, "confidence": float}
    """
    corpus = " ".join([headline or "", summary or "", " ".join(k for k in keywords if k)]).lower()

    best_type = FALLBACK_TYPE
    best_hits = 0
    for story_type, rule_keywords in STORY_TYPE_RULES:
        hits = sum(1 for keyword in rule_keywords if keyword in corpus)
        if hits > best_hits:
            best_type = story_type
            best_hits = hits

    if best_hits == 0:
        return {"story_type": FALLBACK_TYPE, "confidence": FALLBACK_CONFIDENCE}

    confidence = min(MAX_CONFIDENCE, BASE_CONFIDENCE + CONFIDENCE_PER_HIT * best_hits)
    return {"story_type": best_type, "confidence": round(confidence, 2)}


def apply_story_type(cluster: Cluster) -> Cluster:
    """Classify a cluster in place and return it."""
    result = classify_story_type(cluster.headline, cluster.summary, cluster.keywords)
    cluster.story_type = result["story_type"]
    cluster.story_type_confidence = result["confidence"]
    return cluster
