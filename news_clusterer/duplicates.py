"""Flag clusters that repeat stories already published recently."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

from .errors import OracleError, PublishingStoreError
from .models import Cluster, RecentPost
from .oracle import DuplicateJudge, parse_verdicts
from .publishing import PublishingStore

logger = logging.getLogger(__name__)

EXCERPT_CHARS = 150


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def post_summaries(posts: Sequence[RecentPost]) -> List[dict]:
    return [
        {"title": p.title, "excerpt": (p.excerpt or "")[:EXCERPT_CHARS], "link": p.link}
        for p in posts
    ]


def cluster_summaries(clusters: Sequence[Cluster]) -> List[dict]:
    return [
        {"cluster_id": c.id, "headline": c.headline, "summary": c.summary}
        for c in clusters
    ]


class DuplicateDetector:
    """
    Compares clusters with posts published in a trailing window.

    The judgment comes from an external oracle. If the oracle or the
    publishing store fails, clusters are returned untouched: the detector
    never invents a duplicate flag and never clears one already set.
    """

    def __init__(
        self,
        store: PublishingStore,
        judge: DuplicateJudge,
        window_hours: int = 24,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.judge = judge
        self.window = timedelta(hours=window_hours)
        self.clock = clock or _utcnow

    def check(self, clusters: List[Cluster]) -> List[Cluster]:
        """Annotate clusters in place with duplicate flags and return them."""
        if not clusters:
            return clusters

        since = self.clock() - self.window
        try:
            recent = self.store.list_recent(since)
        except PublishingStoreError as e:
            logger.warning(f"Could not list recent posts, skipping duplicate check for {len(clusters)} clusters: {e}")
            return clusters

        if not recent:
            logger.info("No recent posts in the window; no duplicates to check")
            return clusters

        try:
            payload = self.judge.judge(post_summaries(recent), cluster_summaries(clusters))
            verdicts = parse_verdicts(payload)
        except OracleError as e:
            logger.warning(
                f"Duplicate judgment failed for {len(clusters)} clusters against {len(recent)} posts; "
                f"leaving flags unchanged: {e}"
            )
            return clusters
        except Exception:
            logger.exception(f"Unexpected duplicate judge failure for {len(clusters)} clusters; leaving flags unchanged")
            return clusters

        by_id = {c.id: c for c in clusters}
        flagged = 0
        for verdict in verdicts:
            cluster = by_id.get(verdict.cluster_id)
            if cluster is None or not verdict.is_duplicate:
                continue
            cluster.duplicate = True
            cluster.duplicate_of = {
                "title": verdict.matching_post_title,
                "link": verdict.matching_post_link,
            }
            flagged += 1

        logger.info(f"Duplicate check: {flagged} of {len(clusters)} clusters match {len(recent)} recent posts")
        return clusters
