"""Application-facing operations: cluster a batch, force-merge, check duplicates."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .clustering import ForceMergeResult, build_clusters, learn_force_merge, merge_clusters, renumber
from .config import Settings
from .duplicates import DuplicateDetector
from .errors import InvalidForceMerge
from .models import Article, Cluster
from .oracle import ClusteringOracle, GeminiOracle, parse_proposals
from .publishing import WordPressStore
from .rules import JsonRuleStore, RuleStore

logger = logging.getLogger(__name__)


class StoryDesk:
    """
    Turns article batches into deduplicated, categorized story clusters.

    Keeps the clusters of the most recent batch so an operator can
    force-merge them by id.
    """

    def __init__(
        self,
        oracle: ClusteringOracle,
        rule_store: RuleStore,
        duplicate_detector: Optional[DuplicateDetector] = None,
    ):
        self.oracle = oracle
        self.rule_store = rule_store
        self.duplicate_detector = duplicate_detector
        self.clusters: List[Cluster] = []

    @classmethod
    def from_settings(cls, settings: Settings) -> "StoryDesk":
        """Wire the Gemini oracle, the JSON rule store and WordPress together."""
        oracle = GeminiOracle(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            timeout=settings.oracle_timeout_seconds,
        )
        store = WordPressStore(
            settings.wp_url,
            user=settings.wp_user,
            app_password=settings.wp_app_password,
        )
        return cls(
            oracle=oracle,
            rule_store=JsonRuleStore(settings.rules_path, max_rules=settings.max_learned_rules),
            duplicate_detector=DuplicateDetector(store, oracle, window_hours=settings.duplicate_window_hours),
        )

    def cluster(self, articles: Sequence[Article]) -> List[Cluster]:
        """
        Group a batch of articles into story clusters.

        Oracle failures propagate; there is no partial result.
        """
        if not articles:
            self.clusters = []
            return []

        rules = self.rule_store.load()
        logger.info(f"Clustering {len(articles)} articles ({len(rules)} learned rules)")

        proposals = parse_proposals(self.oracle.propose(articles))
        candidates = build_clusters(articles, proposals)
        self.clusters = merge_clusters(candidates, rules)

        logger.info(f"Found {len(self.clusters)} story clusters")
        return self.clusters

    def force_merge(self, cluster_ids: Sequence[int]) -> ForceMergeResult:
        """
        Collapse clusters of the current batch by id and learn from the merge.

        The merged cluster takes the place of the first selected cluster and
        the batch is renumbered.

        Raises:
            InvalidForceMerge: Fewer than two distinct ids, or an unknown id
        """
        ids = list(dict.fromkeys(cluster_ids))
        if len(ids) < 2:
            raise InvalidForceMerge(f"Force-merge needs at least 2 clusters, got {len(ids)}")

        by_id = {c.id: c for c in self.clusters}
        unknown = [i for i in ids if i not in by_id]
        if unknown:
            raise InvalidForceMerge(f"Unknown cluster id(s): {', '.join(str(i) for i in unknown)}")

        result = self.force_merge_clusters([by_id[i] for i in ids])

        selected = set(ids)
        first = next(position for position, c in enumerate(self.clusters) if c.id in selected)
        remaining = []
        for position, cluster in enumerate(self.clusters):
            if position == first:
                remaining.append(result.merged_cluster)
            elif cluster.id not in selected:
                remaining.append(cluster)
        self.clusters = renumber(remaining)
        return result

    def force_merge_clusters(self, clusters: Sequence[Cluster]) -> ForceMergeResult:
        """Force-merge clusters supplied by the caller."""
        return learn_force_merge(clusters, self.rule_store)

    def check_duplicates(self, clusters: Optional[List[Cluster]] = None) -> List[Cluster]:
        """Annotate clusters (default: the current batch) against recent posts."""
        clusters = self.clusters if clusters is None else clusters
        if self.duplicate_detector is None:
            logger.warning("No duplicate detector configured; skipping duplicate check")
            return clusters
        return self.duplicate_detector.check(clusters)
