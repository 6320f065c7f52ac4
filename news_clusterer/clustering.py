"""Story clustering: building clusters from an oracle proposal and merging near-duplicates."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from functools import reduce
from typing import List, Optional, Sequence

from .errors import InvalidForceMerge
from .models import CONTENT_SEPARATOR, Article, Cluster, LearnedRule
from .oracle import ClusterProposal
from .rules import RuleStore, extract_rule_tokens, learned_match
from .similarity import normalize, normalize_all, overlap
from .story_types import apply_story_type

logger = logging.getLogger(__name__)

HEADLINE_WEIGHT = 0.65
KEYWORD_WEIGHT = 0.35
MERGE_THRESHOLD = 0.42
MAX_DATE_GAP = timedelta(days=7)


@dataclass
class MergeScore:
    """Breakdown of a merge decision between two clusters."""
    headline_overlap: float
    keyword_overlap: float
    within_week: bool
    learned: bool

    @property
    def combined(self) -> float:
        return HEADLINE_WEIGHT * self.headline_overlap + KEYWORD_WEIGHT * self.keyword_overlap

    @property
    def should_merge(self) -> bool:
        return (self.combined >= MERGE_THRESHOLD and self.within_week) or self.learned


@dataclass
class ForceMergeResult:
    """Outcome of an operator force-merge."""
    merged_cluster: Cluster
    learned_rule_count: int
    learned_rule: Optional[LearnedRule] = None
    merged_ids: List[int] = field(default_factory=list)


def build_clusters(articles: Sequence[Article], proposals: Sequence[ClusterProposal]) -> List[Cluster]:
    """
    Turn validated oracle proposals into candidate clusters, in emission order.

    Out-of-range indices are dropped. An article already claimed by an
    earlier proposal (or listed twice in one) is not added again, so every
    article ends up in at most one cluster. Proposals left without any
    article are skipped.
    """
    claimed: set[int] = set()
    clusters: List[Cluster] = []

    for proposal in proposals:
        indices = proposal.valid_indices(len(articles))
        dropped = len(proposal.article_indices) - len(indices)
        if dropped:
            logger.warning(
                f"Proposal {proposal.cluster_id!r} referenced {dropped} invalid article index(es); dropped"
            )

        fresh = []
        for index in indices:
            if index in claimed:
                logger.warning(f"Article index {index} already assigned; ignoring repeat in proposal {proposal.cluster_id!r}")
                continue
            claimed.add(index)
            fresh.append(index)

        if not fresh:
            logger.warning(f"Proposal {proposal.cluster_id!r} has no usable articles; skipped")
            continue

        clusters.append(Cluster.from_articles(
            cluster_id=len(clusters) + 1,
            headline=proposal.merged_headline_en,
            summary=proposal.story_summary_en,
            articles=[articles[i] for i in fresh],
            indices=fresh,
        ))

    unassigned = len(articles) - len(claimed)
    if unassigned:
        logger.info(f"{unassigned} of {len(articles)} articles were not placed in any proposal")
    return clusters


def score_pair(a: Cluster, b: Cluster, rules: Sequence[LearnedRule] = ()) -> MergeScore:
    """Score `b` (the incoming candidate) against `a` (an accumulated cluster)."""
    if a.earliest_date and b.earliest_date:
        within_week = abs(a.earliest_date - b.earliest_date) <= MAX_DATE_GAP
    else:
        within_week = True

    return MergeScore(
        headline_overlap=overlap(normalize(a.headline), normalize(b.headline)),
        keyword_overlap=overlap(normalize_all(a.keywords), normalize_all(b.keywords)),
        within_week=within_week,
        learned=learned_match(a, b, rules),
    )


def should_merge(a: Cluster, b: Cluster, rules: Sequence[LearnedRule] = ()) -> bool:
    """Whether two clusters describe the same story."""
    return score_pair(a, b, rules).should_merge


def _longer(first: str, second: str) -> str:
    """The longer of two strings; ties keep `first`."""
    return second if len(second or "") > len(first or "") else first


def _union(first: Sequence[str], second: Sequence[str]) -> List[str]:
    return list(dict.fromkeys([*first, *second]))


def merge_two(a: Cluster, b: Cluster) -> Cluster:
    """
    Combine two clusters into a new one carrying `a`'s id.

    Sources are de-duplicated by (url, title). The longer headline and
    summary are kept, ties favoring `a`.
    """
    sources = list(a.sources)
    seen = {s.key for s in sources}
    for source in b.sources:
        if source.key not in seen:
            seen.add(source.key)
            sources.append(source)

    dates = [d for d in (a.earliest_date, b.earliest_date) if d]
    merged_content = a.merged_content + CONTENT_SEPARATOR + b.merged_content

    return Cluster(
        id=a.id,
        headline=_longer(a.headline, b.headline),
        summary=_longer(a.summary, b.summary),
        merged_content=merged_content,
        sources=sources,
        images=_union(a.images, b.images),
        keywords=_union(a.keywords, b.keywords),
        earliest_date=min(dates) if dates else None,
        article_count=a.article_count + b.article_count,
        story_type=a.story_type,
        story_type_confidence=a.story_type_confidence,
        duplicate=a.duplicate or b.duplicate,
        duplicate_of=a.duplicate_of or b.duplicate_of,
        articles=[*a.articles, *b.articles],
        article_indices=[*a.article_indices, *b.article_indices],
        original_language=a.original_language,
        profile_name=a.profile_name,
    )


def renumber(clusters: List[Cluster]) -> List[Cluster]:
    """Reassign ids 1..N in list order."""
    for position, cluster in enumerate(clusters, start=1):
        cluster.id = position
    return clusters


def merge_clusters(candidates: Sequence[Cluster], rules: Sequence[LearnedRule] = ()) -> List[Cluster]:
    """
    Collapse near-duplicate candidates in a single greedy pass.

    Each candidate is merged into the first accumulated cluster it matches,
    in scan order; otherwise it is kept as a new cluster. There is no
    backtracking and no re-merge of accumulated clusters with each other,
    so the outcome depends on candidate order. Ids are renumbered 1..N and
    every resulting cluster is re-classified.
    """
    result: List[Cluster] = []

    for candidate in candidates:
        for i, existing in enumerate(result):
            score = score_pair(existing, candidate, rules)
            if score.should_merge:
                logger.debug(
                    f"Merging '{candidate.headline}' into '{existing.headline}' "
                    f"(headline={score.headline_overlap:.2f}, keywords={score.keyword_overlap:.2f}, "
                    f"combined={score.combined:.2f}, learned={score.learned})"
                )
                result[i] = merge_two(existing, candidate)
                break
        else:
            result.append(candidate)

    renumber(result)
    for cluster in result:
        apply_story_type(cluster)

    if len(result) < len(candidates):
        logger.info(f"Merged {len(candidates)} proposed clusters into {len(result)}")
    return result


def learn_force_merge(selected: Sequence[Cluster], store: RuleStore) -> ForceMergeResult:
    """
    Merge operator-selected clusters into one and learn a rule from them.

    Headline tokens shared by at least two of the selected clusters become a
    new learned rule. The merge succeeds even when no such token exists.
    A cluster selected more than once (same id and sources) counts once.

    Raises:
        InvalidForceMerge: If fewer than two distinct clusters are selected
    """
    distinct = {}
    for cluster in selected:
        distinct.setdefault((cluster.id, tuple(s.key for s in cluster.sources)), cluster)
    if len(distinct) < len(selected):
        logger.warning(f"Ignoring {len(selected) - len(distinct)} repeated cluster(s) in force-merge")
    selected = list(distinct.values())

    if len(selected) < 2:
        raise InvalidForceMerge(f"Force-merge needs at least 2 distinct clusters, got {len(selected)}")

    headlines = [c.headline for c in selected]
    merged = reduce(merge_two, selected)
    apply_story_type(merged)

    tokens = extract_rule_tokens(headlines)
    rule = None
    if tokens:
        rule = LearnedRule(tokens=tokens, source_headlines=headlines)
        rule_count = store.append(rule)
        logger.info(f"Learned merge rule {tokens} from {len(selected)} clusters")
    else:
        rule_count = len(store.load())
        logger.info(f"Force-merged {len(selected)} clusters; no shared headline tokens to learn")

    return ForceMergeResult(
        merged_cluster=merged,
        learned_rule_count=rule_count,
        learned_rule=rule,
        merged_ids=[c.id for c in selected],
    )
