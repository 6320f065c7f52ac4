"""Tests for the cluster merge engine."""

from __future__ import annotations

from collections import Counter
from datetime import timedelta

import pytest

from news_clusterer.clustering import (
    build_clusters,
    learn_force_merge,
    merge_clusters,
    merge_two,
    score_pair,
    should_merge,
)
from news_clusterer.errors import InvalidForceMerge
from news_clusterer.models import CONTENT_SEPARATOR, LearnedRule, Source
from news_clusterer.oracle import parse_proposals
from news_clusterer.rules import InMemoryRuleStore

from .conftest import NOW, make_cluster


@pytest.fixture
def council_pair():
    """Two headlines for the same council decision, four of five keywords shared."""
    a = make_cluster(
        1, "Council approves new Gracia festival budget",
        keywords=["gracia", "festival", "budget", "council", "culture"],
        indices=[0],
    )
    b = make_cluster(
        2, "Gracia festival budget approved by council",
        keywords=["gracia", "festival", "budget", "council", "barcelona"],
        indices=[1],
    )
    return a, b


class TestShouldMerge:
    """Tests for the merge decision."""

    def test_same_story_different_wording(self, council_pair):
        """Test reworded headlines with overlapping keywords merge."""
        a, b = council_pair
        assert should_merge(a, b)

        score = score_pair(a, b)
        assert score.keyword_overlap == pytest.approx(0.8)
        assert score.combined >= 0.42

    def test_unrelated_stories(self):
        """Test unrelated headlines do not merge."""
        a = make_cluster(1, "Metro strike called for Monday", keywords=["metro", "strike"])
        b = make_cluster(2, "Jazz festival lineup announced", keywords=["jazz", "concert"])
        assert not should_merge(a, b)

    def test_dates_more_than_a_week_apart(self):
        """Test identical headlines over a week apart stay separate."""
        a = make_cluster(1, "Metro strike called for Monday", date=NOW)
        b = make_cluster(2, "Metro strike called for Monday", date=NOW - timedelta(days=8))
        assert not should_merge(a, b)

    def test_dates_exactly_a_week_apart(self):
        """Test a seven day gap still counts as the same week."""
        a = make_cluster(1, "Metro strike called for Monday", date=NOW)
        b = make_cluster(2, "Metro strike called for Monday", date=NOW + timedelta(days=7))
        assert should_merge(a, b)

    def test_missing_date_counts_as_within_week(self):
        """Test a missing date never blocks a merge."""
        a = make_cluster(1, "Metro strike called for Monday", date=None)
        b = make_cluster(2, "Metro strike called for Monday", date=NOW - timedelta(days=30))
        assert should_merge(a, b)

    def test_learned_rule_overrides_score_and_dates(self):
        """Test a matching learned rule merges regardless of score and dates."""
        a = make_cluster(1, "Festa Major fireworks light up Gracia", date=NOW)
        b = make_cluster(2, "Neighbourhood decorations festival", date=NOW - timedelta(days=20))
        rule = LearnedRule(tokens=["gracia", "festival"], created_at=NOW)

        assert not should_merge(a, b)
        assert should_merge(a, b, [rule])

    def test_empty_headlines_and_keywords(self):
        """Test clusters without any tokens never merge lexically."""
        a = make_cluster(1, "")
        b = make_cluster(2, "")
        assert not should_merge(a, b)


class TestMergeTwo:
    """Tests for merging two clusters."""

    def test_article_count_is_summed(self, council_pair):
        """Test the merged count is the sum of both inputs."""
        a, b = council_pair
        merged = merge_two(a, b)
        assert merged.article_count == a.article_count + b.article_count == 2
        assert merged.article_indices == [0, 1]
        assert len(merged.articles) == 2

    def test_keeps_first_id(self, council_pair):
        """Test the merged cluster carries the first cluster's id."""
        a, b = council_pair
        assert merge_two(a, b).id == a.id

    def test_longer_headline_and_summary_kept(self):
        """Test the longer strings win."""
        a = make_cluster(1, "Short headline", summary="A much longer summary of the story")
        b = make_cluster(2, "A considerably longer headline", summary="Brief")
        merged = merge_two(a, b)
        assert merged.headline == "A considerably longer headline"
        assert merged.summary == "A much longer summary of the story"

    def test_tie_favors_first(self):
        """Test equal lengths keep the first cluster's text."""
        a = make_cluster(1, "Headline AAA")
        b = make_cluster(2, "Headline BBB")
        assert merge_two(a, b).headline == "Headline AAA"

    def test_sources_deduplicated_by_url_and_title(self):
        """Test sources with the same (url, title) appear once."""
        a = make_cluster(1, "Story")
        b = make_cluster(2, "Story")
        shared = Source(name="Other name", url=a.sources[0].url, title=a.sources[0].title)
        b.sources = [shared, Source(name="Diari", url="https://diari.cat/x", title="X")]

        merged = merge_two(a, b)
        assert [s.key for s in merged.sources] == [a.sources[0].key, ("https://diari.cat/x", "X")]
        assert merged.sources[0].name == a.sources[0].name

    def test_same_url_different_title_kept(self):
        """Test a different title at the same url is a distinct source."""
        a = make_cluster(1, "Story")
        b = make_cluster(2, "Story")
        b.sources = [Source(name="S", url=a.sources[0].url, title="Updated title")]
        assert len(merge_two(a, b).sources) == 2

    def test_images_and_keywords_union(self):
        """Test images and keywords are unions without repeats."""
        a = make_cluster(1, "Story", keywords=["metro", "strike"])
        b = make_cluster(2, "Story", keywords=["strike", "tmb"])
        b.images = a.images + ["https://img.example.com/extra.jpg"]

        merged = merge_two(a, b)
        assert merged.keywords == ["metro", "strike", "tmb"]
        assert merged.images == a.images + ["https://img.example.com/extra.jpg"]

    def test_content_joined_with_separator(self):
        """Test merged content concatenates both bodies."""
        a = make_cluster(1, "Story")
        b = make_cluster(2, "Story")
        merged = merge_two(a, b)
        assert merged.merged_content == a.merged_content + CONTENT_SEPARATOR + b.merged_content

    def test_earliest_date(self):
        """Test the earlier non-null date is kept."""
        early = NOW - timedelta(days=2)
        a = make_cluster(1, "Story", date=NOW)
        b = make_cluster(2, "Story", date=early)
        none = make_cluster(3, "Story", date=None)

        assert merge_two(a, b).earliest_date == early
        assert merge_two(none, a).earliest_date == NOW
        assert merge_two(none, make_cluster(4, "Story", date=None)).earliest_date is None

    def test_duplicate_flag_is_or(self):
        """Test a duplicate flag on either side survives."""
        a = make_cluster(1, "Story")
        b = make_cluster(2, "Story")
        b.duplicate = True
        b.duplicate_of = {"title": "Published", "link": "https://barna.news/p"}

        merged = merge_two(a, b)
        assert merged.duplicate is True
        assert merged.duplicate_of == {"title": "Published", "link": "https://barna.news/p"}

    def test_inputs_not_modified(self, council_pair):
        """Test merging leaves both inputs untouched."""
        a, b = council_pair
        before = (a.article_count, list(a.sources), b.article_count)
        merge_two(a, b)
        assert (a.article_count, list(a.sources), b.article_count) == before


class TestBuildClusters:
    """Tests for turning oracle proposals into candidate clusters."""

    def test_builds_from_valid_indices(self, articles):
        """Test clusters aggregate their articles."""
        proposals = parse_proposals([
            {"cluster_id": 1, "merged_headline_en": "Gràcia festival budget", "article_indices": [0, 1],
             "story_summary_en": "The council approved the budget."},
            {"cluster_id": 2, "merged_headline_en": "Metro strike", "article_indices": [2]},
        ])

        clusters = build_clusters(articles, proposals)

        assert [c.id for c in clusters] == [1, 2]
        first = clusters[0]
        assert first.headline == "Gràcia festival budget"
        assert first.summary == "The council approved the budget."
        assert first.article_count == 2
        assert [s.url for s in first.sources] == [articles[0].source_url, articles[1].source_url]
        assert first.keywords == ["gracia", "festival", "budget", "council"]
        assert first.earliest_date == min(articles[0].published_at, articles[1].published_at)
        assert first.merged_content == articles[0].body + CONTENT_SEPARATOR + articles[1].body
        assert first.duplicate is False and first.duplicate_of is None

    def test_invalid_indices_dropped(self, articles, caplog):
        """Test out-of-range and non-integer indices are dropped, not fatal."""
        proposals = parse_proposals([
            {"merged_headline_en": "Story", "article_indices": [0, 99, -1, "x", None, True]},
        ])

        clusters = build_clusters(articles, proposals)

        assert len(clusters) == 1
        assert clusters[0].article_indices == [0]
        assert clusters[0].article_count == 1
        assert "invalid article index" in caplog.text

    def test_proposal_without_valid_articles_skipped(self, articles):
        """Test a proposal left empty produces no cluster."""
        proposals = parse_proposals([
            {"merged_headline_en": "Ghost", "article_indices": [42]},
            {"merged_headline_en": "Real", "article_indices": [3]},
        ])
        clusters = build_clusters(articles, proposals)
        assert [c.headline for c in clusters] == ["Real"]
        assert clusters[0].id == 1

    def test_article_claimed_once(self, articles):
        """Test an article proposed twice lands only in the first cluster."""
        proposals = parse_proposals([
            {"merged_headline_en": "A", "article_indices": [0, 1, 1]},
            {"merged_headline_en": "B", "article_indices": [1, 2]},
        ])
        clusters = build_clusters(articles, proposals)
        assert [c.article_indices for c in clusters] == [[0, 1], [2]]

    def test_empty_proposal_list(self, articles):
        """Test no proposals yields no clusters."""
        assert build_clusters(articles, []) == []


class TestMergeClusters:
    """Tests for the greedy single-pass merge."""

    def test_empty_input(self):
        """Test an empty candidate list yields an empty result."""
        assert merge_clusters([]) == []

    def test_merges_near_duplicates(self, council_pair):
        """Test near-duplicate proposals collapse into one cluster."""
        a, b = council_pair
        result = merge_clusters([a, b])
        assert len(result) == 1
        assert result[0].article_count == 2

    def test_first_match_in_scan_order_wins(self):
        """Test a candidate matching several clusters joins the first one."""
        metro = make_cluster(1, "metro strike monday", indices=[0])
        jazz = make_cluster(2, "jazz festival lineup", indices=[1])
        both = make_cluster(3, "metro strike monday jazz festival lineup", indices=[2])

        result = merge_clusters([metro, jazz, both])
        assert [c.article_indices for c in result] == [[0, 2], [1]]

    def test_order_sensitive(self):
        """Test reversing the order of the first two candidates changes the outcome."""
        metro = make_cluster(1, "metro strike monday", indices=[0])
        jazz = make_cluster(2, "jazz festival lineup", indices=[1])
        both = make_cluster(3, "metro strike monday jazz festival lineup", indices=[2])

        result = merge_clusters([jazz, metro, both])
        assert [c.article_indices for c in result] == [[1, 2], [0]]

    def test_no_transitive_remerge(self):
        """Test accumulated clusters are never merged with each other afterwards."""
        metro = make_cluster(1, "metro strike monday", indices=[0])
        jazz = make_cluster(2, "jazz festival lineup", indices=[1])
        both = make_cluster(3, "metro strike monday jazz festival lineup", indices=[2])

        result = merge_clusters([metro, jazz, both])
        # metro now carries the combined headline, yet jazz stays separate
        assert result[0].headline == "metro strike monday jazz festival lineup"
        assert len(result) == 2

    def test_ids_contiguous(self, articles):
        """Test ids are renumbered 1..N after merging."""
        candidates = [
            make_cluster(7, "metro strike monday", indices=[0]),
            make_cluster(9, "metro strike monday", indices=[1]),
            make_cluster(12, "jazz festival lineup", indices=[2]),
            make_cluster(15, "sagrada familia tower", indices=[3]),
        ]
        result = merge_clusters(candidates)
        assert [c.id for c in result] == list(range(1, len(result) + 1))
        assert len(result) == 3

    def test_clusters_reclassified(self):
        """Test every final cluster gets a story type."""
        result = merge_clusters([
            make_cluster(1, "Jazz festival lineup announced for July", keywords=["concert"]),
            make_cluster(2, "Zzz qqq"),
        ])
        assert result[0].story_type == "whats_on"
        assert result[1].story_type == "other"
        assert result[1].story_type_confidence == 0.35

    def test_learned_rule_merges(self, festival_rule):
        """Test a learned rule collapses clusters lexical scoring keeps apart."""
        a = make_cluster(1, "Festa Major fireworks light up Gracia", indices=[0])
        b = make_cluster(2, "Neighbourhood decorations festival", indices=[1])

        assert len(merge_clusters([a, b])) == 2
        a = make_cluster(1, "Festa Major fireworks light up Gracia", indices=[0])
        b = make_cluster(2, "Neighbourhood decorations festival", indices=[1])
        assert len(merge_clusters([a, b], [festival_rule])) == 1

    def test_no_article_lost_or_duplicated(self, articles):
        """Test output articles equal the validly proposed articles."""
        proposals = parse_proposals([
            {"merged_headline_en": "Gracia festival budget approved", "article_indices": [0, 77]},
            {"merged_headline_en": "Gracia festival budget approved by council", "article_indices": [1]},
            {"merged_headline_en": "Metro strike called", "article_indices": [2, 2]},
            {"merged_headline_en": "Jazz festival lineup", "article_indices": [3, 4]},
        ])
        clusters = merge_clusters(build_clusters(articles, proposals))

        produced = Counter(i for c in clusters for i in c.article_indices)
        assert produced == Counter([0, 1, 2, 3, 4])
        assert sum(c.article_count for c in clusters) == 5
        for cluster in clusters:
            assert cluster.article_count == len(cluster.article_indices)


class TestLearnForceMerge:
    """Tests for operator force-merges."""

    def test_requires_two_clusters(self):
        """Test fewer than two clusters is rejected without touching the store."""
        store = InMemoryRuleStore()
        with pytest.raises(InvalidForceMerge):
            learn_force_merge([make_cluster(1, "Lonely story")], store)
        with pytest.raises(InvalidForceMerge):
            learn_force_merge([], store)
        assert store.load() == []

    def test_invalid_force_merge_is_value_error(self):
        """Test callers can treat the rejection as a ValueError."""
        with pytest.raises(ValueError):
            learn_force_merge([], InMemoryRuleStore())

    def test_learns_shared_headline_tokens(self):
        """Test two festival headlines produce one gracia/festival rule."""
        store = InMemoryRuleStore()
        result = learn_force_merge([
            make_cluster(1, "Gracia festival opens"),
            make_cluster(2, "Festival in Gracia draws crowds"),
        ], store)

        rules = store.load()
        assert len(rules) == 1
        assert set(rules[0].tokens) == {"festival", "gracia"}
        assert rules[0].tokens == ["gracia", "festival"]
        assert rules[0].source_headlines == ["Gracia festival opens", "Festival in Gracia draws crowds"]
        assert result.learned_rule is rules[0]
        assert result.learned_rule_count == 1

    def test_three_protest_clusters(self):
        """Test merging three clusters sums their articles and adds exactly one rule."""
        store = InMemoryRuleStore([LearnedRule(tokens=["metro"], created_at=NOW)])
        selected = [
            make_cluster(1, "Protest outside parliament", indices=[0, 1]),
            make_cluster(2, "Students join protest march", indices=[2]),
            make_cluster(3, "Farmers protest blocks roads", indices=[3, 4, 5]),
        ]
        before = len(store.load())

        result = learn_force_merge(selected, store)

        assert result.merged_cluster.article_count == 6
        assert len(store.load()) == before + 1
        assert result.learned_rule_count == before + 1
        assert result.learned_rule.tokens == ["protest"]
        assert result.merged_ids == [1, 2, 3]

    def test_no_shared_tokens_still_merges(self):
        """Test the merge succeeds even when nothing can be learned."""
        store = InMemoryRuleStore()
        result = learn_force_merge([
            make_cluster(1, "Metro strike called"),
            make_cluster(2, "Jazz lineup announced"),
        ], store)

        assert result.merged_cluster.article_count == 2
        assert result.learned_rule is None
        assert result.learned_rule_count == 0
        assert store.load() == []

    def test_merged_cluster_classified(self):
        """Test the merged cluster gets a story type."""
        result = learn_force_merge([
            make_cluster(1, "Jazz festival lineup announced", keywords=["concert"]),
            make_cluster(2, "Festival tickets on sale"),
        ], InMemoryRuleStore())
        assert result.merged_cluster.story_type == "whats_on"

    def test_selected_clusters_untouched(self):
        """Test token learning sees the original headlines, which stay unchanged."""
        a = make_cluster(1, "Gracia festival opens")
        b = make_cluster(2, "Festival in Gracia draws crowds today")
        learn_force_merge([a, b], InMemoryRuleStore())
        assert a.headline == "Gracia festival opens"
        assert a.article_count == 1

    def test_repeated_cluster_counts_once(self):
        """Test a cluster selected twice is merged and counted only once."""
        gracia = make_cluster(1, "Gracia festival opens")
        store = InMemoryRuleStore()

        result = learn_force_merge([gracia, gracia, make_cluster(2, "Festival in Gracia draws crowds")], store)

        assert result.merged_cluster.article_count == 2
        assert len(result.merged_cluster.sources) == 2
        assert result.merged_ids == [1, 2]
        assert store.load()[0].source_headlines == ["Gracia festival opens", "Festival in Gracia draws crowds"]

    def test_same_cluster_twice_is_rejected(self):
        """Test selecting one cluster twice is not a valid force-merge and learns nothing."""
        store = InMemoryRuleStore()
        with pytest.raises(InvalidForceMerge):
            learn_force_merge([make_cluster(1, "Gracia festival opens"), make_cluster(1, "Gracia festival opens")], store)
        assert store.load() == []
