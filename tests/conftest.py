"""Shared test fixtures for the news clusterer."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from news_clusterer.models import Article, Cluster, LearnedRule
from news_clusterer.rules import InMemoryRuleStore

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def make_article(index: int, title: str = None, **overrides) -> Article:
    """Build a distinct article; `index` keeps url and title unique."""
    data = dict(
        title=title or f"Article {index}",
        body=f"Body of article {index}",
        source_name=f"Source {index}",
        source_url=f"https://example.com/article{index}",
        published_at=NOW - timedelta(hours=index),
        image_urls=[f"https://img.example.com/{index}.jpg"],
        keywords=[],
    )
    data.update(overrides)
    return Article(**data)


def make_cluster(
    cluster_id: int,
    headline: str,
    keywords=(),
    summary: str = "",
    date=NOW,
    articles=None,
    indices=None,
) -> Cluster:
    """Build a cluster from one article per index (default: one article)."""
    indices = list(indices) if indices is not None else [cluster_id * 100]
    if articles is None:
        articles = [
            make_article(i, title=f"{headline} ({i})", keywords=list(keywords), published_at=date)
            for i in indices
        ]
    cluster = Cluster.from_articles(cluster_id, headline, summary, articles, indices)
    return cluster


@pytest.fixture
def articles():
    """A small batch of Barcelona stories."""
    return [
        make_article(0, "Gràcia festival budget approved", keywords=["gracia", "festival", "budget"]),
        make_article(1, "Council backs Gràcia festival spending", keywords=["gracia", "festival", "council"]),
        make_article(2, "Metro strike called for Monday", keywords=["metro", "strike", "tmb"]),
        make_article(3, "Jazz festival lineup announced", keywords=["jazz", "concert"]),
        make_article(4, "Sagrada Familia tower completed", keywords=["sagrada", "familia", "tower"]),
    ]


@pytest.fixture
def rule_store():
    """An empty in-memory rule store."""
    return InMemoryRuleStore()


@pytest.fixture
def festival_rule():
    return LearnedRule(
        tokens=["festival", "gracia"],
        source_headlines=["Gracia festival opens", "Festival in Gracia draws crowds"],
        created_at=NOW,
    )


@pytest.fixture
def mock_oracle():
    """A clustering oracle / duplicate judge that returns nothing by default."""
    oracle = MagicMock()
    oracle.propose.return_value = []
    oracle.judge.return_value = []
    return oracle
