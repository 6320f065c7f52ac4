"""Data models for articles, story clusters, published posts and learned rules."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

CONTENT_SEPARATOR = "\n\n---\n\n"


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into a timezone-aware datetime.

    Accepts datetimes, ISO strings (with or without a trailing "Z") and
    empty values. Naive timestamps are assumed to be UTC. Anything that
    cannot be parsed becomes None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.debug(f"Unparseable timestamp: {value!r}")
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    """Render a datetime as ISO-8601, or None."""
    return value.isoformat() if value else None


def _unique(items) -> list:
    """Order-preserving de-duplication."""
    return list(dict.fromkeys(item for item in items if item))


def _as_number(value: Any, kind: type, default):
    """Coerce client-supplied numbers; anything non-numeric gives `default`."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return kind(value)
    except (TypeError, ValueError, OverflowError):
        return default


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item) for item in value if item is not None and item != ""]


@dataclass
class Article:
    """One ingested news item from a single source. Never mutated by the engine."""
    title: str
    body: str = ""
    source_name: str = ""
    source_url: str = ""
    original_title: str = ""
    original_language: str = "es"
    published_at: Optional[datetime] = None
    image_urls: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    profile_name: str = "barcelona_news"

    @classmethod
    def from_dict(cls, data: dict) -> "Article":
        """Build an article from its JSON shape, ignoring unknown keys."""
        return cls(
            title=str(data.get("title") or data.get("original_title") or ""),
            body=str(data.get("main_content_body") or data.get("body") or ""),
            source_name=str(data.get("source_name") or ""),
            source_url=str(data.get("source_url") or ""),
            original_title=str(data.get("original_title") or ""),
            original_language=str(data.get("original_language") or "es"),
            published_at=parse_datetime(data.get("date_time") or data.get("published_at")),
            image_urls=_string_list(data.get("image_urls")),
            keywords=_string_list(data.get("keywords")),
            profile_name=str(data.get("profile_name") or "barcelona_news"),
        )

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "original_title": self.original_title,
            "main_content_body": self.body,
            "source_name": self.source_name,
            "source_url": self.source_url,
            "original_language": self.original_language,
            "date_time": format_datetime(self.published_at),
            "image_urls": list(self.image_urls),
            "keywords": list(self.keywords),
            "profile_name": self.profile_name,
        }

    @property
    def display_title(self) -> str:
        """Title as it appeared at the source."""
        return self.original_title or self.title


@dataclass(frozen=True)
class Source:
    """Attribution for one article inside a cluster."""
    name: str
    url: str
    title: str

    @property
    def key(self) -> tuple[str, str]:
        """Identity used when merging clusters."""
        return (self.url, self.title)

    @classmethod
    def from_article(cls, article: Article) -> "Source":
        return cls(name=article.source_name, url=article.source_url, title=article.display_title)

    @classmethod
    def from_dict(cls, data: dict) -> "Source":
        return cls(
            name=str(data.get("name") or ""),
            url=str(data.get("url") or ""),
            title=str(data.get("title") or ""),
        )

    def to_dict(self) -> dict:
        return {"name": self.name, "url": self.url, "title": self.title}


@dataclass
class Cluster:
    """
    One real-world story aggregating one or more articles.

    `id` is pass-local: it is reassigned 1..N after every merge pass and must
    not be relied on across passes.
    """
    id: int
    headline: str
    summary: str = ""
    merged_content: str = ""
    sources: List[Source] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    earliest_date: Optional[datetime] = None
    article_count: int = 0
    story_type: str = "other"
    story_type_confidence: float = 0.0
    duplicate: bool = False
    duplicate_of: Optional[dict] = None
    articles: List[Article] = field(default_factory=list)
    article_indices: List[int] = field(default_factory=list)
    original_language: str = "es"
    profile_name: str = "barcelona_news"

    @classmethod
    def from_articles(
        cls,
        cluster_id: int,
        headline: str,
        summary: str,
        articles: List[Article],
        indices: Optional[List[int]] = None,
    ) -> "Cluster":
        """Aggregate a group of articles into a fresh cluster record."""
        dates = [a.published_at for a in articles if a.published_at]
        return cls(
            id=cluster_id,
            headline=headline,
            summary=summary,
            merged_content=CONTENT_SEPARATOR.join(a.body for a in articles),
            sources=[Source.from_article(a) for a in articles],
            images=_unique(url for a in articles for url in a.image_urls),
            keywords=_unique(kw for a in articles for kw in a.keywords),
            earliest_date=min(dates) if dates else None,
            article_count=len(articles),
            articles=list(articles),
            article_indices=list(indices or []),
            original_language=articles[0].original_language if articles else "es",
            profile_name=articles[0].profile_name if articles else "barcelona_news",
        )

    @classmethod
    def from_dict(cls, data: dict) -> "Cluster":
        """Rebuild a cluster from its wire shape (as produced by `to_dict`)."""
        articles = [Article.from_dict(a) for a in data.get("articles") or [] if isinstance(a, dict)]
        sources = [Source.from_dict(s) for s in data.get("sources") or [] if isinstance(s, dict)]
        duplicate_of = data.get("duplicate_of")
        article_count = data.get("article_count")
        if not isinstance(article_count, int) or isinstance(article_count, bool):
            article_count = len(articles) or len(sources)

        return cls(
            id=_as_number(data.get("cluster_id", data.get("id")), int, 0),
            headline=str(data.get("headline") or ""),
            summary=str(data.get("summary") or ""),
            merged_content=str(data.get("merged_content") or ""),
            sources=sources,
            images=_string_list(data.get("images")),
            keywords=_string_list(data.get("keywords")),
            earliest_date=parse_datetime(data.get("date") or data.get("earliest_date")),
            article_count=article_count,
            story_type=str(data.get("story_type") or "other"),
            story_type_confidence=_as_number(data.get("story_type_confidence"), float, 0.0),
            duplicate=bool(data.get("duplicate")),
            duplicate_of=dict(duplicate_of) if isinstance(duplicate_of, dict) else None,
            articles=articles,
            article_indices=[i for i in data.get("article_indices") or [] if isinstance(i, int)],
            original_language=str(data.get("original_language") or "es"),
            profile_name=str(data.get("profile_name") or "barcelona_news"),
        )

    def to_dict(self, include_articles: bool = True) -> dict:
        data = {
            "cluster_id": self.id,
            "headline": self.headline,
            "summary": self.summary,
            "article_count": self.article_count,
            "sources": [s.to_dict() for s in self.sources],
            "images": list(self.images),
            "keywords": list(self.keywords),
            "merged_content": self.merged_content,
            "date": format_datetime(self.earliest_date),
            "story_type": self.story_type,
            "story_type_confidence": self.story_type_confidence,
            "duplicate": self.duplicate,
            "duplicate_of": dict(self.duplicate_of) if self.duplicate_of else None,
            "article_indices": list(self.article_indices),
            "original_language": self.original_language,
            "profile_name": self.profile_name,
        }
        if include_articles:
            data["articles"] = [a.to_dict() for a in self.articles]
        return data


@dataclass
class RecentPost:
    """A post already published (or drafted) in the CMS."""
    id: Any
    title: str
    link: str
    date: Optional[datetime] = None
    excerpt: str = ""


@dataclass
class LearnedRule:
    """Headline tokens an operator confirmed belong to one story."""
    tokens: List[str]
    source_headlines: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        """Render the persisted record shape."""
        return {
            "tokens": list(self.tokens),
            "headlines": list(self.source_headlines),
            "createdAt": self.created_at.isoformat().replace("+00:00", "Z"),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LearnedRule":
        """
        Read a persisted record.

        Raises:
            ValueError: If the record does not have the expected structure
        """
        if not isinstance(data, dict):
            raise ValueError(f"Learned rule must be an object, got {type(data).__name__}")
        tokens = data.get("tokens")
        if not isinstance(tokens, list) or not all(isinstance(t, str) for t in tokens):
            raise ValueError("Learned rule 'tokens' must be a list of strings")
        created_at = parse_datetime(data.get("createdAt")) or datetime.now(timezone.utc)
        return cls(
            tokens=_unique(tokens),
            source_headlines=_string_list(data.get("headlines")),
            created_at=created_at,
        )
