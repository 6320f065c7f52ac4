"""Read access to recently published posts in the CMS."""

from __future__ import annotations

import html
import logging
import re
from datetime import datetime
from typing import Iterable, List, Optional, Protocol

import httpx

from .errors import PublishingStoreError
from .models import RecentPost, parse_datetime

logger = logging.getLogger(__name__)

_TAG = re.compile(r"<[^>]+>")


def strip_html(text: str) -> str:
    """Drop tags and decode entities from a rendered WordPress field."""
    return html.unescape(_TAG.sub("", text or "")).strip()


class PublishingStore(Protocol):
    def list_recent(self, since: datetime) -> List[RecentPost]:
        """Posts published or drafted at or after `since`."""
        ...


class StaticPublishingStore:
    """Publishing store over a fixed list of posts."""

    def __init__(self, posts: Iterable[RecentPost] = ()):
        self.posts = list(posts)

    def list_recent(self, since: datetime) -> List[RecentPost]:
        return [p for p in self.posts if p.date is None or p.date >= since]


class WordPressStore:
    """Lists recent posts through the WordPress REST API."""

    def __init__(
        self,
        base_url: str,
        user: str = "",
        app_password: str = "",
        timeout: float = 30.0,
        per_page: int = 100,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.per_page = per_page
        auth = (user, app_password) if user and app_password else None
        self.client = client or httpx.Client(timeout=timeout, follow_redirects=True, auth=auth)

    def list_recent(self, since: datetime) -> List[RecentPost]:
        """
        Fetch posts (published and drafts) created since `since`.

        Raises:
            PublishingStoreError: If WordPress cannot be reached or answers badly
        """
        params = {
            "after": since.isoformat(),
            "per_page": self.per_page,
            "status": "publish,draft",
            "_fields": "id,title,link,date,excerpt",
        }
        url = f"{self.base_url}/wp-json/wp/v2/posts"

        try:
            response = self.client.get(url, params=params)
            response.raise_for_status()
            posts = response.json()
        except httpx.HTTPStatusError as e:
            raise PublishingStoreError(f"WordPress API returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise PublishingStoreError(f"WordPress API unreachable: {e}") from e
        except ValueError as e:
            raise PublishingStoreError(f"WordPress API returned invalid JSON: {e}") from e

        if not isinstance(posts, list):
            raise PublishingStoreError(f"WordPress API returned {type(posts).__name__}, expected a list")

        recent = []
        for post in posts:
            if not isinstance(post, dict):
                continue
            recent.append(RecentPost(
                id=post.get("id"),
                title=strip_html(_rendered(post.get("title"))),
                link=str(post.get("link") or ""),
                date=parse_datetime(post.get("date")),
                excerpt=strip_html(_rendered(post.get("excerpt"))),
            ))

        logger.debug(f"Fetched {len(recent)} recent posts from {self.base_url}")
        return recent


def _rendered(field) -> str:
    if isinstance(field, dict):
        return str(field.get("rendered") or "")
    return str(field or "")
