"""Boundary with the external text-understanding oracle.

Oracle payloads are untrusted. Everything coming back is validated here:
missing fields default safely, extra fields are ignored, and individual
malformed entries are skipped rather than failing the whole response.
"""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional, Protocol, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import OracleResponseError, OracleUnavailable
from .models import Article, format_datetime

logger = logging.getLogger(__name__)

SNIPPET_CHARS = 300


class ClusterProposal(BaseModel):
    """One rough story group proposed by the clustering oracle."""
    model_config = ConfigDict(extra="ignore")

    cluster_id: Any = None
    merged_headline_en: str = ""
    article_indices: List[Any] = Field(default_factory=list)
    story_summary_en: str = ""

    @field_validator("merged_headline_en", "story_summary_en", mode="before")
    @classmethod
    def _coerce_text(cls, value):
        return "" if value is None else str(value)

    @field_validator("article_indices", mode="before")
    @classmethod
    def _coerce_indices(cls, value):
        return value if isinstance(value, list) else []

    def valid_indices(self, article_count: int) -> List[int]:
        """Indices that address a real article; everything else is dropped."""
        valid = []
        for index in self.article_indices:
            if isinstance(index, bool) or not isinstance(index, int):
                continue
            if 0 <= index < article_count:
                valid.append(index)
        return valid


class DuplicateVerdict(BaseModel):
    """The oracle's judgment for one candidate cluster."""
    model_config = ConfigDict(extra="ignore")

    cluster_id: int
    is_duplicate: bool = False
    matching_post_title: str = ""
    matching_post_link: str = ""

    @field_validator("matching_post_title", "matching_post_link", mode="before")
    @classmethod
    def _coerce_text(cls, value):
        return "" if value is None else str(value)


def _unwrap_list(payload: Any, key: str, operation: str) -> list:
    if isinstance(payload, dict) and isinstance(payload.get(key), list):
        payload = payload[key]
    if not isinstance(payload, list):
        raise OracleResponseError(
            f"Expected a JSON array from {operation}, got {type(payload).__name__}",
            operation=operation,
        )
    return payload


def parse_proposals(payload: Any) -> List[ClusterProposal]:
    """
    Validate a clustering proposal payload.

    Raises:
        OracleResponseError: If the payload is not a list of proposals
    """
    proposals = []
    for position, entry in enumerate(_unwrap_list(payload, "clusters", "propose")):
        try:
            proposals.append(ClusterProposal.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"Dropping malformed proposal entry #{position}: {e.error_count()} error(s)")
    return proposals


def parse_verdicts(payload: Any) -> List[DuplicateVerdict]:
    """
    Validate a duplicate-judgment payload.

    Raises:
        OracleResponseError: If the payload is not a list of verdicts
    """
    verdicts = []
    for position, entry in enumerate(_unwrap_list(payload, "results", "judge")):
        try:
            verdicts.append(DuplicateVerdict.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"Ignoring malformed duplicate verdict #{position}: {e.error_count()} error(s)")
    return verdicts


class ClusteringOracle(Protocol):
    def propose(self, articles: Sequence[Article]) -> Any:
        """Return the raw rough grouping for `articles`."""
        ...


class DuplicateJudge(Protocol):
    def judge(self, recent_posts: Sequence[dict], candidates: Sequence[dict]) -> Any:
        """Return raw verdicts comparing candidate clusters with published posts."""
        ...


def article_summaries(articles: Sequence[Article]) -> List[dict]:
    """Compact article descriptions sent to the clustering oracle."""
    return [
        {
            "index": i,
            "title": a.title or a.original_title,
            "original_title": a.original_title,
            "source": a.source_name,
            "snippet": (a.body or "")[:SNIPPET_CHARS],
            "date": format_datetime(a.published_at) or "",
        }
        for i, a in enumerate(articles)
    ]


def build_clustering_prompt(articles: Sequence[Article]) -> str:
    summaries = article_summaries(articles)
    return f"""You are a news editor. Analyze the following {len(summaries)} news articles and group them by topic/story.
Articles about the SAME event or subject (even from different sources, angles, or with slightly different details) should be in the same cluster.

Articles:
{json.dumps(summaries, indent=2, ensure_ascii=False)}

Return a JSON array of clusters. Each cluster should have:
- "cluster_id": unique integer starting from 1
- "merged_headline_en": a compelling English headline that covers the combined story
- "article_indices": array of article index numbers that belong to this cluster
- "story_summary_en": a 1-2 sentence English summary of what this story is about

Return ONLY the JSON array, no other text."""


def build_duplicate_prompt(recent_posts: Sequence[dict], candidates: Sequence[dict]) -> str:
    return f"""You are a news editor checking for duplicate coverage.

Here are stories ALREADY PUBLISHED on our site recently:
{json.dumps(list(recent_posts), indent=2, ensure_ascii=False)}

Here are NEW story clusters we're considering publishing:
{json.dumps(list(candidates), indent=2, ensure_ascii=False)}

For each new cluster, determine if it's essentially the SAME story as any already-published post.
Only mark as duplicate if they cover the SAME specific event/announcement, not just the same broad topic.

Return a JSON array with one object per cluster:
[{{"cluster_id": 1, "is_duplicate": true/false, "matching_post_title": "title if duplicate, empty string if not", "matching_post_link": "URL if duplicate, empty string if not"}}]

Return ONLY the JSON array."""


class GeminiOracle:
    """
    Clustering oracle and duplicate judge backed by the Gemini REST API.

    Every call is a single attempt; retries belong to the caller.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-pro",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 120.0,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)

    def propose(self, articles: Sequence[Article]) -> Any:
        return self.generate_json(build_clustering_prompt(articles), operation="propose")

    def judge(self, recent_posts: Sequence[dict], candidates: Sequence[dict]) -> Any:
        return self.generate_json(build_duplicate_prompt(recent_posts, candidates), operation="judge")

    def generate_json(self, prompt: str, operation: str) -> Any:
        """
        Send a prompt and decode the JSON answer.

        Raises:
            OracleUnavailable: On transport errors or non-2xx responses
            OracleResponseError: If the answer is not JSON
        """
        if not self.api_key:
            raise OracleUnavailable("GEMINI_API_KEY is not configured", operation=operation)

        url = f"{self.base_url}/models/{self.model}:generateContent"
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"responseMimeType": "application/json"},
        }

        try:
            response = self.client.post(url, params={"key": self.api_key}, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise OracleUnavailable(
                f"Gemini {self.model} returned {e.response.status_code} during {operation}",
                operation=operation,
            ) from e
        except httpx.HTTPError as e:
            raise OracleUnavailable(f"Gemini {self.model} unreachable during {operation}: {e}", operation=operation) from e

        try:
            data = response.json()
            text = "".join(
                part.get("text", "")
                for part in data["candidates"][0]["content"]["parts"]
            )
            return json.loads(text)
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            raise OracleResponseError(f"Gemini returned an unusable {operation} answer: {e}", operation=operation) from e
