"""Loading article batches and saved cluster batches from JSON files."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List

from .models import Article, Cluster

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("title", "main_content_body", "source_url")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class LoadResult:
    """Articles read from disk plus the files that could not be used."""
    articles: List[Article] = field(default_factory=list)
    errors: List[dict] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.articles)


def _iter_json_files(path: Path) -> Iterator[Path]:
    if path.is_file():
        yield path
        return
    yield from sorted(p for p in path.rglob("*.json") if p.is_file())


def _records(data) -> list:
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("articles"), list):
        return data["articles"]
    return [data]


def read_articles(path: str | Path) -> LoadResult:
    """
    Read articles from a JSON file or recursively from a directory.

    Files may hold one article object or an array of them. Records missing
    title, main_content_body or source_url are reported in `errors` rather
    than raised. Articles come back sorted by date, undated first.
    """
    root = Path(path)
    result = LoadResult()
    if not root.exists():
        result.errors.append({"file": str(root), "error": "Path does not exist"})
        return result

    for json_path in _iter_json_files(root):
        try:
            with open(json_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            result.errors.append({"file": str(json_path), "error": str(e)})
            continue

        for record in _records(data):
            if not isinstance(record, dict):
                result.errors.append({"file": str(json_path), "error": "Article must be a JSON object"})
                continue
            missing = [f for f in REQUIRED_FIELDS if not record.get(f)]
            if missing:
                result.errors.append({"file": str(json_path), "error": f"Missing fields: {', '.join(missing)}"})
                continue
            result.articles.append(Article.from_dict(record))

    result.articles.sort(key=lambda a: a.published_at or _EPOCH)
    logger.info(f"Loaded {result.count} articles from {root} ({len(result.errors)} errors)")
    return result


def read_clusters(path: str | Path) -> List[Cluster]:
    """
    Read a saved cluster batch (as written by `write_clusters`).

    Raises:
        ValueError: If the file does not hold a list of clusters
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("clusters")
    if not isinstance(data, list):
        raise ValueError(f"{path} does not contain a list of clusters")
    return [Cluster.from_dict(c) for c in data if isinstance(c, dict)]


def write_clusters(clusters: List[Cluster], path: str | Path) -> None:
    """Save a cluster batch as JSON."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with open(out, "w", encoding="utf-8") as f:
        json.dump({"clusters": [c.to_dict() for c in clusters]}, f, indent=2, ensure_ascii=False)
