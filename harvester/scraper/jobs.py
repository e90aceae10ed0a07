"""Crawl job files: a JSON description of one seed-driven crawl.

Example::

    {
      "seed_url": "https://example.com/rentals",
      "index_pattern": ["/rentals/page-\\d+"],
      "leaf_pattern": "/listing/",
      "fields": {
        "title": "h1",
        "price": {"selector": ".price", "coerce": "number"},
        "beds": {"selector": ".beds", "coerce": "int"},
        "photo": {"selector": "img.hero", "attribute": "src"}
      },
      "max_leaf_count": 25,
      "delay": [10, 30]
    }

Keys omitted from the file fall back to :data:`harvester.config.settings`.
"""

from __future__ import annotations

import json
import random
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

from harvester.config import settings
from harvester.scraper.fetcher import PageFetcher
from harvester.scraper.links import LinkPattern
from harvester.scraper.models import FieldSpec
from harvester.scraper.pipeline import CrawlPipeline, DelayPolicy
from harvester.scraper.sinks import URL_COLUMN

_KNOWN_KEYS = {
    "seed_url",
    "index_pattern",
    "leaf_pattern",
    "fields",
    "max_leaf_count",
    "delay",
    "resolve_urls",
    "seed",
}


@dataclass
class CrawlJob:
    seed_url: str
    index_pattern: LinkPattern
    leaf_pattern: LinkPattern
    field_spec: FieldSpec
    max_leaf_count: int = field(default_factory=lambda: settings.max_leaf_count)
    delay: Tuple[float, float] = field(default_factory=lambda: settings.delay_range)
    resolve_urls: bool = True
    seed: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CrawlJob:
        """Validate and build a job.  Raises ``ValueError`` naming the bad key."""
        unknown = set(data) - _KNOWN_KEYS
        if unknown:
            raise ValueError(f"Unknown job keys: {sorted(unknown)}")

        seed_url = data.get("seed_url")
        if not isinstance(seed_url, str) or not seed_url.startswith(("http://", "https://")):
            raise ValueError(f"'seed_url' must be an http(s) URL, got {seed_url!r}")
        if "fields" not in data or not isinstance(data["fields"], Mapping):
            raise ValueError("'fields' must be an object mapping field names to rules")

        kwargs: dict[str, Any] = {
            "seed_url": seed_url,
            "index_pattern": _pattern(data, "index_pattern"),
            "leaf_pattern": _pattern(data, "leaf_pattern"),
            "field_spec": _field_spec(data["fields"]),
        }

        if "max_leaf_count" in data:
            count = data["max_leaf_count"]
            if not isinstance(count, int) or isinstance(count, bool) or count < 0:
                raise ValueError(f"'max_leaf_count' must be a non-negative integer, got {count!r}")
            kwargs["max_leaf_count"] = count

        if "delay" in data:
            delay = data["delay"]
            if (
                not isinstance(delay, (list, tuple))
                or len(delay) != 2
                or not all(isinstance(v, (int, float)) for v in delay)
            ):
                raise ValueError(f"'delay' must be [min_seconds, max_seconds], got {delay!r}")
            if delay[0] < 0 or delay[1] < delay[0]:
                raise ValueError(f"'delay' range is invalid: {delay!r}")
            kwargs["delay"] = (float(delay[0]), float(delay[1]))

        if "resolve_urls" in data:
            if not isinstance(data["resolve_urls"], bool):
                raise ValueError("'resolve_urls' must be true or false")
            kwargs["resolve_urls"] = data["resolve_urls"]

        if "seed" in data:
            if data["seed"] is not None and not isinstance(data["seed"], int):
                raise ValueError("'seed' must be an integer")
            kwargs["seed"] = data["seed"]

        return cls(**kwargs)

    @classmethod
    def from_json(cls, text: str) -> CrawlJob:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Job file is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError("Job file must contain a JSON object")
        return cls.from_dict(data)

    def with_overrides(self, max_leaf_count: Optional[int] = None) -> CrawlJob:
        """Return a copy with CLI-level overrides applied."""
        if max_leaf_count is None:
            return self
        if max_leaf_count < 0:
            raise ValueError("max_leaf_count must be >= 0")
        return replace(self, max_leaf_count=max_leaf_count)

    def build_pipeline(self, fetcher: Optional[PageFetcher] = None) -> CrawlPipeline:
        rng = random.Random(self.seed) if self.seed is not None else None
        return CrawlPipeline(
            seed_url=self.seed_url,
            index_pattern=self.index_pattern,
            leaf_pattern=self.leaf_pattern,
            field_spec=self.field_spec,
            max_leaf_count=self.max_leaf_count,
            delay=DelayPolicy(*self.delay, rng=rng),
            fetcher=fetcher,
            resolve_urls=self.resolve_urls,
            rng=rng,
        )


def load_job(path: Path) -> CrawlJob:
    """Read and validate a job file."""
    path = Path(path)
    if not path.exists():
        raise ValueError(f"Job file not found: {path}")
    return CrawlJob.from_json(path.read_text(encoding="utf-8"))


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _pattern(data: Mapping[str, Any], key: str) -> LinkPattern:
    if key not in data:
        raise ValueError(f"'{key}' is required")
    try:
        return LinkPattern.from_value(data[key])
    except ValueError as exc:
        raise ValueError(f"'{key}': {exc}") from exc


def _field_spec(fields: Mapping[str, Any]) -> FieldSpec:
    if URL_COLUMN in fields:
        raise ValueError(f"'fields': {URL_COLUMN!r} is reserved for the source URL column")
    try:
        return FieldSpec.from_dict(fields)
    except ValueError as exc:
        raise ValueError(f"'fields': {exc}") from exc
