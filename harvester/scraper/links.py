"""Link discovery: extraction, pattern filtering, resolution and deduplication."""

from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Tuple
from urllib.parse import urljoin

from harvester.scraper.models import LinkSet, Page, Worklist

logger = logging.getLogger("harvester.scraper.links")


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

def extract_links(page: Page) -> LinkSet:
    """Return every ``href`` on ``<a>`` elements of *page*, in document order.

    Values are returned literally: duplicates, fragments and relative URLs are
    all kept.  Filtering and resolution happen downstream.
    """
    return [a["href"] for a in page.soup.find_all("a", href=True)]


def resolve_links(link_set: Iterable[str], base_url: str) -> LinkSet:
    """Resolve every link against *base_url*, preserving order and duplicates.

    Hrefs that cannot be parsed as URLs (e.g. ``http://[broken``) are dropped.
    """
    resolved: LinkSet = []
    for href in link_set:
        try:
            resolved.append(urljoin(base_url, href.strip()))
        except ValueError as exc:
            logger.debug("Dropping malformed link %r on %s: %s", href, base_url, exc)
    return resolved


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LinkPattern:
    """A structural URL matcher: every sub-pattern in ``required`` must match.

    Each sub-pattern is a regular expression searched anywhere in the URL, so a
    plain substring such as ``"/listing/"`` works as-is.  An empty pattern
    matches every URL.
    """

    required: Tuple[str, ...] = ()
    _compiled: Tuple[re.Pattern, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if isinstance(self.required, str):
            object.__setattr__(self, "required", (self.required,))
        try:
            compiled = tuple(re.compile(p) for p in self.required)
        except re.error as exc:
            raise ValueError(f"Invalid link pattern {self.required!r}: {exc}") from exc
        object.__setattr__(self, "_compiled", compiled)

    @classmethod
    def from_value(cls, value: Any) -> LinkPattern:
        """Build a pattern from ``None``, a string, or a list of strings."""
        if isinstance(value, LinkPattern):
            return value
        if value is None:
            return cls()
        if isinstance(value, str):
            return cls((value,))
        if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
            return cls(tuple(value))
        raise ValueError(f"Link pattern must be a string or list of strings, got {value!r}")

    def matches(self, url: str) -> bool:
        return all(rx.search(url) for rx in self._compiled)


def filter_links(link_set: Iterable[str], pattern: LinkPattern) -> LinkSet:
    """Keep the URLs matching *pattern*, in order, duplicates preserved."""
    return [url for url in link_set if pattern.matches(url)]


# ---------------------------------------------------------------------------
# Deduplication
# ---------------------------------------------------------------------------

def dedupe_and_shuffle(
    link_sets: Iterable[Iterable[str]],
    rng: Optional[random.Random] = None,
) -> Worklist:
    """Collapse *link_sets* into unique URLs in a uniformly random order.

    Duplicates are detected by exact string equality; no URL normalisation is
    performed.
    """
    seen: set[str] = set()
    unique: List[str] = []
    for link_set in link_sets:
        for url in link_set:
            if url not in seen:
                seen.add(url)
                unique.append(url)
    (rng or random).shuffle(unique)
    return unique
