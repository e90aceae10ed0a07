"""Two-level crawl orchestration.

``CrawlPipeline.run`` walks a strictly linear state machine::

    Seeding → IndexDiscovery → LeafDiscovery → LeafFetching → Done

    seed page ─► index pages ─► leaf links ─► worklist ─► records

Only a seed-fetch failure is fatal.  A failed index page is skipped, and a
failed leaf page yields an all-missing record so the table keeps one row per
attempted URL.  Fetches are sequential; each leaf fetch is preceded by a
blocking politeness delay, discovery fetches are not.
"""

from __future__ import annotations

import enum
import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from harvester.config import settings
from harvester.scraper.extractor import extract, missing_record
from harvester.scraper.fetcher import FetchError, PageFetcher
from harvester.scraper.links import (
    LinkPattern,
    dedupe_and_shuffle,
    extract_links,
    filter_links,
    resolve_links,
)
from harvester.scraper.models import FieldSpec, LinkSet, Page, ResultTable, Worklist

logger = logging.getLogger("harvester.scraper.pipeline")


class CrawlError(Exception):
    """The crawl could not start because the seed page was unreachable."""

    def __init__(self, seed_url: str, cause: FetchError) -> None:
        super().__init__(f"Seed page {seed_url} is unreachable: {cause.reason}")
        self.seed_url = seed_url


class CrawlState(enum.Enum):
    SEEDING = "seeding"
    INDEX_DISCOVERY = "index_discovery"
    LEAF_DISCOVERY = "leaf_discovery"
    LEAF_FETCHING = "leaf_fetching"
    DONE = "done"


# ---------------------------------------------------------------------------
# Delay policy
# ---------------------------------------------------------------------------

class DelayPolicy:
    """Blocking wait drawn uniformly from ``[min_seconds, max_seconds]``."""

    def __init__(
        self,
        min_seconds: float,
        max_seconds: float,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if min_seconds < 0 or max_seconds < min_seconds:
            raise ValueError(
                f"Invalid delay range [{min_seconds}, {max_seconds}]: "
                "need 0 <= min_seconds <= max_seconds"
            )
        self.min_seconds = min_seconds
        self.max_seconds = max_seconds
        self._rng = rng or random.Random()
        self._sleep = sleep

    def wait(self) -> float:
        seconds = self._rng.uniform(self.min_seconds, self.max_seconds)
        logger.debug("Politeness delay %.2fs", seconds)
        self._sleep(seconds)
        return seconds


@dataclass
class CrawlStats:
    """Counters collected during one crawl, for logging and reporting."""

    index_pages_found: int = 0
    index_pages_skipped: int = 0
    leaf_links_found: int = 0
    worklist_size: int = 0
    leaf_pages_attempted: int = 0
    leaf_pages_failed: int = 0

    def summary(self) -> str:
        return (
            f"index={self.index_pages_found} (skipped {self.index_pages_skipped}) "
            f"leaf_links={self.leaf_links_found} worklist={self.worklist_size} "
            f"attempted={self.leaf_pages_attempted} failed={self.leaf_pages_failed}"
        )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class CrawlPipeline:
    """Crawl one seed to completion and return a :class:`ResultTable`.

    Args:
        seed_url: Page listing the index (pagination) pages.
        index_pattern: Selects index-page links on the seed page.
        leaf_pattern: Selects leaf (detail) links on each index page.
        field_spec: Fields to extract from every leaf page.
        max_leaf_count: Upper bound on leaf pages fetched.
        delay: Politeness delay applied before every leaf fetch.  Defaults to
            the configured ``settings.delay_range``.
        fetcher: Page fetcher; one is created (and closed) if omitted.
        resolve_urls: Resolve relative links against the page they came from
            before filtering.
        rng: Random source for the worklist shuffle.

    A pipeline instance runs exactly once.
    """

    def __init__(
        self,
        seed_url: str,
        index_pattern: LinkPattern,
        leaf_pattern: LinkPattern,
        field_spec: FieldSpec,
        max_leaf_count: int,
        delay: Optional[DelayPolicy] = None,
        fetcher: Optional[PageFetcher] = None,
        resolve_urls: bool = True,
        rng: Optional[random.Random] = None,
    ) -> None:
        if max_leaf_count < 0:
            raise ValueError("max_leaf_count must be >= 0")
        self.seed_url = seed_url
        self.index_pattern = index_pattern
        self.leaf_pattern = leaf_pattern
        self.field_spec = field_spec
        self.max_leaf_count = max_leaf_count
        self.delay = delay or DelayPolicy(*settings.delay_range)
        self.resolve_urls = resolve_urls
        self.rng = rng
        self.stats = CrawlStats()
        self.state = CrawlState.SEEDING
        self.worklist: Worklist = []

        self._fetcher = fetcher
        self._owns_fetcher = fetcher is None
        self._started = False
        self._table = ResultTable(list(field_spec), capacity=max_leaf_count)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def run(self) -> ResultTable:
        """Execute the crawl.

        Raises:
            CrawlError: If the seed page cannot be fetched.
            RuntimeError: If this pipeline has already been run.
        """
        if self._started:
            raise RuntimeError("CrawlPipeline instances cannot be reused")
        self._started = True

        fetcher = self._fetcher or PageFetcher()
        try:
            seed = self._seed(fetcher)
            index_urls = self._discover_index_pages(seed)
            if index_urls:
                self._discover_leaf_pages(fetcher, index_urls)
                self._fetch_leaf_pages(fetcher)
        finally:
            if self._owns_fetcher:
                fetcher.close()

        self._transition(CrawlState.DONE)
        logger.info("Crawl done seed=%s rows=%d %s", self.seed_url, len(self._table), self.stats.summary())
        return self._table

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------
    def _seed(self, fetcher: PageFetcher) -> Page:
        logger.info("Seeding from %s", self.seed_url)
        try:
            return fetcher.fetch(self.seed_url)
        except FetchError as exc:
            logger.error("Seed fetch failed url=%s: %s", self.seed_url, exc.reason)
            raise CrawlError(self.seed_url, exc) from exc

    def _discover_index_pages(self, seed: Page) -> LinkSet:
        self._transition(CrawlState.INDEX_DISCOVERY)
        index_urls = self._matching_links(seed, self.index_pattern)
        self.stats.index_pages_found = len(index_urls)
        if not index_urls:
            logger.info("No index pages matched %r on %s", self.index_pattern.required, seed.url)
        return index_urls

    def _discover_leaf_pages(self, fetcher: PageFetcher, index_urls: LinkSet) -> None:
        self._transition(CrawlState.LEAF_DISCOVERY)
        link_sets: List[LinkSet] = []
        for url in index_urls:
            try:
                page = fetcher.fetch(url)
            except FetchError as exc:
                self.stats.index_pages_skipped += 1
                logger.warning("Skipping index page url=%s: %s", url, exc.reason)
                continue
            leaves = self._matching_links(page, self.leaf_pattern)
            logger.debug("Index page url=%s leaf_links=%d", url, len(leaves))
            self.stats.leaf_links_found += len(leaves)
            link_sets.append(leaves)

        self.worklist = dedupe_and_shuffle(link_sets, rng=self.rng)
        self.stats.worklist_size = len(self.worklist)

    def _fetch_leaf_pages(self, fetcher: PageFetcher) -> None:
        self._transition(CrawlState.LEAF_FETCHING)
        targets = self.worklist[: self.max_leaf_count]
        logger.info("Fetching %d of %d leaf pages", len(targets), len(self.worklist))
        for n, url in enumerate(targets, start=1):
            self.delay.wait()
            self.stats.leaf_pages_attempted += 1
            try:
                page = fetcher.fetch(url)
            except FetchError as exc:
                self.stats.leaf_pages_failed += 1
                logger.warning("Leaf fetch failed url=%s: %s", url, exc.reason)
                self._table.append(missing_record(self.field_spec, url))
                continue
            self._table.append(extract(page, self.field_spec))
            logger.debug("Leaf %d/%d done url=%s", n, len(targets), url)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _matching_links(self, page: Page, pattern: LinkPattern) -> LinkSet:
        links = extract_links(page)
        if self.resolve_urls:
            links = resolve_links(links, page.url)
        return filter_links(links, pattern)

    def _transition(self, state: CrawlState) -> None:
        logger.debug("State %s -> %s", self.state.value, state.value)
        self.state = state
