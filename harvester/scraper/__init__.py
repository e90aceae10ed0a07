"""Scraper package — bounded crawl-and-extract pipeline."""

from harvester.scraper.extractor import extract, missing_record
from harvester.scraper.fetcher import FetchError, PageFetcher
from harvester.scraper.jobs import CrawlJob, load_job
from harvester.scraper.links import (
    LinkPattern,
    dedupe_and_shuffle,
    extract_links,
    filter_links,
    resolve_links,
)
from harvester.scraper.models import MISSING, FieldRule, FieldSpec, Page, Record, ResultTable
from harvester.scraper.pipeline import CrawlError, CrawlPipeline, CrawlState, DelayPolicy

__all__ = [
    "CrawlError",
    "CrawlJob",
    "CrawlPipeline",
    "CrawlState",
    "DelayPolicy",
    "FetchError",
    "FieldRule",
    "FieldSpec",
    "LinkPattern",
    "MISSING",
    "Page",
    "PageFetcher",
    "Record",
    "ResultTable",
    "dedupe_and_shuffle",
    "extract",
    "extract_links",
    "filter_links",
    "load_job",
    "missing_record",
    "resolve_links",
]
