"""Harvester CLI — entry-point for crawl jobs and selector debugging.

Usage:
    python cli/main.py --help

Commands:
    crawl    → run a crawl job file and write the result table
    extract  → fetch one page and print the extracted record
    links    → fetch one page and print its (filtered) links
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the project root is on sys.path so that `from harvester.xxx import ...`
# works when the CLI is invoked as `python cli/main.py` from any directory.
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

import json
import logging
from typing import List, Optional

import typer

from harvester.config import settings
from harvester.scraper.extractor import extract
from harvester.scraper.fetcher import FetchError, PageFetcher
from harvester.scraper.jobs import load_job
from harvester.scraper.links import LinkPattern, extract_links, filter_links, resolve_links
from harvester.scraper.models import FieldSpec
from harvester.scraper.pipeline import CrawlError
from harvester.scraper.sinks import write_csv, write_json

app = typer.Typer(
    name="harvest",
    help="Harvester crawl-and-extract CLI.",
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# crawl
# ---------------------------------------------------------------------------
@app.command("crawl")
def crawl(
    job_file: Path = typer.Argument(..., help="Path to a JSON crawl job."),
    out: Optional[Path] = typer.Option(None, "--out", help="Output file (defaults to <output_dir>/<job>.<format>)."),
    fmt: str = typer.Option("csv", "--format", help="Output format: csv | json."),
    max_leaves: Optional[int] = typer.Option(None, "--max-leaves", help="Override the job's max_leaf_count."),
) -> None:
    """Run a crawl job and write one row per leaf page."""
    if fmt not in ("csv", "json"):
        typer.echo(f"[crawl] Unknown format {fmt!r}. Use: csv | json")
        raise typer.Exit(1)

    try:
        job = load_job(job_file).with_overrides(max_leaf_count=max_leaves)
    except ValueError as e:
        typer.echo(f"[crawl] Invalid job: {e}")
        raise typer.Exit(1)

    typer.echo(
        f"[crawl] Seed {job.seed_url!r}  max_leaves={job.max_leaf_count}  "
        f"delay={job.delay[0]:g}-{job.delay[1]:g}s"
    )
    pipeline = job.build_pipeline()
    try:
        table = pipeline.run()
    except CrawlError as e:
        typer.echo(f"[crawl] ❌ {e}")
        raise typer.Exit(1)

    typer.echo(f"[crawl] {pipeline.stats.summary()}")

    if out is None:
        settings.ensure_output_dir()
        out = settings.output_dir / f"{job_file.stem}.{fmt}"
    path = write_csv(table, out) if fmt == "csv" else write_json(table, out)
    typer.echo(f"[crawl] ✅ Wrote {len(table)} rows to {path}")


# ---------------------------------------------------------------------------
# extract
# ---------------------------------------------------------------------------
def _parse_fields(specs: List[str]) -> FieldSpec:
    rules = {}
    for item in specs:
        name, sep, selector = item.partition("=")
        if not sep or not name.strip() or not selector.strip():
            raise ValueError(f"Field must look like name=selector, got {item!r}")
        rules[name.strip()] = selector.strip()
    return FieldSpec(rules)


@app.command("extract")
def extract_cmd(
    url: str = typer.Option(..., help="Page to extract from."),
    field: List[str] = typer.Option(..., "--field", help="Field as name=css-selector (repeatable)."),
) -> None:
    """Fetch a single page and print the extracted record as JSON."""
    try:
        field_spec = _parse_fields(field)
    except ValueError as e:
        typer.echo(f"[extract] {e}")
        raise typer.Exit(1)

    try:
        with PageFetcher() as fetcher:
            page = fetcher.fetch(url)
    except FetchError as e:
        typer.echo(f"[extract] ❌ {e}")
        raise typer.Exit(1)

    record = extract(page, field_spec)
    missing = [name for name in record if record.is_missing(name)]
    typer.echo(json.dumps(record.as_row(), indent=2, ensure_ascii=False))
    if missing:
        typer.echo(f"[extract] Missing: {', '.join(missing)}")


# ---------------------------------------------------------------------------
# links
# ---------------------------------------------------------------------------
@app.command("links")
def links_cmd(
    url: str = typer.Option(..., help="Page to list links from."),
    pattern: List[str] = typer.Option([], "--pattern", help="Required sub-pattern (repeatable)."),
    resolve: bool = typer.Option(False, "--resolve", help="Resolve relative links against the page URL."),
) -> None:
    """Print the links on a page that match every --pattern."""
    try:
        link_pattern = LinkPattern(tuple(pattern))
    except ValueError as e:
        typer.echo(f"[links] {e}")
        raise typer.Exit(1)

    try:
        with PageFetcher() as fetcher:
            page = fetcher.fetch(url)
    except FetchError as e:
        typer.echo(f"[links] ❌ {e}")
        raise typer.Exit(1)

    found = extract_links(page)
    if resolve:
        found = resolve_links(found, page.url)
    matched = filter_links(found, link_pattern)
    typer.echo(f"[links] {len(matched)} of {len(found)} links match")
    for link in matched:
        typer.echo(f"  {link}")


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    app()
