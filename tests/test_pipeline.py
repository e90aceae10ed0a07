"""End-to-end tests for the two-level crawl pipeline.

Mocking strategy:
- ``respx`` serves the seed, index and leaf pages at the httpx transport layer.
- The politeness delay gets a recording ``sleep`` so tests never wait.
"""

from __future__ import annotations

import random
from unittest.mock import patch
from typing import List

import httpx
import pytest
import respx

from harvester.scraper.fetcher import PageFetcher
from harvester.scraper.links import LinkPattern
from harvester.scraper.models import MISSING, FieldSpec
from harvester.scraper.pipeline import CrawlError, CrawlPipeline, CrawlState, DelayPolicy

_BASE = "https://rentals.example.com"
_SEED = f"{_BASE}/search"

_FIELDS = FieldSpec({
    "title": "h1",
    "price": {"selector": ".price", "coerce": "number"},
    "beds": {"selector": ".beds", "coerce": "int"},
})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _links_page(*hrefs: str) -> str:
    anchors = "".join(f'<a href="{h}">{h}</a>' for h in hrefs)
    return (
        "<html><body>"
        '<nav><a href="/">Home</a><a href="/help">Help</a></nav>'
        f"{anchors}"
        "</body></html>"
    )


def _leaf_page(title: str, price: str | None = "$1,200", beds: str | None = "2 beds") -> str:
    parts = [f"<h1>{title}</h1>"]
    if price is not None:
        parts.append(f'<span class="price">{price}</span>')
    if beds is not None:
        parts.append(f'<span class="beds">{beds}</span>')
    return f"<html><body>{''.join(parts)}</body></html>"


class _RecordingSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _pipeline(max_leaf_count: int, sleep: _RecordingSleep | None = None, **kwargs) -> CrawlPipeline:
    delay = DelayPolicy(10, 30, rng=random.Random(1), sleep=sleep or _RecordingSleep())
    return CrawlPipeline(
        seed_url=_SEED,
        index_pattern=LinkPattern(("/search/page-",)),
        leaf_pattern=LinkPattern(("/listing/",)),
        field_spec=_FIELDS,
        max_leaf_count=max_leaf_count,
        delay=delay,
        fetcher=kwargs.pop("fetcher", None) or PageFetcher(),
        rng=random.Random(42),
        **kwargs,
    )


def _mock_leaves(router=respx) -> respx.Route:
    def _respond(request: httpx.Request) -> httpx.Response:
        listing_id = request.url.path.rsplit("/", 1)[-1]
        return httpx.Response(200, text=_leaf_page(f"Listing {listing_id}"))

    return router.get(url__regex=rf"{_BASE}/listing/\d+").mock(side_effect=_respond)


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------

class TestCrawlScenarios:
    def test_shared_leaves_are_deduplicated_and_bounded(self) -> None:
        """2 index pages x 5 leaves with 3 shared -> 7 unique, 3 fetched."""
        sleep = _RecordingSleep()
        with respx.mock:
            respx.get(_SEED).mock(return_value=httpx.Response(
                200, text=_links_page("/search/page-1", "/search/page-2", "/about")
            ))
            respx.get(f"{_BASE}/search/page-1").mock(return_value=httpx.Response(
                200, text=_links_page(*[f"/listing/{i}" for i in (1, 2, 3, 4, 5)])
            ))
            respx.get(f"{_BASE}/search/page-2").mock(return_value=httpx.Response(
                200, text=_links_page(*[f"/listing/{i}" for i in (3, 4, 5, 6, 7)])
            ))
            leaves = _mock_leaves()

            pipeline = _pipeline(max_leaf_count=3, sleep=sleep)
            table = pipeline.run()

        assert len(pipeline.worklist) == 7
        assert len(set(pipeline.worklist)) == 7
        assert len(table) == 3
        assert leaves.call_count == 3
        assert pipeline.stats.leaf_links_found == 10
        assert pipeline.state is CrawlState.DONE
        for record in table:
            assert set(record.keys()) == set(_FIELDS.keys())
            assert record["price"] == 1200.0
            assert record["beds"] == 2
            assert record.url in pipeline.worklist[:3]

    def test_seed_failure_is_fatal(self) -> None:
        with respx.mock(assert_all_called=False) as router:
            router.get(_SEED).mock(return_value=httpx.Response(503))
            index = router.get(url__regex=rf"{_BASE}/search/page-\d").mock(return_value=httpx.Response(200))
            pipeline = _pipeline(max_leaf_count=3)
            with pytest.raises(CrawlError) as excinfo:
                pipeline.run()

        assert excinfo.value.seed_url == _SEED
        assert _SEED in str(excinfo.value)
        assert "503" in str(excinfo.value.__cause__)
        assert index.call_count == 0

    def test_failed_leaf_yields_all_missing_row(self) -> None:
        bad = f"{_BASE}/listing/2"
        with respx.mock:
            respx.get(_SEED).mock(return_value=httpx.Response(
                200, text=_links_page("/search/page-1")
            ))
            respx.get(f"{_BASE}/search/page-1").mock(return_value=httpx.Response(
                200, text=_links_page("/listing/1", "/listing/2", "/listing/3")
            ))
            respx.get(bad).mock(return_value=httpx.Response(500))
            respx.get(f"{_BASE}/listing/1").mock(return_value=httpx.Response(200, text=_leaf_page("One")))
            respx.get(f"{_BASE}/listing/3").mock(return_value=httpx.Response(200, text=_leaf_page("Three")))

            pipeline = _pipeline(max_leaf_count=3)
            table = pipeline.run()

        assert len(table) == 3
        by_url = {record.url: record for record in table}
        assert by_url[bad].all_missing
        for url, title in ((f"{_BASE}/listing/1", "One"), (f"{_BASE}/listing/3", "Three")):
            record = by_url[url]
            assert record["title"] == title
            assert record["price"] == 1200.0
            assert record["beds"] == 2
        assert pipeline.stats.leaf_pages_failed == 1

    def test_missing_price_keeps_beds(self) -> None:
        with respx.mock:
            respx.get(_SEED).mock(return_value=httpx.Response(
                200, text=_links_page("/search/page-1")
            ))
            respx.get(f"{_BASE}/search/page-1").mock(return_value=httpx.Response(
                200, text=_links_page("/listing/1")
            ))
            respx.get(f"{_BASE}/listing/1").mock(return_value=httpx.Response(
                200, text=_leaf_page("No price", price=None, beds="3 beds")
            ))

            table = _pipeline(max_leaf_count=5).run()

        assert len(table) == 1
        assert table[0]["price"] is MISSING
        assert table[0]["beds"] == 3


class TestCrawlPolicies:
    def test_no_index_pages_gives_empty_table(self) -> None:
        with respx.mock:
            respx.get(_SEED).mock(return_value=httpx.Response(200, text=_links_page("/about")))
            pipeline = _pipeline(max_leaf_count=3)
            table = pipeline.run()

        assert len(table) == 0
        assert table.columns == ["title", "price", "beds"]
        assert pipeline.state is CrawlState.DONE

    def test_failed_index_page_is_skipped(self) -> None:
        with respx.mock:
            respx.get(_SEED).mock(return_value=httpx.Response(
                200, text=_links_page("/search/page-1", "/search/page-2")
            ))
            respx.get(f"{_BASE}/search/page-1").mock(return_value=httpx.Response(404))
            respx.get(f"{_BASE}/search/page-2").mock(return_value=httpx.Response(
                200, text=_links_page("/listing/8", "/listing/9")
            ))
            _mock_leaves()

            pipeline = _pipeline(max_leaf_count=10)
            table = pipeline.run()

        assert pipeline.stats.index_pages_skipped == 1
        assert sorted(pipeline.worklist) == [f"{_BASE}/listing/8", f"{_BASE}/listing/9"]
        assert len(table) == 2

    def test_delay_applied_only_before_leaf_fetches(self) -> None:
        sleep = _RecordingSleep()
        with respx.mock:
            respx.get(_SEED).mock(return_value=httpx.Response(
                200, text=_links_page("/search/page-1", "/search/page-2")
            ))
            respx.get(url__regex=rf"{_BASE}/search/page-\d").mock(return_value=httpx.Response(
                200, text=_links_page("/listing/1", "/listing/2", "/listing/3", "/listing/4")
            ))
            _mock_leaves()

            _pipeline(max_leaf_count=2, sleep=sleep).run()

        assert len(sleep.calls) == 2
        assert all(10 <= s <= 30 for s in sleep.calls)

    def test_zero_leaf_count_fetches_no_leaves(self) -> None:
        sleep = _RecordingSleep()
        with respx.mock(assert_all_called=False) as router:
            router.get(_SEED).mock(return_value=httpx.Response(
                200, text=_links_page("/search/page-1")
            ))
            router.get(f"{_BASE}/search/page-1").mock(return_value=httpx.Response(
                200, text=_links_page("/listing/1")
            ))
            leaves = _mock_leaves(router)

            table = _pipeline(max_leaf_count=0, sleep=sleep).run()

        assert len(table) == 0
        assert leaves.call_count == 0
        assert sleep.calls == []

    def test_unresolved_links_are_filtered_literally(self) -> None:
        with respx.mock:
            respx.get(_SEED).mock(return_value=httpx.Response(
                200, text=_links_page(f"{_BASE}/search/page-1", "/search/page-2")
            ))
            respx.get(f"{_BASE}/search/page-1").mock(return_value=httpx.Response(
                200, text=_links_page(f"{_BASE}/listing/5", "/listing/6")
            ))
            _mock_leaves()

            pipeline = CrawlPipeline(
                seed_url=_SEED,
                index_pattern=LinkPattern((r"^https://", "/search/page-")),
                leaf_pattern=LinkPattern((r"^https://", "/listing/")),
                field_spec=_FIELDS,
                max_leaf_count=5,
                delay=DelayPolicy(0, 0, sleep=_RecordingSleep()),
                fetcher=PageFetcher(),
                resolve_urls=False,
            )
            table = pipeline.run()

        assert pipeline.worklist == [f"{_BASE}/listing/5"]
        assert len(table) == 1

    def test_pipeline_cannot_be_reused(self) -> None:
        with respx.mock:
            respx.get(_SEED).mock(return_value=httpx.Response(200, text=_links_page()))
            pipeline = _pipeline(max_leaf_count=1)
            pipeline.run()
            with pytest.raises(RuntimeError):
                pipeline.run()


class TestDelayPolicy:
    def test_rejects_inverted_range(self) -> None:
        with pytest.raises(ValueError):
            DelayPolicy(30, 10)

    def test_rejects_negative(self) -> None:
        with pytest.raises(ValueError):
            DelayPolicy(-1, 5)

    def test_wait_within_range(self) -> None:
        sleep = _RecordingSleep()
        policy = DelayPolicy(10, 30, rng=random.Random(3), sleep=sleep)
        waited = [policy.wait() for _ in range(20)]
        assert sleep.calls == waited
        assert all(10 <= s <= 30 for s in waited)


class TestMalformedLinks:
    def test_unparseable_href_on_index_page_is_dropped(self) -> None:
        with respx.mock:
            respx.get(_SEED).mock(return_value=httpx.Response(
                200, text=_links_page("/search/page-1")
            ))
            respx.get(f"{_BASE}/search/page-1").mock(return_value=httpx.Response(
                200, text=_links_page("/listing/1", "http://[broken/listing/2", "/listing/3")
            ))
            _mock_leaves()

            pipeline = _pipeline(max_leaf_count=5)
            table = pipeline.run()

        assert sorted(pipeline.worklist) == [f"{_BASE}/listing/1", f"{_BASE}/listing/3"]
        assert len(table) == 2
        assert not any(record.all_missing for record in table)

    def test_unfetchable_leaf_url_yields_all_missing_row(self) -> None:
        bad = "https://" + "ä" * 70 + ".example.com/listing/9"
        with respx.mock:
            respx.get(_SEED).mock(return_value=httpx.Response(
                200, text=_links_page("/search/page-1")
            ))
            respx.get(f"{_BASE}/search/page-1").mock(return_value=httpx.Response(
                200, text=_links_page("/listing/1", bad)
            ))
            _mock_leaves()

            pipeline = _pipeline(max_leaf_count=5)
            table = pipeline.run()

        assert len(table) == 2
        by_url = {record.url: record for record in table}
        assert by_url[bad].all_missing
        assert by_url[f"{_BASE}/listing/1"]["beds"] == 2
        assert pipeline.stats.leaf_pages_failed == 1


class TestFetcherOwnership:
    def _bare_pipeline(self, fetcher: PageFetcher | None = None) -> CrawlPipeline:
        return CrawlPipeline(
            seed_url=_SEED,
            index_pattern=LinkPattern(("/search/page-",)),
            leaf_pattern=LinkPattern(("/listing/",)),
            field_spec=_FIELDS,
            max_leaf_count=2,
            delay=DelayPolicy(0, 0, sleep=_RecordingSleep()),
            fetcher=fetcher,
        )

    def test_creates_and_closes_own_fetcher(self) -> None:
        with respx.mock:
            respx.get(_SEED).mock(return_value=httpx.Response(
                200, text=_links_page("/search/page-1")
            ))
            respx.get(f"{_BASE}/search/page-1").mock(return_value=httpx.Response(
                200, text=_links_page("/listing/1")
            ))
            _mock_leaves()
            with patch("harvester.scraper.pipeline.PageFetcher.close", autospec=True) as mock_close:
                table = self._bare_pipeline().run()

        assert len(table) == 1
        assert table[0]["title"] == "Listing 1"
        mock_close.assert_called_once()

    def test_closes_own_fetcher_when_seed_fails(self) -> None:
        with respx.mock:
            respx.get(_SEED).mock(return_value=httpx.Response(500))
            with patch("harvester.scraper.pipeline.PageFetcher.close", autospec=True) as mock_close:
                with pytest.raises(CrawlError):
                    self._bare_pipeline().run()

        mock_close.assert_called_once()

    def test_leaves_caller_fetcher_open(self) -> None:
        with respx.mock:
            respx.get(_SEED).mock(return_value=httpx.Response(200, text=_links_page()))
            with PageFetcher() as fetcher:
                self._bare_pipeline(fetcher=fetcher).run()
                assert not fetcher.client.is_closed

        assert fetcher.client.is_closed
