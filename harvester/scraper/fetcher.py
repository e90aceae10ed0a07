"""HTTP page fetcher.

The fetcher performs exactly one GET per call.  It never sleeps and never
retries; politeness delays are applied by the crawl pipeline before leaf
fetches, and failures are resolved by the pipeline's containment policy.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import httpx

from harvester.config import settings
from harvester.scraper.models import Page

logger = logging.getLogger("harvester.scraper.fetcher")


class FetchError(Exception):
    """A page could not be retrieved (network failure, timeout, or HTTP error)."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason


class PageFetcher:
    """Retrieve raw markup for a URL over one shared ``httpx.Client``.

    Usable as a context manager so the underlying connection pool is closed
    when the crawl finishes.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.client = httpx.Client(
            headers={"User-Agent": user_agent or settings.user_agent},
            timeout=timeout if timeout is not None else settings.request_timeout,
            follow_redirects=True,
            transport=transport,
        )

    def fetch(self, url: str) -> Page:
        """Fetch *url* and return a :class:`Page`.

        Raises:
            FetchError: If the request fails, times out, or the server returns
                a 4xx/5xx status code.
        """
        start = time.perf_counter()
        logger.debug("GET start url=%s", url)
        try:
            response = self.client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise FetchError(url, f"HTTP {exc.response.status_code}") from exc
        except httpx.TimeoutException as exc:
            raise FetchError(url, f"timeout ({type(exc).__name__})") from exc
        except httpx.HTTPError as exc:
            raise FetchError(url, f"{type(exc).__name__}: {exc}") from exc
        except (httpx.InvalidURL, ValueError) as exc:
            # Malformed URLs fail before any request is sent (IDNA errors are ValueErrors).
            raise FetchError(url, f"invalid URL ({type(exc).__name__}: {exc})") from exc

        elapsed = time.perf_counter() - start
        logger.debug(
            "GET done url=%s status=%s elapsed=%.2fs", url, response.status_code, elapsed
        )
        return Page(url=url, html=response.text, status_code=response.status_code)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> PageFetcher:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
